"""Tests for the GitHub API client and its error mapping."""

from __future__ import annotations

import base64

import httpx
import pytest

from tether.errors import (
    ApiError,
    AuthError,
    NetworkError,
    NotFoundError,
    ParseError,
    PermissionDeniedError,
)
from tether.sync.github import GitHubClient, RemoteSettings, TreeEntry

from fakes import BASE_TREE_SHA, HEAD_SHA, NEW_TREE_SHA, FakeGitHub


@pytest.mark.asyncio
async def test_requests_carry_auth_and_user_agent(github_client: GitHubClient, fake_github: FakeGitHub):
    async with github_client:
        head = await github_client.get_branch_head()

    request = fake_github.requests[0]
    assert head == HEAD_SHA
    assert request.headers["Authorization"] == "Bearer t0ken"
    assert request.headers["User-Agent"] == "Tether-Sync/1.0"
    assert request.headers["Accept"] == "application/vnd.github+json"
    assert request.url.path == "/repos/acme/docs/git/ref/heads/main"


@pytest.mark.asyncio
async def test_commit_tree_lookup(github_client: GitHubClient):
    async with github_client:
        assert await github_client.get_commit_tree(HEAD_SHA) == BASE_TREE_SHA


@pytest.mark.asyncio
async def test_create_blob_sends_base64(github_client: GitHubClient, fake_github: FakeGitHub):
    async with github_client:
        sha = await github_client.create_blob(b"\x00binary\xff")

    body = fake_github.json_body(fake_github.calls("POST", "/git/blobs")[0])
    assert body["encoding"] == "base64"
    assert base64.b64decode(body["content"]) == b"\x00binary\xff"
    assert fake_github.blobs[sha] == b"\x00binary\xff"


@pytest.mark.asyncio
async def test_create_tree_marks_removals_with_null_sha(github_client: GitHubClient, fake_github: FakeGitHub):
    entries = [TreeEntry("docs/a.md", "1" * 40, "100755"), TreeEntry("old.md", None)]

    async with github_client:
        tree = await github_client.create_tree(BASE_TREE_SHA, entries)

    body = fake_github.json_body(fake_github.calls("POST", "/git/trees")[0])
    assert tree == NEW_TREE_SHA
    assert body["base_tree"] == BASE_TREE_SHA
    assert body["tree"] == [
        {"path": "docs/a.md", "mode": "100755", "type": "blob", "sha": "1" * 40},
        {"path": "old.md", "mode": "100644", "type": "blob", "sha": None},
    ]


@pytest.mark.asyncio
async def test_update_ref_is_not_forced(github_client: GitHubClient, fake_github: FakeGitHub):
    async with github_client:
        await github_client.update_ref("e" * 40)

    body = fake_github.json_body(fake_github.calls("PATCH")[0])
    assert body == {"sha": "e" * 40, "force": False}


@pytest.mark.asyncio
async def test_download_archive_follows_redirect(remote_settings: RemoteSettings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.github.com":
            return httpx.Response(302, headers={"Location": "https://codeload.github.com/acme/docs/zip/main"})
        return httpx.Response(200, content=b"PK-zip-bytes")

    async with GitHubClient(remote_settings, transport=httpx.MockTransport(handler)) as client:
        data = await client.download_archive()

    assert data == b"PK-zip-bytes"


@pytest.mark.parametrize(
    "status, error_type",
    [
        (401, AuthError),
        (403, PermissionDeniedError),
        (404, NotFoundError),
        (409, ApiError),
        (500, ApiError),
    ],
)
@pytest.mark.asyncio
async def test_status_codes_map_to_error_kinds(github_client: GitHubClient, fake_github: FakeGitHub, status, error_type):
    fake_github.fail("GET", "/git/ref/heads/main", status, message="nope")

    async with github_client:
        with pytest.raises(error_type) as excinfo:
            await github_client.get_branch_head()

    assert excinfo.value.status_code == status
    assert "nope" in str(excinfo.value)


@pytest.mark.asyncio
async def test_transport_failure_is_network_error(remote_settings: RemoteSettings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with GitHubClient(remote_settings, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(NetworkError):
            await client.get_branch_head()


@pytest.mark.asyncio
async def test_timeout_is_network_error(remote_settings: RemoteSettings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    async with GitHubClient(remote_settings, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(NetworkError):
            await client.create_blob(b"x")


@pytest.mark.asyncio
async def test_invalid_json_is_parse_error(github_client: GitHubClient, fake_github: FakeGitHub):
    fake_github.route("GET", "/git/ref/heads/main", lambda _req: httpx.Response(200, content=b"<html>"))

    async with github_client:
        with pytest.raises(ParseError):
            await github_client.get_branch_head()


@pytest.mark.asyncio
async def test_missing_field_is_parse_error(github_client: GitHubClient, fake_github: FakeGitHub):
    fake_github.route("POST", "/git/trees", lambda _req: httpx.Response(201, json={"url": "x"}))

    async with github_client:
        with pytest.raises(ParseError):
            await github_client.create_tree(BASE_TREE_SHA, [])


@pytest.mark.asyncio
async def test_access_check_distinguishes_read_only_token(github_client: GitHubClient, fake_github: FakeGitHub):
    fake_github.push_allowed = False

    async with github_client:
        with pytest.raises(PermissionDeniedError):
            await github_client.check_access()


@pytest.mark.asyncio
async def test_access_check_without_token_is_auth_error(fake_github: FakeGitHub):
    settings = RemoteSettings(owner="acme", repo="docs", token="")

    async with GitHubClient(settings, transport=fake_github.transport) as client:
        with pytest.raises(AuthError):
            await client.check_access()

    assert fake_github.requests == []


@pytest.mark.asyncio
async def test_client_requires_context_manager(github_client: GitHubClient):
    with pytest.raises(RuntimeError):
        await github_client.get_branch_head()
