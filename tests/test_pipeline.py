"""Tests for the blob/tree/commit/ref push pipeline."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from tether.errors import ApiError, AuthError, PermissionDeniedError
from tether.sync.archive import ArchiveEntry
from tether.sync.github import GitHubClient
from tether.sync.pipeline import PipelineState, PushPipeline

from fakes import BASE_TREE_SHA, HEAD_SHA, NEW_COMMIT_SHA, NEW_TREE_SHA, FakeGitHub


def _items(count: int = 3):
    return [ArchiveEntry(f"docs/file{i}.md", f"content {i}".encode()) for i in range(1, count + 1)]


def _paths(fake: FakeGitHub):
    return [(req.method, req.url.path.replace(fake.prefix, "")) for req in fake.requests]


@pytest.mark.asyncio
async def test_happy_path_runs_every_state_in_order(github_client: GitHubClient, fake_github: FakeGitHub):
    seen = []
    async with github_client:
        pipeline = PushPipeline(github_client, "Update docs", on_state=seen.append)
        outcome = await pipeline.run(_items(2), removed_paths=["old.md"])

    assert outcome.ok
    assert outcome.state == PipelineState.DONE
    assert outcome.commit_sha == NEW_COMMIT_SHA
    assert outcome.tree_sha == NEW_TREE_SHA
    assert seen == [
        PipelineState.CHECK_ACCESS,
        PipelineState.GET_HEAD,
        PipelineState.CREATE_BLOBS,
        PipelineState.CREATE_TREE,
        PipelineState.CREATE_COMMIT,
        PipelineState.UPDATE_REF,
        PipelineState.DONE,
    ]
    calls = _paths(fake_github)
    assert calls[:3] == [("GET", ""), ("GET", "/git/ref/heads/main"), ("GET", f"/git/commits/{HEAD_SHA}")]
    assert calls[3:5] == [("POST", "/git/blobs"), ("POST", "/git/blobs")]
    assert calls[5:] == [("POST", "/git/trees"), ("POST", "/git/commits"), ("PATCH", "/git/refs/heads/main")]

    tree_body = fake_github.json_body(fake_github.calls("POST", "/git/trees")[0])
    assert tree_body["base_tree"] == BASE_TREE_SHA
    assert {entry["path"]: entry["sha"] for entry in tree_body["tree"]}["old.md"] is None
    assert sorted(fake_github.blobs.values()) == [b"content 1", b"content 2"]

    commit_body = fake_github.json_body(fake_github.calls("POST", "/git/commits")[0])
    assert commit_body == {"message": "Update docs", "tree": NEW_TREE_SHA, "parents": [HEAD_SHA]}


@pytest.mark.asyncio
async def test_failed_blob_stops_before_tree(github_client: GitHubClient, fake_github: FakeGitHub):
    def create_blob(request: httpx.Request) -> httpx.Response:
        body = fake_github.json_body(request)
        if body["content"] == "Y29udGVudCAy":  # "content 2"
            return httpx.Response(500, json={"message": "blob store unavailable"})
        return httpx.Response(201, json={"sha": "f" * 40})

    fake_github.route("POST", "/git/blobs", create_blob)

    async with github_client:
        pipeline = PushPipeline(github_client, "Update docs", max_parallel_blobs=1)
        outcome = await pipeline.run(_items(3))

    assert outcome.state == PipelineState.FAILED
    assert outcome.failed_phase == PipelineState.CREATE_BLOBS
    assert isinstance(outcome.error, ApiError)
    assert outcome.status_code == 500
    assert fake_github.calls("POST", "/git/trees") == []
    assert fake_github.calls("POST", "/git/commits") == []
    assert fake_github.calls("PATCH") == []
    assert pipeline.batch is not None
    assert pipeline.batch.failed == 1
    assert pipeline.batch.completed < pipeline.batch.expected


@pytest.mark.asyncio
async def test_access_check_403_stops_before_head_lookup(github_client: GitHubClient, fake_github: FakeGitHub):
    fake_github.fail("GET", "", 403, message="Resource not accessible by integration")

    async with github_client:
        outcome = await PushPipeline(github_client, "msg").run(_items(1))

    assert outcome.failed_phase == PipelineState.CHECK_ACCESS
    assert isinstance(outcome.error, PermissionDeniedError)
    assert not isinstance(outcome.error, AuthError)
    assert fake_github.calls("GET", "/git/ref/heads/main") == []
    assert fake_github.calls("POST", "/git/blobs") == []


@pytest.mark.asyncio
async def test_access_check_401_is_auth_error(github_client: GitHubClient, fake_github: FakeGitHub):
    fake_github.fail("GET", "", 401, message="Bad credentials")

    async with github_client:
        outcome = await PushPipeline(github_client, "msg").run(_items(1))

    assert outcome.failed_phase == PipelineState.CHECK_ACCESS
    assert isinstance(outcome.error, AuthError)
    assert outcome.error.kind == "auth_error"
    assert outcome.status_code == 401
    assert len(fake_github.requests) == 1


@pytest.mark.asyncio
async def test_moved_head_fails_before_blobs(github_client: GitHubClient, fake_github: FakeGitHub):
    async with github_client:
        outcome = await PushPipeline(github_client, "msg", expected_head="0" * 40).run(_items(1))

    assert outcome.failed_phase == PipelineState.GET_HEAD
    assert outcome.status_code == 409
    assert fake_github.calls("POST", "/git/blobs") == []


@pytest.mark.asyncio
async def test_rejected_ref_update_fails(github_client: GitHubClient, fake_github: FakeGitHub):
    fake_github.fail("PATCH", "/git/refs/heads/main", 422, message="Update is not a fast forward")

    async with github_client:
        outcome = await PushPipeline(github_client, "msg").run(_items(1))

    assert outcome.failed_phase == PipelineState.UPDATE_REF
    assert outcome.status_code == 422
    assert outcome.commit_sha == NEW_COMMIT_SHA
    assert outcome.error.phase == "UPDATE_REF"


@pytest.mark.asyncio
async def test_empty_change_set_short_circuits(github_client: GitHubClient, fake_github: FakeGitHub):
    async with github_client:
        outcome = await PushPipeline(github_client, "msg").run([], [])

    assert outcome.ok
    assert fake_github.calls("POST") == []
    assert fake_github.calls("PATCH") == []


@pytest.mark.asyncio
async def test_blob_uploads_respect_parallel_limit(github_client: GitHubClient, fake_github: FakeGitHub):
    in_flight = 0
    peak = 0

    async def slow_blob(sha: str):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return sha

    async with github_client:
        counter = iter(range(100))

        async def create_blob(content: bytes) -> str:
            return await slow_blob(f"{next(counter):040x}")

        github_client.create_blob = create_blob  # type: ignore[method-assign]
        pipeline = PushPipeline(github_client, "msg", max_parallel_blobs=2)
        outcome = await pipeline.run(_items(6))

    assert outcome.ok
    assert peak == 2
    assert pipeline.batch.completed == 6
    assert [blob.relative_path for blob in outcome.blobs] == [f"docs/file{i}.md" for i in range(1, 7)]
