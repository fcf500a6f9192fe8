"""Async client for the GitHub repository and Git Data APIs."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from ..errors import (
    ApiError,
    AuthError,
    NetworkError,
    NotFoundError,
    ParseError,
    PermissionDeniedError,
)

logger = logging.getLogger("tether.sync.github")

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_USER_AGENT = "Tether-Sync/1.0"


@dataclass
class RemoteSettings:
    """Connection details for one repository branch."""

    owner: str
    repo: str
    branch: str = "main"
    token: str = ""
    api_url: str = DEFAULT_API_URL
    user_agent: str = DEFAULT_USER_AGENT
    timeout: float = 30.0

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}@{self.branch}"


@dataclass
class TreeEntry:
    """One path in a tree request; ``sha=None`` removes the path."""

    path: str
    sha: Optional[str]
    mode: str = "100644"

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "mode": self.mode, "type": "blob", "sha": self.sha}


class GitHubClient:
    """Thin wrapper over ``httpx.AsyncClient`` that maps host failures to errors.

    Use as an async context manager; each ``async with`` opens a fresh
    connection pool so the client can be reused across event loops.
    """

    def __init__(
        self,
        settings: RemoteSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubClient":
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": self.settings.user_agent or DEFAULT_USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.settings.token:
            headers["Authorization"] = f"Bearer {self.settings.token}"
        self._http = httpx.AsyncClient(
            base_url=self.settings.api_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(self.settings.timeout),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def check_access(self) -> Dict[str, Any]:
        """Confirm the token can push to the repository.

        Raises:
            AuthError: no token, or the host rejected it.
            PermissionDeniedError: the token lacks push access.
            NotFoundError: the repository is not visible to the token.
        """
        if not self.settings.token:
            raise AuthError("No access token configured")
        data = await self._request("GET", self.settings.repo_path)
        permissions = data.get("permissions") if isinstance(data, dict) else None
        if not isinstance(permissions, dict):
            raise ParseError("Repository response is missing 'permissions'")
        if not permissions.get("push", False):
            raise PermissionDeniedError(
                f"Token cannot push to {self.settings.owner}/{self.settings.repo}", status_code=403
            )
        logger.info("Push access confirmed for %s", self.settings.slug)
        return data

    async def get_branch_head(self) -> str:
        data = await self._request(
            "GET", f"{self.settings.repo_path}/git/ref/heads/{self.settings.branch}"
        )
        return _field(data, "object", "sha")

    async def get_commit_tree(self, commit_sha: str) -> str:
        data = await self._request("GET", f"{self.settings.repo_path}/git/commits/{commit_sha}")
        return _field(data, "tree", "sha")

    async def download_archive(self, ref: Optional[str] = None) -> bytes:
        """Download the zipball of ``ref`` (defaults to the branch)."""
        response = await self._send(
            "GET",
            f"{self.settings.repo_path}/zipball/{ref or self.settings.branch}",
            follow_redirects=True,
        )
        logger.info("Downloaded archive for %s (%d bytes)", ref or self.settings.branch, len(response.content))
        return response.content

    async def create_blob(self, content: bytes) -> str:
        payload = {
            "content": base64.b64encode(content).decode("ascii"),
            "encoding": "base64",
        }
        data = await self._request("POST", f"{self.settings.repo_path}/git/blobs", json=payload)
        return _field(data, "sha")

    async def create_tree(self, base_tree: str, entries: List[TreeEntry]) -> str:
        payload = {
            "base_tree": base_tree,
            "tree": [entry.to_dict() for entry in entries],
        }
        data = await self._request("POST", f"{self.settings.repo_path}/git/trees", json=payload)
        return _field(data, "sha")

    async def create_commit(self, message: str, tree_sha: str, parent_sha: str) -> str:
        payload = {"message": message, "tree": tree_sha, "parents": [parent_sha]}
        data = await self._request("POST", f"{self.settings.repo_path}/git/commits", json=payload)
        return _field(data, "sha")

    async def update_ref(self, commit_sha: str) -> str:
        payload = {"sha": commit_sha, "force": False}
        data = await self._request(
            "PATCH",
            f"{self.settings.repo_path}/git/refs/heads/{self.settings.branch}",
            json=payload,
        )
        return _field(data, "object", "sha")

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._send(method, url, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"{method} {url} returned invalid JSON") from exc

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._http is None:
            raise RuntimeError("GitHubClient must be used inside 'async with'")
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"{method} {url} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {url} failed: {exc}") from exc

        logger.debug(
            "%s %s -> %d (rate limit remaining: %s)",
            method,
            url,
            response.status_code,
            response.headers.get("X-RateLimit-Remaining", "?"),
        )
        if response.is_success:
            return response
        raise _error_for(method, url, response)


def _error_for(method: str, url: str, response: httpx.Response) -> Exception:
    status = response.status_code
    message = _host_message(response)
    detail = f"{method} {url}: {message}" if message else f"{method} {url}"

    if status == 401:
        return AuthError(f"Authentication failed for {detail}", status_code=status)
    if status == 403:
        logger.warning(
            "Access denied for %s (rate limit remaining: %s, resets at: %s)",
            url,
            response.headers.get("X-RateLimit-Remaining", "?"),
            response.headers.get("X-RateLimit-Reset", "?"),
        )
        return PermissionDeniedError(f"Access denied for {detail}", status_code=status)
    if status == 404:
        return NotFoundError(f"Not found: {detail}", status_code=status)
    return ApiError(f"Unexpected response for {detail}", status)


def _host_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return ""
    if isinstance(data, dict):
        return str(data.get("message", ""))
    return ""


def _field(data: Any, *keys: str) -> str:
    value = data
    for key in keys:
        if not isinstance(value, dict) or key not in value:
            raise ParseError(f"Response is missing '{'.'.join(keys)}'")
        value = value[key]
    if not isinstance(value, str):
        raise ParseError(f"Response field '{'.'.join(keys)}' is not a string")
    return value


__all__ = [
    "DEFAULT_API_URL",
    "DEFAULT_USER_AGENT",
    "GitHubClient",
    "RemoteSettings",
    "TreeEntry",
]
