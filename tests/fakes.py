"""Scripted stand-in for the GitHub REST API used across the suite."""

from __future__ import annotations

import base64
import io
import json
import zipfile
from typing import Callable, Dict, List, Optional, Tuple

import httpx

HEAD_SHA = "a" * 40
BASE_TREE_SHA = "b" * 40
NEW_TREE_SHA = "c" * 40
NEW_COMMIT_SHA = "d" * 40

Route = Callable[[httpx.Request], httpx.Response]


def make_zipball(files: Dict[str, bytes], root: str = "acme-docs-aaaaaaa") -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(f"{root}/", b"")
        for rel_path, content in files.items():
            archive.writestr(f"{root}/{rel_path}", content)
    return buffer.getvalue()


class FakeGitHub:
    """Routes requests by ``(method, path)`` and records every call."""

    def __init__(self, owner: str = "acme", repo: str = "docs", branch: str = "main") -> None:
        self.prefix = f"/repos/{owner}/{repo}"
        self.branch = branch
        self.requests: List[httpx.Request] = []
        self.blobs: Dict[str, bytes] = {}
        self.routes: Dict[Tuple[str, str], Route] = {}
        self.zipball = make_zipball({"README.md": b"readme"})
        self.push_allowed = True
        self._install_defaults()

    # Helpers used by tests --------------------------------------------------

    def route(self, method: str, path: str, handler: Route) -> None:
        self.routes[(method, self.prefix + path)] = handler

    def fail(self, method: str, path: str, status: int, message: str = "boom") -> None:
        self.route(method, path, lambda _req: httpx.Response(status, json={"message": message}))

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> List[httpx.Request]:
        return [
            req
            for req in self.requests
            if (method is None or req.method == method)
            and (path is None or req.url.path == self.prefix + path)
        ]

    def json_body(self, request: httpx.Request) -> dict:
        return json.loads(request.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._dispatch)

    # Internals ---------------------------------------------------------------

    def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": "Not Found"})
        return handler(request)

    def _install_defaults(self) -> None:
        self.route("GET", "", lambda _req: httpx.Response(
            200, json={"full_name": "acme/docs", "permissions": {"push": self.push_allowed, "pull": True}}
        ))
        self.route("GET", f"/git/ref/heads/{self.branch}", lambda _req: httpx.Response(
            200, json={"ref": f"refs/heads/{self.branch}", "object": {"sha": HEAD_SHA, "type": "commit"}}
        ))
        self.route("GET", f"/git/commits/{HEAD_SHA}", lambda _req: httpx.Response(
            200, json={"sha": HEAD_SHA, "tree": {"sha": BASE_TREE_SHA}}
        ))
        self.route("GET", f"/zipball/{HEAD_SHA}", lambda _req: httpx.Response(
            200, content=self.zipball, headers={"Content-Type": "application/zip"}
        ))
        self.route("POST", "/git/blobs", self._create_blob)
        self.route("POST", "/git/trees", lambda _req: httpx.Response(201, json={"sha": NEW_TREE_SHA}))
        self.route("POST", "/git/commits", lambda _req: httpx.Response(201, json={"sha": NEW_COMMIT_SHA}))
        self.route("PATCH", f"/git/refs/heads/{self.branch}", lambda req: httpx.Response(
            200, json={"object": {"sha": json.loads(req.content)["sha"]}}
        ))

    def _create_blob(self, request: httpx.Request) -> httpx.Response:
        content = base64.b64decode(json.loads(request.content)["content"])
        sha = f"{len(self.blobs) + 1:040x}"
        self.blobs[sha] = content
        return httpx.Response(201, json={"sha": sha})
