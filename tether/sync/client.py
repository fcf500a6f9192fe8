"""Sync client orchestrating a full download, diff, apply, and upload cycle."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..configuration import DEFAULT_EXCLUDE_PATTERNS
from ..errors import FileAccessError, NotFoundError, ParseError, SyncError
from .apply import ApplyReport, apply_changes
from .archive import pack, read_entries, unpack
from .changes import ChangeAction, ChangeList, plan_pull, plan_push
from .github import DEFAULT_API_URL, DEFAULT_USER_AGENT, GitHubClient, RemoteSettings
from .manifest import Manifest, ManifestBuilder
from .pipeline import PipelineState, PushPipeline
from .workspace import ScratchLayout, scratch_guard

logger = logging.getLogger("tether.sync.client")


class SyncMode(str, Enum):
    ANALYZE = "analyze"
    PULL = "pull"
    PUSH = "push"


class SyncPhase(str, Enum):
    """Steps of a sync cycle, in the order they run."""
    PREPARE_SCRATCH = "prepare_scratch"
    RESOLVE_HEAD = "resolve_head"
    DOWNLOAD = "download"
    UNPACK = "unpack"
    REMOTE_MANIFEST = "remote_manifest"
    LOCAL_MANIFEST = "local_manifest"
    DIFF = "diff"
    APPLY = "apply"
    REBUILD_MANIFESTS = "rebuild_manifests"
    REPACK = "repack"
    UPLOAD = "upload"


_PHASES_BY_MODE = {
    SyncMode.ANALYZE: list(SyncPhase)[:7],
    SyncMode.PULL: list(SyncPhase)[:9],
    SyncMode.PUSH: list(SyncPhase),
}


@dataclass
class SyncSettings:
    """Settings for sync operations."""

    enabled: bool = False
    owner: str = ""
    repo: str = ""
    branch: str = "main"
    api_url: str = DEFAULT_API_URL
    token_env: str = "GITHUB_TOKEN"
    user_agent: str = DEFAULT_USER_AGENT
    timeout: float = 30.0
    max_parallel_blobs: int = 8
    commit_message: str = "Sync from Tether"
    content_dir: str = "."
    scratch_dir: str = "state/sync"
    local_manifest: str = "state/local_manifest.json"
    exclude_patterns: tuple = tuple(DEFAULT_EXCLUDE_PATTERNS)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SyncSettings":
        raw = config.get("sync", {}) if config else {}
        return cls(
            enabled=bool(raw.get("enabled", False)),
            owner=str(raw.get("owner") or ""),
            repo=str(raw.get("repo") or ""),
            branch=str(raw.get("branch") or "main"),
            api_url=str(raw.get("api_url") or DEFAULT_API_URL),
            token_env=str(raw.get("token_env") or "GITHUB_TOKEN"),
            user_agent=str(raw.get("user_agent") or DEFAULT_USER_AGENT),
            timeout=float(raw.get("timeout", 30.0)),
            max_parallel_blobs=int(raw.get("max_parallel_blobs", 8)),
            commit_message=str(raw.get("commit_message") or "Sync from Tether"),
            content_dir=str(raw.get("content_dir") or "."),
            scratch_dir=str(raw.get("scratch_dir") or "state/sync"),
            local_manifest=str(raw.get("local_manifest") or "state/local_manifest.json"),
            exclude_patterns=tuple(raw.get("exclude_patterns", DEFAULT_EXCLUDE_PATTERNS)),
        )

    @property
    def configured(self) -> bool:
        return bool(self.owner and self.repo)

    def remote_settings(self, environ: Optional[Mapping[str, str]] = None) -> RemoteSettings:
        env = os.environ if environ is None else environ
        return RemoteSettings(
            owner=self.owner,
            repo=self.repo,
            branch=self.branch,
            token=env.get(self.token_env, ""),
            api_url=self.api_url,
            user_agent=self.user_agent,
            timeout=self.timeout,
        )


@dataclass
class SyncResult:
    """Result of a sync operation."""

    success: bool
    mode: str = SyncMode.ANALYZE.value
    failed_phase: Optional[str] = None
    pipeline_phase: Optional[str] = None
    error_kind: Optional[str] = None
    status_code: Optional[int] = None
    head_sha: Optional[str] = None
    added: int = 0
    updated: int = 0
    removed: int = 0
    applied: int = 0
    failed: int = 0
    commit_sha: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    message: str = ""

    def record_changes(self, changes: ChangeList) -> None:
        self.added = len(changes.by_action(ChangeAction.ADD))
        self.updated = len(changes.by_action(ChangeAction.UPDATE))
        self.removed = len(changes.by_action(ChangeAction.REMOVE))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "mode": self.mode,
            "failed_phase": self.failed_phase,
            "pipeline_phase": self.pipeline_phase,
            "error_kind": self.error_kind,
            "status_code": self.status_code,
            "head_sha": self.head_sha,
            "added": self.added,
            "updated": self.updated,
            "removed": self.removed,
            "applied": self.applied,
            "failed": self.failed,
            "commit_sha": self.commit_sha,
            "errors": self.errors,
            "message": self.message,
        }


class SyncClient:
    """Reconciles the workspace content with a branch on the hosting service.

    A cycle runs its phases strictly in order; the first failure stops the
    cycle and is reported on the returned ``SyncResult``.
    """

    def __init__(
        self,
        workspace_dir: Path,
        settings: SyncSettings,
        github: Optional[GitHubClient] = None,
        progress_callback: Optional[Callable[[str, int, int], None]] = None,
    ):
        self.workspace_dir = workspace_dir
        self.settings = settings
        self.layout = ScratchLayout.from_settings(workspace_dir, settings)
        self.github = github or GitHubClient(settings.remote_settings())
        self.progress_callback = progress_callback
        self._phase: Optional[SyncPhase] = None
        self._phases: List[SyncPhase] = []

    def run_sync(self, mode: str, message: Optional[str] = None) -> SyncResult:
        """Blocking wrapper around :meth:`run` for synchronous callers."""
        return asyncio.run(self.run(mode, message))

    async def run(self, mode: str, message: Optional[str] = None) -> SyncResult:
        sync_mode = SyncMode(mode)
        result = SyncResult(success=False, mode=sync_mode.value)
        if not self.settings.configured:
            result.error_kind = "config_error"
            result.message = "sync.owner and sync.repo must be configured"
            return result

        self._phases = _PHASES_BY_MODE[sync_mode]
        self._phase = None
        try:
            async with scratch_guard(self.layout.scratch_root):
                async with self.github:
                    await self._run_cycle(sync_mode, message, result)
        except SyncError as exc:
            phase = self._fail(result, exc.kind, str(exc))
            result.status_code = exc.status_code
            logger.error("Sync %s failed during %s: %s", sync_mode.value, phase, exc)
        except Exception as exc:
            phase = self._fail(result, "internal_error", f"Sync failed: {exc!r}")
            logger.exception("Sync %s failed during %s", sync_mode.value, phase)
        return result

    def _fail(self, result: SyncResult, kind: str, message: str) -> Optional[str]:
        phase = self._phase.value if self._phase else None
        result.success = False
        result.failed_phase = phase
        result.error_kind = kind
        result.message = message
        return phase

    async def _run_cycle(self, mode: SyncMode, message: Optional[str], result: SyncResult) -> None:
        layout = self.layout

        self._enter(SyncPhase.PREPARE_SCRATCH)
        await asyncio.to_thread(layout.reset)

        self._enter(SyncPhase.RESOLVE_HEAD)
        head = await self.github.get_branch_head()
        result.head_sha = head

        self._enter(SyncPhase.DOWNLOAD)
        data = await self.github.download_archive(head)
        await asyncio.to_thread(_write_bytes, layout.archive, data)

        self._enter(SyncPhase.UNPACK)
        await asyncio.to_thread(self._unpack_snapshot)

        self._enter(SyncPhase.REMOTE_MANIFEST)
        remote = await asyncio.to_thread(
            self._build_manifest, layout.snapshot, "remote", layout.remote_manifest
        )

        self._enter(SyncPhase.LOCAL_MANIFEST)
        local = await asyncio.to_thread(self._build_cycle_manifest, mode)

        self._enter(SyncPhase.DIFF)
        changes = plan_push(local, remote) if mode == SyncMode.PUSH else plan_pull(local, remote)
        await asyncio.to_thread(changes.save, layout.changes)
        result.record_changes(changes)
        logger.info("Sync %s diff: %s", mode.value, changes.summary())

        if mode == SyncMode.ANALYZE:
            result.success = True
            result.message = changes.summary()
            return
        if not changes.has_changes:
            result.success = True
            result.message = "Already in sync"
            return

        self._enter(SyncPhase.APPLY)
        if mode == SyncMode.PULL:
            report = await asyncio.to_thread(
                apply_changes, changes, layout.snapshot, layout.content_root
            )
        else:
            report = await asyncio.to_thread(self._stage_push, changes)
        self._check_report(report, result)

        self._enter(SyncPhase.REBUILD_MANIFESTS)
        if mode == SyncMode.PULL:
            remote = await asyncio.to_thread(
                self._build_manifest, layout.snapshot, "remote", layout.remote_manifest
            )
            local = await asyncio.to_thread(
                self._build_manifest, layout.content_root, "local", layout.local_manifest
            )
            _require_same(local, remote, "local content", "remote snapshot")
            result.success = True
            result.message = f"Pulled {changes.summary()}"
            return

        staged = await asyncio.to_thread(
            self._build_manifest, layout.staging, "remote", layout.staging_manifest
        )
        _require_same(staged, local, "staged snapshot", "local content")

        self._enter(SyncPhase.REPACK)
        await asyncio.to_thread(self._repack, changes)

        self._enter(SyncPhase.UPLOAD)
        archive = await asyncio.to_thread(_read_bytes, layout.upload_archive)
        items = list(read_entries(archive))
        removed = [record.path for record in changes.by_action(ChangeAction.REMOVE)]
        pipeline = PushPipeline(
            self.github,
            message or self.settings.commit_message,
            expected_head=head,
            max_parallel_blobs=self.settings.max_parallel_blobs,
            on_state=self._report_pipeline_state,
        )
        outcome = await pipeline.run(items, removed)
        if not outcome.ok:
            result.pipeline_phase = outcome.failed_phase.value if outcome.failed_phase else None
            raise outcome.error or SyncError("Push pipeline failed")

        result.commit_sha = outcome.commit_sha
        result.success = True
        result.message = f"Pushed {changes.summary()} as {outcome.commit_sha}"

    def build_local_manifest(self) -> Manifest:
        """Scan the content directory and persist the local manifest."""
        return self._build_manifest(self.layout.content_root, "local", self.layout.local_manifest)

    def load_changes(self) -> ChangeList:
        """Load the change list written by the last diff."""
        return ChangeList.load(self.layout.changes)

    def get_status(self) -> Dict[str, Any]:
        """Summarize settings plus the persisted manifest and change list."""
        status: Dict[str, Any] = {
            "enabled": self.settings.enabled,
            "configured": self.settings.configured,
            "repository": f"{self.settings.owner}/{self.settings.repo}" if self.settings.configured else None,
            "branch": self.settings.branch,
            "content_dir": str(self.layout.content_root),
            "token_env": self.settings.token_env,
            "token_present": bool(self.github.settings.token),
            "local_manifest": None,
            "changes": None,
        }
        try:
            manifest = Manifest.load(self.layout.local_manifest)
            status["local_manifest"] = {
                "created_date": manifest.created_date,
                "total_files": manifest.total_files,
                "directories": len(manifest.directories),
            }
        except NotFoundError:
            pass
        except (ParseError, FileAccessError) as exc:
            status["local_manifest"] = {"error": str(exc)}

        try:
            changes = self.load_changes()
            status["changes"] = {
                "analysis_date": changes.analysis_date,
                "total": len(changes),
                "summary": changes.summary(),
            }
        except NotFoundError:
            pass
        except (ParseError, FileAccessError) as exc:
            status["changes"] = {"error": str(exc)}
        return status

    def _build_manifest(self, root: Path, manifest_type: str, save_to: Path) -> Manifest:
        builder = ManifestBuilder(root, manifest_type, self.settings.exclude_patterns)
        manifest = builder.build()
        if builder.errors:
            # A partial manifest would plan removals for the unreadable files.
            first = builder.errors[0]
            raise FileAccessError(
                f"{len(builder.errors)} file(s) under {root} could not be hashed: {first}",
                path=first.path,
            )
        manifest.save(save_to)
        return manifest

    def _build_cycle_manifest(self, mode: SyncMode) -> Manifest:
        """Build the local manifest for a cycle.

        A missing or empty content directory is not a hard stop for analyze and
        pull: it counts as an empty manifest, so a fresh workspace can pull.
        Push keeps the ``NotFoundError`` so an empty workspace cannot wipe the
        branch.
        """
        try:
            return self.build_local_manifest()
        except NotFoundError:
            if mode == SyncMode.PUSH:
                raise
        # Nothing pulled yet: every remote file is new.
        logger.info("Content directory %s is empty", self.layout.content_root)
        manifest = Manifest(manifest_type="local")
        manifest.save(self.layout.local_manifest)
        return manifest

    def _unpack_snapshot(self) -> None:
        data = _read_bytes(self.layout.archive)
        unpack(data, self.layout.snapshot, strip_root=True)
        try:
            self.layout.archive.unlink()
        except OSError as exc:
            raise FileAccessError(f"Failed to remove {self.layout.archive}: {exc}") from exc

    def _stage_push(self, changes: ChangeList) -> ApplyReport:
        try:
            shutil.copytree(self.layout.snapshot, self.layout.staging)
        except OSError as exc:
            raise FileAccessError(
                f"Failed to stage snapshot: {exc}", path=str(self.layout.staging)
            ) from exc
        return apply_changes(changes, self.layout.content_root, self.layout.staging)

    def _repack(self, changes: ChangeList) -> None:
        entries = [
            (self.layout.staging / record.path, record.path)
            for record in changes
            if record.action in (ChangeAction.ADD, ChangeAction.UPDATE)
        ]
        _write_bytes(self.layout.upload_archive, pack(entries))

    def _check_report(self, report: ApplyReport, result: SyncResult) -> None:
        result.applied = report.applied
        result.failed = report.failed
        result.errors.extend(report.errors)
        if not report.ok:
            raise FileAccessError(f"{report.failed} of {report.applied + report.failed} changes failed to apply")

    def _enter(self, phase: SyncPhase) -> None:
        self._phase = phase
        logger.debug("Sync phase: %s", phase.value)
        self._report_progress(phase.value, self._phases.index(phase) + 1, len(self._phases))

    def _report_pipeline_state(self, state: PipelineState) -> None:
        total = len(self._phases)
        self._report_progress(f"{SyncPhase.UPLOAD.value}:{state.value.lower()}", total, total)

    def _report_progress(self, message: str, current: int, total: int) -> None:
        """Report progress if callback is set."""
        if self.progress_callback:
            self.progress_callback(message, current, total)


def _require_same(actual: Manifest, expected: Manifest, actual_name: str, expected_name: str) -> None:
    if not actual.same_content(expected):
        mismatched = sorted(set(actual.flatten().items()) ^ set(expected.flatten().items()))
        paths = sorted({path for path, _ in mismatched})
        raise SyncError(
            f"{actual_name} does not match {expected_name} after apply: {', '.join(paths[:5])}"
        )


def _write_bytes(path: Path, data: bytes) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as exc:
        raise FileAccessError(f"Failed to write {path}: {exc}", path=str(path)) from exc


def _read_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise FileAccessError(f"Failed to read {path}: {exc}", path=str(path)) from exc


__all__ = [
    "SyncClient",
    "SyncMode",
    "SyncPhase",
    "SyncResult",
    "SyncSettings",
]
