"""Scratch directory layout and per-scratch serialization."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
import os
import shutil
import threading
import time
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, Dict

from ..errors import FileAccessError

if TYPE_CHECKING:
    from .client import SyncSettings

logger = logging.getLogger("tether.sync.workspace")

_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[Path, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)

# Cycles in other threads run on other event loops; these locks cover them.
_THREAD_LOCKS: Dict[Path, threading.Lock] = {}
_THREAD_LOCKS_GUARD = threading.Lock()

POLL_INTERVAL = 0.05
STALE_LOCK_SECONDS = 15 * 60


@dataclass(frozen=True)
class ScratchLayout:
    """Every path one sync cycle reads or writes."""

    content_root: Path
    local_manifest: Path
    scratch_root: Path

    @classmethod
    def from_settings(cls, workspace_dir: Path, settings: "SyncSettings") -> "ScratchLayout":
        return cls(
            content_root=(workspace_dir / settings.content_dir).resolve(),
            local_manifest=(workspace_dir / settings.local_manifest).resolve(),
            scratch_root=(workspace_dir / settings.scratch_dir).resolve(),
        )

    @property
    def archive(self) -> Path:
        return self.scratch_root / "branch.zip"

    @property
    def snapshot(self) -> Path:
        return self.scratch_root / "snapshot"

    @property
    def staging(self) -> Path:
        return self.scratch_root / "staging"

    @property
    def remote_manifest(self) -> Path:
        return self.scratch_root / "remote_manifest.json"

    @property
    def staging_manifest(self) -> Path:
        return self.scratch_root / "staging_manifest.json"

    @property
    def changes(self) -> Path:
        return self.scratch_root / "changes.json"

    @property
    def upload_archive(self) -> Path:
        return self.scratch_root / "upload.zip"

    def reset(self) -> None:
        """Remove the scratch directory and recreate it empty."""
        try:
            if self.scratch_root.exists():
                shutil.rmtree(self.scratch_root)
            self.scratch_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FileAccessError(
                f"Failed to prepare scratch directory {self.scratch_root}: {exc}",
                path=str(self.scratch_root),
            ) from exc
        logger.debug("Prepared scratch directory %s", self.scratch_root)


def scratch_lock(scratch_root: Path) -> asyncio.Lock:
    """Return the lock serializing cycles that share ``scratch_root``.

    Locks are scoped to the running event loop; ``scratch_guard`` also
    covers other threads and processes.
    """
    loop = asyncio.get_running_loop()
    locks = _LOCKS.setdefault(loop, {})
    key = scratch_root.resolve()
    lock = locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        locks[key] = lock
    return lock


def lock_file_path(scratch_root: Path) -> Path:
    """Lock file next to (not inside) the scratch root, which ``reset`` wipes."""
    root = scratch_root.resolve()
    return root.with_name(f".{root.name}.lock")


@asynccontextmanager
async def scratch_guard(scratch_root: Path, poll_interval: float = POLL_INTERVAL) -> AsyncIterator[None]:
    """Hold ``scratch_root`` exclusively for one cycle.

    Serializes tasks on this event loop, threads running their own loops
    (each ``run_sync`` call), and other processes through a lock file.
    A lock file older than ``STALE_LOCK_SECONDS`` is treated as abandoned.

    Raises:
        FileAccessError: the lock file could not be created.
    """
    key = scratch_root.resolve()
    async with scratch_lock(key):
        thread_lock = _thread_lock(key)
        while not thread_lock.acquire(blocking=False):
            await asyncio.sleep(poll_interval)
        try:
            lock_path = lock_file_path(key)
            while not _create_lock_file(lock_path):
                await asyncio.sleep(poll_interval)
            try:
                yield
            finally:
                _remove_lock_file(lock_path)
        finally:
            thread_lock.release()


def _thread_lock(key: Path) -> threading.Lock:
    with _THREAD_LOCKS_GUARD:
        return _THREAD_LOCKS.setdefault(key, threading.Lock())


def _create_lock_file(lock_path: Path) -> bool:
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError:
        if _is_stale(lock_path):
            logger.warning("Removing abandoned sync lock %s", lock_path)
            lock_path.unlink(missing_ok=True)
        return False
    except OSError as exc:
        raise FileAccessError(
            f"Failed to create sync lock {lock_path}: {exc}", path=str(lock_path)
        ) from exc
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(str(os.getpid()))
    return True


def _is_stale(lock_path: Path) -> bool:
    try:
        age = time.time() - lock_path.stat().st_mtime
    except FileNotFoundError:
        return False
    return age > STALE_LOCK_SECONDS


def _remove_lock_file(lock_path: Path) -> None:
    try:
        lock_path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Failed to remove sync lock %s: %s", lock_path, exc)


__all__ = ["ScratchLayout", "lock_file_path", "scratch_guard", "scratch_lock"]
