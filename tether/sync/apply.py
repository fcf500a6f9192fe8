"""Apply a change list between a source tree and a destination tree."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .changes import ChangeAction, ChangeRecord

logger = logging.getLogger("tether.sync.apply")


@dataclass
class ApplyReport:
    """Aggregate outcome of applying a change list."""

    applied: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "failed": self.failed,
            "errors": self.errors,
        }


def apply_changes(
    changes: Iterable[ChangeRecord],
    source_root: Path,
    dest_root: Path,
) -> ApplyReport:
    """Make ``dest_root`` follow ``source_root`` for every record.

    ``ADD`` and ``UPDATE`` copy the file from source to destination, creating
    parent directories. ``REMOVE`` deletes the destination file; a target that
    is already gone counts as a failure. Every record is attempted.
    """
    report = ApplyReport()
    dest_root.mkdir(parents=True, exist_ok=True)

    for change in changes:
        target = _resolve_within(dest_root, change.path)
        if target is None:
            _fail(report, change, "path escapes destination root")
            continue

        if change.action in (ChangeAction.ADD, ChangeAction.UPDATE):
            source = _resolve_within(source_root, change.path)
            if source is None:
                _fail(report, change, "path escapes source root")
                continue
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
            except OSError as exc:
                _fail(report, change, str(exc))
                continue
        elif change.action == ChangeAction.REMOVE:
            if not target.is_file():
                _fail(report, change, "target already absent")
                continue
            try:
                target.unlink()
            except OSError as exc:
                _fail(report, change, str(exc))
                continue
            _prune_empty_parents(target.parent, dest_root)

        report.applied += 1
        logger.debug("Applied %s %s", change.action.value, change.path)

    logger.info(
        "Applied changes to %s: %d succeeded, %d failed",
        dest_root,
        report.applied,
        report.failed,
    )
    return report


def _fail(report: ApplyReport, change: ChangeRecord, reason: str) -> None:
    report.failed += 1
    message = f"{change.action.value} {change.path}: {reason}"
    report.errors.append(message)
    logger.warning("Failed to apply %s", message)


def _resolve_within(root: Path, rel_path: str) -> Optional[Path]:
    """Resolve a relative path under root, returning None on traversal."""
    resolved_root = root.resolve()
    candidate = (resolved_root / rel_path).resolve()
    if candidate == resolved_root or not candidate.is_relative_to(resolved_root):
        return None
    return candidate


def _prune_empty_parents(directory: Path, stop_at: Path) -> None:
    stop = stop_at.resolve()
    current = directory
    while current != stop and current.is_relative_to(stop):
        try:
            current.rmdir()
        except OSError:
            break
        current = current.parent


__all__ = ["ApplyReport", "apply_changes"]
