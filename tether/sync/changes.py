"""Manifest diffing and the persisted change list."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List

from ..errors import FileAccessError, NotFoundError, ParseError
from .manifest import Manifest, join_path

logger = logging.getLogger("tether.sync.changes")


class ChangeAction(str, Enum):
    """What to do with a path so the destination matches the source."""
    ADD = "ADD"
    UPDATE = "UPDATE"
    REMOVE = "REMOVE"


class ChangeReason(str, Enum):
    NEW_FILE = "NEW_FILE"
    NEW_DIRECTORY = "NEW_DIRECTORY"
    HASH_MISMATCH = "HASH_MISMATCH"
    DELETED_REMOTE = "DELETED_REMOTE"
    DELETED_LOCAL = "DELETED_LOCAL"


class Priority(str, Enum):
    """Side whose content wins when a path differs on both."""
    REMOTE = "remote"
    LOCAL = "local"


_ACTION_ORDER = {ChangeAction.ADD: 0, ChangeAction.UPDATE: 1, ChangeAction.REMOVE: 2}


@dataclass(frozen=True)
class ChangeRecord:
    """One classified difference between two manifests."""

    action: ChangeAction
    path: str
    reason: ChangeReason
    priority: Priority = Priority.REMOTE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "file_path": self.path,
            "reason": self.reason.value,
            "priority": self.priority.value,
        }

    @classmethod
    def from_dict(cls, data: Any, index: int = 0) -> "ChangeRecord":
        if not isinstance(data, dict):
            raise ParseError(f"differences[{index}] must be an object")
        for key in ("action", "file_path", "reason", "priority"):
            if not isinstance(data.get(key), str):
                raise ParseError(f"differences[{index}] is missing '{key}'")
        try:
            return cls(
                action=ChangeAction(data["action"]),
                path=data["file_path"],
                reason=ChangeReason(data["reason"]),
                priority=Priority(data["priority"]),
            )
        except ValueError as exc:
            raise ParseError(f"differences[{index}]: {exc}") from exc


@dataclass
class ChangeList:
    """Ordered change records plus the time they were computed."""

    records: List[ChangeRecord] = field(default_factory=list)
    analysis_date: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[ChangeRecord]:
        return iter(self.records)

    @property
    def has_changes(self) -> bool:
        return bool(self.records)

    def by_action(self, action: ChangeAction) -> List[ChangeRecord]:
        return [record for record in self.records if record.action == action]

    def summary(self) -> str:
        parts = []
        added = len(self.by_action(ChangeAction.ADD))
        updated = len(self.by_action(ChangeAction.UPDATE))
        removed = len(self.by_action(ChangeAction.REMOVE))
        if added:
            parts.append(f"{added} to add")
        if updated:
            parts.append(f"{updated} to update")
        if removed:
            parts.append(f"{removed} to remove")
        return ", ".join(parts) if parts else "no changes"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "differences": [record.to_dict() for record in self.records],
            "analysis_date": self.analysis_date,
            "total_differences": len(self.records),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ChangeList":
        if not isinstance(data, dict):
            raise ParseError("Change list document must be a JSON object")
        differences = data.get("differences")
        analysis_date = data.get("analysis_date")
        total = data.get("total_differences")
        if not isinstance(differences, list):
            raise ParseError("Change list is missing 'differences'")
        if not isinstance(analysis_date, str):
            raise ParseError("Change list is missing 'analysis_date'")
        if not isinstance(total, int) or isinstance(total, bool):
            raise ParseError("Change list is missing 'total_differences'")
        if total != len(differences):
            raise ParseError(
                f"Change list has {len(differences)} records but total_differences is {total}"
            )
        records = [ChangeRecord.from_dict(item, idx) for idx, item in enumerate(differences)]
        return cls(records=records, analysis_date=analysis_date)

    def save(self, path: Path) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as exc:
            raise FileAccessError(f"Failed to write change list {path}: {exc}", path=str(path)) from exc
        logger.debug("Saved change list to %s (%d records)", path, len(self.records))

    @classmethod
    def load(cls, path: Path) -> "ChangeList":
        if not path.exists():
            raise NotFoundError(f"No change list at {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Change list {path} is not valid JSON: {exc}") from exc
        except OSError as exc:
            raise FileAccessError(f"Failed to read change list {path}: {exc}", path=str(path)) from exc
        return cls.from_dict(data)


def compute_changes(
    local: Manifest,
    remote: Manifest,
    priority: Priority = Priority.REMOTE,
) -> ChangeList:
    """Classify every path that differs between two manifests.

    ``remote`` is the side being copied from: its files missing locally are
    ``ADD``, its files with a different digest are ``UPDATE``, and local files
    it lacks are ``REMOVE``. A path that differs on both sides is an ``UPDATE``
    taken from ``remote``; there is no three-way merge and timestamps are not
    consulted. Records are ordered by path, then action.
    """
    records: List[ChangeRecord] = []

    for dir_path, remote_dir in remote.directories.items():
        local_dir = local.directories.get(dir_path)
        if local_dir is None:
            for name in remote_dir.files:
                records.append(ChangeRecord(
                    action=ChangeAction.ADD,
                    path=join_path(dir_path, name),
                    reason=ChangeReason.NEW_DIRECTORY,
                    priority=priority,
                ))
            continue

        if local_dir.directory_hash == remote_dir.directory_hash and local_dir.files == remote_dir.files:
            continue

        for name, remote_hash in remote_dir.files.items():
            local_hash = local_dir.files.get(name)
            if local_hash is None:
                records.append(ChangeRecord(
                    action=ChangeAction.ADD,
                    path=join_path(dir_path, name),
                    reason=ChangeReason.NEW_FILE,
                    priority=priority,
                ))
            elif local_hash != remote_hash:
                records.append(ChangeRecord(
                    action=ChangeAction.UPDATE,
                    path=join_path(dir_path, name),
                    reason=ChangeReason.HASH_MISMATCH,
                    priority=priority,
                ))

    removed_reason = (
        ChangeReason.DELETED_REMOTE if priority == Priority.REMOTE else ChangeReason.DELETED_LOCAL
    )
    for dir_path, local_dir in local.directories.items():
        remote_files = remote.directories[dir_path].files if dir_path in remote.directories else {}
        for name in local_dir.files:
            if name not in remote_files:
                records.append(ChangeRecord(
                    action=ChangeAction.REMOVE,
                    path=join_path(dir_path, name),
                    reason=removed_reason,
                    priority=priority,
                ))

    records.sort(key=lambda record: (record.path, _ACTION_ORDER[record.action]))
    return ChangeList(records=records)


def plan_pull(local: Manifest, remote: Manifest) -> ChangeList:
    """Changes that make the local tree match the remote snapshot."""
    return compute_changes(local, remote, Priority.REMOTE)


def plan_push(local: Manifest, remote: Manifest) -> ChangeList:
    """Changes that make the remote snapshot match the local tree."""
    return compute_changes(remote, local, Priority.LOCAL)


__all__ = [
    "ChangeAction",
    "ChangeList",
    "ChangeReason",
    "ChangeRecord",
    "Priority",
    "compute_changes",
    "plan_pull",
    "plan_push",
]
