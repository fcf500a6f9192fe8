"""Content synchronization with a GitHub branch."""

from __future__ import annotations

from .apply import ApplyReport, apply_changes
from .archive import ArchiveEntry, collect_entries, pack, read_entries, unpack
from .changes import (
    ChangeAction,
    ChangeList,
    ChangeReason,
    ChangeRecord,
    Priority,
    compute_changes,
    plan_pull,
    plan_push,
)
from .client import SyncClient, SyncMode, SyncPhase, SyncResult, SyncSettings
from .github import GitHubClient, RemoteSettings, TreeEntry
from .hashing import hash_bytes, hash_directory, hash_file
from .manifest import DirectoryEntry, Manifest, ManifestBuilder
from .pipeline import BlobBatch, BlobInfo, PipelineState, PushOutcome, PushPipeline
from .workspace import ScratchLayout, scratch_guard, scratch_lock

__all__ = [
    # Hashing
    "hash_bytes",
    "hash_directory",
    "hash_file",
    # Manifest
    "DirectoryEntry",
    "Manifest",
    "ManifestBuilder",
    # Changes
    "ChangeAction",
    "ChangeList",
    "ChangeReason",
    "ChangeRecord",
    "Priority",
    "compute_changes",
    "plan_pull",
    "plan_push",
    # Apply
    "ApplyReport",
    "apply_changes",
    # Archive
    "ArchiveEntry",
    "collect_entries",
    "pack",
    "read_entries",
    "unpack",
    # Remote
    "GitHubClient",
    "RemoteSettings",
    "TreeEntry",
    "BlobBatch",
    "BlobInfo",
    "PipelineState",
    "PushOutcome",
    "PushPipeline",
    # Client
    "ScratchLayout",
    "scratch_guard",
    "scratch_lock",
    "SyncClient",
    "SyncMode",
    "SyncPhase",
    "SyncResult",
    "SyncSettings",
]
