"""Content manifest generation and persistence."""

from __future__ import annotations

import fnmatch
import json
import logging
import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from ..errors import FileAccessError, NotFoundError, ParseError
from .hashing import hash_directory, hash_file

logger = logging.getLogger("tether.sync.manifest")

ROOT_DIRECTORY = "."


@dataclass
class DirectoryEntry:
    """Digests for the files directly inside one directory."""

    directory_hash: str
    files: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_files(cls, files: Dict[str, str]) -> "DirectoryEntry":
        return cls(directory_hash=hash_directory(files), files=dict(files))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "directory_hash": self.directory_hash,
            "files": dict(sorted(self.files.items())),
        }

    @classmethod
    def from_dict(cls, data: Any, dir_path: str) -> "DirectoryEntry":
        if not isinstance(data, dict):
            raise ParseError(f"Directory '{dir_path}' must be an object")
        directory_hash = data.get("directory_hash")
        files = data.get("files")
        if not isinstance(directory_hash, str):
            raise ParseError(f"Directory '{dir_path}' is missing 'directory_hash'")
        if not isinstance(files, dict):
            raise ParseError(f"Directory '{dir_path}' is missing 'files'")
        for name, digest in files.items():
            if "/" in name:
                raise ParseError(f"File key '{name}' in '{dir_path}' must not contain '/'")
            if not isinstance(digest, str):
                raise ParseError(f"Digest for '{dir_path}/{name}' must be a string")
        return cls(directory_hash=directory_hash, files=dict(files))


@dataclass
class Manifest:
    """Snapshot of a directory tree reduced to per-file and per-directory digests."""

    manifest_type: str = "local"
    created_date: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    directories: Dict[str, DirectoryEntry] = field(default_factory=dict)

    @property
    def total_files(self) -> int:
        return sum(len(entry.files) for entry in self.directories.values())

    def flatten(self) -> Dict[str, str]:
        """Return ``{relative path: digest}`` for every file."""
        flat: Dict[str, str] = {}
        for dir_path, entry in self.directories.items():
            for name, digest in entry.files.items():
                flat[join_path(dir_path, name)] = digest
        return flat

    def same_content(self, other: "Manifest") -> bool:
        """Structural equality: same directories, same file digests."""
        return self.flatten() == other.flatten()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": {
                "created_date": self.created_date,
                "total_files": self.total_files,
                "manifest_type": self.manifest_type,
            },
            "directories": {
                dir_path: self.directories[dir_path].to_dict()
                for dir_path in sorted(self.directories)
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Manifest":
        """Validate and parse a manifest document.

        Raises:
            ParseError: a required field is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise ParseError("Manifest document must be a JSON object")
        metadata = data.get("metadata")
        directories = data.get("directories")
        if not isinstance(metadata, dict):
            raise ParseError("Manifest is missing 'metadata'")
        if not isinstance(directories, dict):
            raise ParseError("Manifest is missing 'directories'")
        created_date = metadata.get("created_date")
        total_files = metadata.get("total_files")
        if not isinstance(created_date, str):
            raise ParseError("Manifest metadata is missing 'created_date'")
        if not isinstance(total_files, int) or isinstance(total_files, bool):
            raise ParseError("Manifest metadata is missing 'total_files'")

        manifest = cls(
            manifest_type=str(metadata.get("manifest_type", "local")),
            created_date=created_date,
        )
        for dir_path, entry in directories.items():
            manifest.directories[dir_path] = DirectoryEntry.from_dict(entry, dir_path)

        if manifest.total_files != total_files:
            raise ParseError(
                f"Manifest lists {manifest.total_files} files but metadata says {total_files}"
            )
        return manifest

    def save(self, path: Path) -> None:
        """Save manifest to a JSON file."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as exc:
            raise FileAccessError(f"Failed to write manifest {path}: {exc}", path=str(path)) from exc
        logger.debug("Saved %s manifest to %s (%d files)", self.manifest_type, path, self.total_files)

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        """Load manifest from a JSON file.

        Raises:
            NotFoundError: no manifest at ``path``.
            ParseError: the document is not valid JSON or fails validation.
        """
        if not path.exists():
            raise NotFoundError(f"No manifest at {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Manifest {path} is not valid JSON: {exc}") from exc
        except OSError as exc:
            raise FileAccessError(f"Failed to read manifest {path}: {exc}", path=str(path)) from exc
        return cls.from_dict(data)

    @classmethod
    def from_files(cls, files: Dict[str, str], manifest_type: str = "local") -> "Manifest":
        """Build a manifest from ``{relative path: digest}``."""
        grouped: Dict[str, Dict[str, str]] = {}
        for rel_path, digest in files.items():
            dir_path, name = split_path(rel_path)
            grouped.setdefault(dir_path, {})[name] = digest
        manifest = cls(manifest_type=manifest_type)
        for dir_path, dir_files in grouped.items():
            manifest.directories[dir_path] = DirectoryEntry.from_files(dir_files)
        return manifest


class ManifestBuilder:
    """Builds manifests by scanning a directory tree."""

    def __init__(
        self,
        root: Path,
        manifest_type: str = "local",
        exclude_patterns: Optional[Sequence[str]] = None,
    ):
        self.root = root
        self.manifest_type = manifest_type
        self.exclude_patterns = list(exclude_patterns) if exclude_patterns else []
        self.errors: List[FileAccessError] = []

    def build(self) -> Manifest:
        """Build a manifest by scanning the root.

        Files that cannot be read are recorded on ``self.errors`` and left out.

        Raises:
            NotFoundError: the root is missing or contains no hashable files.
        """
        if not self.root.is_dir():
            raise NotFoundError(f"Manifest root {self.root} does not exist or is not a directory")

        self.errors = []
        files: Dict[str, str] = {}
        for file_path in self._iter_files():
            rel_path = file_path.relative_to(self.root).as_posix()
            try:
                _check_portable_name(rel_path)
                files[rel_path] = hash_file(file_path)
            except FileAccessError as exc:
                logger.warning("Skipping file: %s", exc)
                self.errors.append(exc)

        if not files:
            raise NotFoundError(f"No files found under {self.root}")

        manifest = Manifest.from_files(files, manifest_type=self.manifest_type)
        logger.info(
            "Built %s manifest with %d files in %d directories (%d unreadable)",
            self.manifest_type,
            manifest.total_files,
            len(manifest.directories),
            len(self.errors),
        )
        return manifest

    def _iter_files(self) -> Iterator[Path]:
        """Iterate over all files under the root in sorted order."""
        for file_path in sorted(self.root.rglob("*")):
            if not file_path.is_file():
                continue

            rel_path = file_path.relative_to(self.root).as_posix()
            if self._is_excluded(rel_path):
                continue

            yield file_path

    def _is_excluded(self, rel_path: str) -> bool:
        """Check if a path matches any exclude pattern."""
        for pattern in self.exclude_patterns:
            if fnmatch.fnmatch(rel_path, pattern):
                return True
            # Also check just the filename
            if fnmatch.fnmatch(posixpath.basename(rel_path), pattern):
                return True
        return False


def _check_portable_name(rel_path: str) -> None:
    """Reject paths the manifest document and the remote cannot represent."""
    try:
        rel_path.encode("utf-8")
    except UnicodeEncodeError as exc:
        shown = rel_path.encode("utf-8", "backslashreplace").decode("utf-8")
        raise FileAccessError(f"File name is not valid UTF-8: {shown}", path=shown) from exc


def split_path(rel_path: str) -> Tuple[str, str]:
    """Split ``a/b/c.txt`` into ``("a/b", "c.txt")``; root files map to ``"."``."""
    dir_path, name = posixpath.split(rel_path)
    return (dir_path or ROOT_DIRECTORY, name)


def join_path(dir_path: str, name: str) -> str:
    if dir_path == ROOT_DIRECTORY:
        return name
    return f"{dir_path}/{name}"


__all__ = [
    "DirectoryEntry",
    "Manifest",
    "ManifestBuilder",
    "ROOT_DIRECTORY",
    "join_path",
    "split_path",
]
