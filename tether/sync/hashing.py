"""Content digests for files and directories."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Mapping

from ..errors import FileAccessError

CHUNK_SIZE = 8192


def hash_file(file_path: Path) -> str:
    """Compute the SHA-256 hex digest of a file.

    Raises:
        FileAccessError: the file could not be opened or read.
    """
    hasher = hashlib.sha256()
    try:
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                hasher.update(chunk)
    except OSError as exc:
        raise FileAccessError(
            f"Failed to read {file_path}: {exc.strerror or exc}",
            path=str(file_path),
        ) from exc
    return hasher.hexdigest()


def hash_bytes(data: bytes) -> str:
    """Compute the SHA-256 hex digest of in-memory content."""
    return hashlib.sha256(data).hexdigest()


def hash_directory(file_hashes: Mapping[str, str]) -> str:
    """Aggregate digest over ``(file name, digest)`` pairs sorted by name.

    Equal mappings produce equal digests whatever their insertion order.
    """
    hasher = hashlib.sha256()
    for name in sorted(file_hashes):
        hasher.update(name.encode("utf-8", "surrogateescape"))
        hasher.update(b"\0")
        hasher.update(file_hashes[name].encode("ascii"))
        hasher.update(b"\n")
    return hasher.hexdigest()


__all__ = ["hash_file", "hash_bytes", "hash_directory", "CHUNK_SIZE"]
