"""Zip archive codec for snapshot downloads and push uploads."""

from __future__ import annotations

import io
import logging
import os
import stat
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterator, List, Sequence, Tuple

from ..errors import FileAccessError, ParseError

logger = logging.getLogger("tether.sync.archive")

MODE_FILE = "100644"
MODE_EXECUTABLE = "100755"


@dataclass(frozen=True)
class ArchiveEntry:
    relative_path: str
    content: bytes
    mode: str = MODE_FILE

    @property
    def executable(self) -> bool:
        return self.mode == MODE_EXECUTABLE


def collect_entries(root: Path) -> List[Tuple[Path, str]]:
    """Return ``(absolute path, relative path)`` for every file under root."""
    entries = [
        (path, path.relative_to(root).as_posix())
        for path in root.rglob("*")
        if path.is_file()
    ]
    entries.sort(key=lambda item: item[1])
    return entries


def pack(entries: Sequence[Tuple[Path, str]]) -> bytes:
    """Pack files into a deflated zip, in the order given.

    Raises:
        FileAccessError: a source file could not be read.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for abs_path, rel_path in entries:
            try:
                st_mode = abs_path.stat().st_mode
                data = abs_path.read_bytes()
            except OSError as exc:
                raise FileAccessError(
                    f"Failed to pack {rel_path}: {exc.strerror or exc}", path=str(abs_path)
                ) from exc
            info = zipfile.ZipInfo(rel_path)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = (stat.S_IFREG | stat.S_IMODE(st_mode)) << 16
            archive.writestr(info, data)
    logger.debug("Packed %d entries (%d bytes)", len(entries), buffer.tell())
    return buffer.getvalue()


def unpack(data: bytes, dest_dir: Path, strip_root: bool = False) -> List[str]:
    """Extract an archive into ``dest_dir`` and return the extracted file paths.

    With ``strip_root`` a single top-level folder shared by every entry is
    dropped, which is how hosted branch archives are laid out.

    Raises:
        ParseError: the data is not a readable zip or an entry escapes dest_dir.
        FileAccessError: a file could not be written.
    """
    extracted: List[str] = []
    dest_root = dest_dir.resolve()
    with _open(data) as archive:
        members = [info for info in archive.infolist() if not info.is_dir()]
        prefix = _common_root(members) if strip_root else ""

        for info in members:
            rel_path = info.filename[len(prefix):]
            if not rel_path:
                continue
            target = (dest_root / rel_path).resolve()
            if not target.is_relative_to(dest_root) or target == dest_root:
                raise ParseError(f"Archive entry '{info.filename}' escapes {dest_dir}")
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(_read_member(archive, info))
                if _mode_of(info) == MODE_EXECUTABLE:
                    os.chmod(target, target.stat().st_mode | 0o111)
            except OSError as exc:
                raise FileAccessError(
                    f"Failed to extract {rel_path}: {exc.strerror or exc}", path=str(target)
                ) from exc
            extracted.append(PurePosixPath(rel_path).as_posix())

    logger.info("Unpacked %d files into %s", len(extracted), dest_dir)
    return extracted


def read_entries(data: bytes) -> Iterator[ArchiveEntry]:
    """Yield the file entries of an archive with their content and blob mode."""
    with _open(data) as archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            yield ArchiveEntry(
                relative_path=info.filename,
                content=_read_member(archive, info),
                mode=_mode_of(info),
            )


def _open(data: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise ParseError(f"Malformed archive: {exc}") from exc


def _read_member(archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> bytes:
    try:
        return archive.read(info)
    except (zipfile.BadZipFile, EOFError) as exc:
        raise ParseError(f"Corrupt archive entry '{info.filename}': {exc}") from exc


def _mode_of(info: zipfile.ZipInfo) -> str:
    st_mode = info.external_attr >> 16
    if st_mode & 0o111:
        return MODE_EXECUTABLE
    return MODE_FILE


def _common_root(members: Sequence[zipfile.ZipInfo]) -> str:
    """Return ``"top/"`` when every entry sits under the same folder."""
    roots = {info.filename.split("/", 1)[0] for info in members}
    if len(roots) != 1:
        return ""
    root = roots.pop()
    if all("/" in info.filename for info in members):
        return f"{root}/"
    return ""


__all__ = [
    "ArchiveEntry",
    "MODE_EXECUTABLE",
    "MODE_FILE",
    "collect_entries",
    "pack",
    "read_entries",
    "unpack",
]
