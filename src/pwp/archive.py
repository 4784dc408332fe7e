"""Zip extraction helpers used while provisioning a site.

Release archives wrap their content in a single top-level folder
(``wordpress/``, ``sqlite-integration/``). :func:`extract_archive` strips that
folder so the content lands directly under the destination.
"""
from __future__ import annotations

import os
import shutil
import stat
import zipfile
import zlib
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import IO

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644


class ArchiveError(RuntimeError):
    """Base class for archive extraction failures."""


class ArchiveOpenError(ArchiveError):
    """Raised when an archive is missing or is not a readable zip file."""


class ExtractionError(ArchiveError):
    """Raised when an individual archive entry cannot be extracted."""


@dataclass(frozen=True, slots=True)
class ArchiveEntry:
    """A single member of an opened archive."""

    name: str
    is_directory: bool
    mode: int
    info: zipfile.ZipInfo = field(repr=False, compare=False)

    @property
    def parts(self) -> tuple[str, ...]:
        """Path components of the entry, without empty segments."""
        return tuple(part for part in PurePosixPath(self.name).parts if part not in ("", "/"))

    @classmethod
    def from_info(cls, info: zipfile.ZipInfo) -> ArchiveEntry:
        """Build an entry from zip metadata, keeping only permission bits."""
        unix_mode = (info.external_attr >> 16) & 0o7777
        is_directory = info.is_dir() or stat.S_ISDIR(info.external_attr >> 16)
        permissions = stat.S_IMODE(unix_mode)
        if not permissions:
            permissions = DEFAULT_DIR_MODE if is_directory else DEFAULT_FILE_MODE
        return cls(name=info.filename, is_directory=is_directory, mode=permissions, info=info)


@dataclass(slots=True)
class ExtractionResult:
    """Summary of a completed extraction."""

    destination: Path
    root_prefix: str
    files: list[Path] = field(default_factory=list)
    directories: list[Path] = field(default_factory=list)


def common_root_prefix(entries: Sequence[ArchiveEntry]) -> tuple[str, ...]:
    """Return the longest leading directory path shared by every entry.

    File entries contribute only their parent directories, so an archive
    holding ``X/a.txt`` and ``X/sub/b.txt`` yields ``("X",)`` while one with
    sibling top-level folders yields ``()``.
    """
    prefix: tuple[str, ...] | None = None
    for entry in entries:
        parts = entry.parts if entry.is_directory else entry.parts[:-1]
        if prefix is None:
            prefix = parts
            continue
        shared = 0
        for left, right in zip(prefix, parts):
            if left != right:
                break
            shared += 1
        prefix = prefix[:shared]
        if not prefix:
            break
    return prefix or ()


@contextmanager
def open_archive(archive_path: Path) -> Iterator[tuple[zipfile.ZipFile, list[ArchiveEntry]]]:
    """Open *archive_path* for random access and list its entries."""
    try:
        handle = zipfile.ZipFile(archive_path)
    except FileNotFoundError as exc:
        raise ArchiveOpenError(f"Archive not found: {archive_path}") from exc
    except (zipfile.BadZipFile, OSError) as exc:
        raise ArchiveOpenError(f"Cannot open archive {archive_path}: {exc}") from exc
    with handle:
        yield handle, [ArchiveEntry.from_info(info) for info in handle.infolist()]


def extract_archive(
    archive_path: Path,
    destination: Path,
    *,
    strip_root: bool = True,
    remove_source: bool = True,
) -> ExtractionResult:
    """Extract *archive_path* into *destination*.

    The archive's common root folder is removed from every member name when
    *strip_root* is set. The first failing entry aborts the extraction; files
    already written are left in place. The archive is deleted on success
    unless *remove_source* is false.
    """
    with open_archive(archive_path) as (handle, entries):
        prefix = common_root_prefix(entries)
        root_prefix = "/".join(prefix) + "/" if prefix else ""
        result = ExtractionResult(destination=destination, root_prefix=root_prefix)

        try:
            destination.mkdir(mode=DEFAULT_DIR_MODE, parents=True, exist_ok=True)
        except OSError as exc:
            raise ExtractionError(f"Cannot create destination {destination}: {exc}") from exc

        strip = len(prefix) if strip_root else 0
        for entry in entries:
            relative = entry.parts[strip:]
            if not relative:
                continue
            target = _resolve_target(destination, relative, entry.name)
            if entry.is_directory:
                _make_directory(target, entry.mode)
                result.directories.append(target)
                continue
            _write_file(handle, entry, target)
            result.files.append(target)

    if remove_source:
        try:
            archive_path.unlink()
        except OSError as exc:
            raise ExtractionError(f"Cannot remove archive {archive_path}: {exc}") from exc
    return result


def _resolve_target(destination: Path, relative: Sequence[str], name: str) -> Path:
    if any(part == ".." for part in relative) or PurePosixPath(name).is_absolute():
        raise ExtractionError(f"Refusing to extract entry outside destination: {name}")
    return destination.joinpath(*relative)


def _make_directory(target: Path, mode: int) -> None:
    try:
        target.mkdir(parents=True, exist_ok=True)
        target.chmod(mode | stat.S_IRWXU)
    except OSError as exc:
        raise ExtractionError(f"Cannot create directory {target}: {exc}") from exc


def _write_file(handle: zipfile.ZipFile, entry: ArchiveEntry, target: Path) -> None:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ExtractionError(f"Cannot create directory {target.parent}: {exc}") from exc

    try:
        source: IO[bytes] = handle.open(entry.info)
    except (zipfile.BadZipFile, OSError, RuntimeError) as exc:
        raise ExtractionError(f"Cannot open archive entry {entry.name}: {exc}") from exc

    with source:
        try:
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, entry.mode)
        except OSError as exc:
            raise ExtractionError(f"Cannot create {target}: {exc}") from exc
        with os.fdopen(fd, "wb") as out:
            try:
                shutil.copyfileobj(source, out)
            except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as exc:
                raise ExtractionError(f"Failed to extract {entry.name}: {exc}") from exc
    try:
        os.chmod(target, entry.mode)
    except OSError as exc:
        raise ExtractionError(f"Cannot set permissions on {target}: {exc}") from exc


__all__ = [
    "ArchiveEntry",
    "ArchiveError",
    "ArchiveOpenError",
    "ExtractionError",
    "ExtractionResult",
    "common_root_prefix",
    "extract_archive",
    "open_archive",
]
