"""Backup archive extraction.

A backup archive is a zip (as written by Odoo's database manager) or a
tarball holding:
- dump.sql     plain-format pg_dump output
- filestore/   attachment tree (bucket-hash or nested-legacy layout)

Archives are unpacked into a private scratch directory that is removed on
every exit path.
"""

import shutil
import tarfile
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Generator, Optional
from zipfile import BadZipFile, ZipFile, ZipInfo, is_zipfile

from odoo_restore.core.exceptions import InvalidArchive, MissingArchiveMember
from odoo_restore.core.output import console


DUMP_MEMBER = "dump.sql"
FILESTORE_MEMBER = "filestore"
SCRATCH_PREFIX = "odoo-restore-"


@dataclass(frozen=True)
class ExtractedBackup:
    """Paths of the required members inside the scratch directory."""
    scratch_dir: Path
    dump_path: Path
    filestore_root: Path


@contextmanager
def scratch_directory(
    prefix: str = SCRATCH_PREFIX,
    parent: Optional[Path] = None,
) -> Generator[Path, None, None]:
    """Create a private (0700) scratch directory, always removed on exit.

    Removal failures are reported as warnings and never mask the outcome
    of the block.
    """
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=parent))
    try:
        yield path
    finally:
        remove_scratch(path)


def remove_scratch(path: Path) -> Optional[str]:
    """Remove a scratch directory.

    Returns:
        The error message if removal failed, else None
    """
    if not path.exists():
        return None
    try:
        shutil.rmtree(path)
    except OSError as e:
        console.warn(f"Could not remove scratch directory {path}: {e}")
        return str(e)
    console.debug(f"Removed scratch directory {path}")
    return None


def _validate_member_path(name: str) -> PurePosixPath:
    """Reject absolute, drive-style and parent-relative entry names."""
    if not name:
        raise InvalidArchive("Archive entry has empty name")

    path = PurePosixPath(name)
    if path.is_absolute() or path.anchor:
        raise InvalidArchive(f"Archive entry uses absolute path: {name}")

    if any(part == ".." for part in path.parts):
        raise InvalidArchive(f"Archive entry has invalid path: {name}")

    if path.parts and ":" in path.parts[0]:
        raise InvalidArchive(f"Archive entry has invalid drive-style path: {name}")

    return path


def _ensure_inside(root: Path, target: Path, name: str) -> None:
    try:
        target.resolve().relative_to(root.resolve())
    except ValueError as e:
        raise InvalidArchive(f"Path traversal detected in archive entry: {name}") from e


def _is_symlink_entry(info: ZipInfo) -> bool:
    mode = (info.external_attr >> 16) & 0o170000
    return mode == 0o120000


def _extract_zip(archive_path: Path, dest: Path) -> None:
    try:
        with ZipFile(archive_path, "r") as archive:
            for info in archive.infolist():
                relative = _validate_member_path(info.filename)
                if _is_symlink_entry(info):
                    raise InvalidArchive(f"Archive entry is a symlink: {info.filename}")

                target = dest.joinpath(*relative.parts) if relative.parts else dest
                _ensure_inside(dest, target, info.filename)

                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue

                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(info, "r") as source, target.open("wb") as destination:
                    shutil.copyfileobj(source, destination)
    except BadZipFile as e:
        raise InvalidArchive(
            f"Corrupt zip archive: {archive_path}",
            details=[str(e)],
        ) from e


def _extract_tar(archive_path: Path, dest: Path) -> None:
    try:
        with tarfile.open(archive_path, "r:*") as archive:
            members = archive.getmembers()
            for member in members:
                relative = _validate_member_path(member.name)
                if not (member.isfile() or member.isdir()):
                    raise InvalidArchive(
                        f"Archive entry is not a regular file or directory: {member.name}"
                    )
                target = dest.joinpath(*relative.parts) if relative.parts else dest
                _ensure_inside(dest, target, member.name)

            for member in members:
                relative = PurePosixPath(member.name)
                target = dest.joinpath(*relative.parts) if relative.parts else dest
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue

                target.parent.mkdir(parents=True, exist_ok=True)
                source = archive.extractfile(member)
                if source is None:
                    raise InvalidArchive(f"Cannot read archive entry: {member.name}")
                with source, target.open("wb") as destination:
                    shutil.copyfileobj(source, destination)
    except tarfile.TarError as e:
        raise InvalidArchive(
            f"Corrupt tar archive: {archive_path}",
            details=[str(e)],
        ) from e


def extract_backup(archive_path: Path, scratch_dir: Path) -> ExtractedBackup:
    """Unpack a backup archive and locate its required members.

    Args:
        archive_path: Path to the .zip or tarball
        scratch_dir: Private directory to unpack into

    Returns:
        ExtractedBackup with paths to dump.sql and filestore/

    Raises:
        MissingArchiveMember: If the archive or a required member is absent
        InvalidArchive: If the archive is corrupt, unsupported or unsafe
    """
    if not archive_path.is_file():
        raise MissingArchiveMember(
            f"Backup archive not found: {archive_path}",
            hint="Pass the path to the backup .zip",
        )

    console.step(f"Unpacking {archive_path} -> {scratch_dir}")

    try:
        if is_zipfile(archive_path):
            _extract_zip(archive_path, scratch_dir)
        elif tarfile.is_tarfile(archive_path):
            _extract_tar(archive_path, scratch_dir)
        else:
            raise InvalidArchive(
                f"Unsupported archive format: {archive_path}",
                hint="Expected a .zip or a tarball containing dump.sql and filestore/",
            )
    except OSError as e:
        raise InvalidArchive(
            f"Failed to unpack {archive_path}",
            details=[str(e)],
        ) from e

    dump_path = scratch_dir / DUMP_MEMBER
    filestore_root = scratch_dir / FILESTORE_MEMBER

    if not dump_path.is_file():
        raise MissingArchiveMember(
            f"{DUMP_MEMBER} not found in {archive_path.name}",
            hint="The archive must contain a top-level dump.sql (plain-format pg_dump)",
        )
    if not filestore_root.is_dir():
        raise MissingArchiveMember(
            f"{FILESTORE_MEMBER}/ not found in {archive_path.name}",
            hint="The archive must contain a top-level filestore/ directory",
        )

    return ExtractedBackup(
        scratch_dir=scratch_dir,
        dump_path=dump_path,
        filestore_root=filestore_root,
    )
