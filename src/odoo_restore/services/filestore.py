"""Filestore layout detection and deployment.

Odoo stores attachments under <data_dir>/filestore/<db_name>/ in two-hex
character buckets (ab/abcdef...). Backups come in two conventions:
- bucket-hash:    filestore/ab/..., filestore/cd/...
- nested-legacy:  filestore/<old_db_name>/ab/...

Deployment replaces the target database's subtree wholesale, then hands
it to the owner of <data_dir>/filestore.
"""

import os
import re
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from odoo_restore.core.context import ExecutionContext
from odoo_restore.core.exceptions import AmbiguousFilestoreLayout, FilestoreDeploymentFailure


BUCKET_NAME_PATTERN = re.compile(r"^[0-9a-f]{2}$")
DEFAULT_STALE_DIRS = ("sessions", "addons")


class FilestoreLayout(Enum):
    """Directory convention of a filestore tree."""
    BUCKET_HASH = "bucket-hash"
    NESTED_LEGACY = "nested-legacy"


@dataclass(frozen=True)
class FilestoreSource:
    """A classified filestore and its true root."""
    layout: FilestoreLayout
    root: Path


@dataclass(frozen=True)
class Ownership:
    """uid/gid pair used as the ownership template."""
    uid: int
    gid: int

    @classmethod
    def of(cls, path: Path) -> "Ownership":
        st = path.stat()
        return cls(uid=st.st_uid, gid=st.st_gid)


def detect_layout(filestore_root: Path) -> FilestoreSource:
    """Classify a filestore tree.

    A single subdirectory whose name is not a two-hex bucket is taken as
    the nested-legacy root. Anything else (several subdirectories, a single
    hex-like one, none at all) is treated as bucket-hash.

    Raises:
        AmbiguousFilestoreLayout: If the root cannot be listed, or the
            nested candidate is a symlink
    """
    try:
        subdirs = sorted(
            entry for entry in filestore_root.iterdir()
            if entry.is_dir()
        )
    except OSError as e:
        raise AmbiguousFilestoreLayout(
            f"Cannot list filestore directory: {filestore_root}",
            details=[str(e)],
        ) from e

    if len(subdirs) == 1 and not BUCKET_NAME_PATTERN.match(subdirs[0].name):
        candidate = subdirs[0]
        if candidate.is_symlink():
            raise AmbiguousFilestoreLayout(
                f"Nested filestore directory is a symlink: {candidate.name}",
                hint="Repack the archive with the filestore contents inline",
            )
        return FilestoreSource(layout=FilestoreLayout.NESTED_LEGACY, root=candidate)

    return FilestoreSource(layout=FilestoreLayout.BUCKET_HASH, root=filestore_root)


def _file_manifest(root: Path) -> dict[str, int]:
    """Map relative file path -> size for every regular file under root."""
    manifest: dict[str, int] = {}
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            path = Path(dirpath) / filename
            manifest[path.relative_to(root).as_posix()] = path.lstat().st_size
    return manifest


def _chown_tree(root: Path, owner: Ownership) -> None:
    """Apply owner to root and everything below it, without following links."""
    os.chown(root, owner.uid, owner.gid, follow_symlinks=False)
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            os.chown(Path(dirpath) / name, owner.uid, owner.gid, follow_symlinks=False)


class FilestoreRelocator:
    """Deploy an extracted filestore into the instance data directory."""

    def __init__(
        self,
        ctx: ExecutionContext,
        *,
        stale_dirs: Optional[list[str]] = None,
    ) -> None:
        self.ctx = ctx
        self.stale_dirs = list(stale_dirs) if stale_dirs is not None else list(DEFAULT_STALE_DIRS)

    @staticmethod
    def destination_for(data_dir: Path, database: str) -> Path:
        return data_dir / "filestore" / database

    def _ownership_template(self, parent: Path) -> Ownership:
        """Return the owner of <data_dir>/filestore, creating it if needed.

        A newly created filestore/ takes the owner of the data directory.
        """
        if not parent.exists():
            self.ctx.console.step(f"Creating {parent}")
            parent.mkdir(parents=True)
            data_dir_owner = Ownership.of(parent.parent)
            os.chown(parent, data_dir_owner.uid, data_dir_owner.gid)
        return Ownership.of(parent)

    def deploy(self, source: FilestoreSource, data_dir: Path, database: str) -> Path:
        """Replace <data_dir>/filestore/<database> with the source tree.

        Steps: remove old destination, copy, verify, discard the scratch
        source, chown to the filestore/ owner, drop stale per-instance
        directories.

        Returns:
            The destination path

        Raises:
            FilestoreDeploymentFailure: On any copy, verify or chown error
        """
        parent = data_dir / "filestore"
        dest = self.destination_for(data_dir, database)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Replace {dest} with {source.root} ({source.layout.value})")
            self.ctx.console.dry_run_msg(f"chown -R <owner of {parent}> {dest}")
            for name in self.stale_dirs:
                if (data_dir / name).exists():
                    self.ctx.console.dry_run_msg(f"Remove {data_dir / name}")
            return dest

        try:
            owner = self._ownership_template(parent)
            self.ctx.console.verbose(f"filestore parent owned by uid={owner.uid} gid={owner.gid}")

            if dest.exists() or dest.is_symlink():
                self.ctx.console.step(f"Removing existing filestore {dest}")
                if dest.is_dir() and not dest.is_symlink():
                    shutil.rmtree(dest)
                else:
                    dest.unlink()

            self.ctx.console.step(f"Copying filestore -> {dest}")
            shutil.copytree(source.root, dest, symlinks=True)

            expected = _file_manifest(source.root)
            actual = _file_manifest(dest)
            mismatched = sorted(
                rel for rel, size in expected.items() if actual.get(rel) != size
            )
            if mismatched:
                raise FilestoreDeploymentFailure(
                    f"Filestore copy verification failed for {len(mismatched)} file(s)",
                    details=mismatched[:10],
                )
            self.ctx.console.verbose(f"Verified {len(expected)} file(s)")

            # Source is scratch data; drop it once the copy is verified
            shutil.rmtree(source.root, ignore_errors=True)

            _chown_tree(dest, owner)

            self._remove_stale_dirs(data_dir)
        except FilestoreDeploymentFailure:
            raise
        except OSError as e:
            raise FilestoreDeploymentFailure(
                f"Failed to deploy filestore to {dest}",
                hint="The destination may be partially populated; rerun the restore",
                details=[str(e)],
            ) from e

        self.ctx.console.success(f"Filestore deployed to {dest}")
        return dest

    def _remove_stale_dirs(self, data_dir: Path) -> None:
        for name in self.stale_dirs:
            stale = data_dir / name
            if stale.is_dir() and not stale.is_symlink():
                self.ctx.console.step(f"Removing {stale}")
                shutil.rmtree(stale)
