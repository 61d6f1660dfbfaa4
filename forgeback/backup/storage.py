"""
Local storage layout.

Maps logical backup targets to paths under the storage root:
{root}/{kind}/{name}...

For dump-only kinds a repository owns these siblings:
- {name}/            incremental sync target
- {name}.dump{ext}   current dump artifact
- {name}.dump{ext}.old
- {name}.verified    present only while {name}.dump{ext} is the verified dump
- {name}.sync        log of the last incremental sync (transient)
- {name}.std/        last verified restore
- {name}.old/        previous verified restore
- {name}.tmp/        restore in progress (transient)
- {name}.lock        per-repository lock
"""

import grp
import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path

from .errors import PermissionPolicyFailed, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Repository:
    """A repository identified by (kind, name) and its local paths."""

    kind: str
    name: str
    remote_path: str
    local_dir: Path
    extension: str = ''

    def _sibling(self, suffix: str) -> Path:
        return self.local_dir / f"{self.name}{suffix}"

    @property
    def local_path(self) -> Path:
        return self.local_dir / self.name

    @property
    def dump_path(self) -> Path:
        return self._sibling(f".dump{self.extension}")

    @property
    def dump_old_path(self) -> Path:
        return self._sibling(f".dump{self.extension}.old")

    @property
    def verified_path(self) -> Path:
        return self._sibling('.verified')

    @property
    def sync_log_path(self) -> Path:
        return self._sibling('.sync')

    @property
    def std_path(self) -> Path:
        return self._sibling('.std')

    @property
    def old_path(self) -> Path:
        return self._sibling('.old')

    @property
    def tmp_path(self) -> Path:
        return self._sibling('.tmp')

    @property
    def lock_path(self) -> Path:
        return self._sibling('.lock')


class StorageLayout:
    """
    Manages the local storage tree rooted at an absolute path.
    """

    def __init__(self, root: str):
        """
        Initialize storage layout.

        Args:
            root: Absolute storage root

        Raises:
            ValueError: If root is not absolute
        """
        if not os.path.isabs(str(root)):
            raise ValueError(f"Storage root must be an absolute path: {root}")
        self.root = Path(root)

    def kind_dir(self, kind: str) -> Path:
        """Return the subtree for a source kind."""
        return self.root / kind

    def ensure(self, path: Path) -> Path:
        """
        Create a directory (and parents) if missing.

        Args:
            path: Directory to create

        Returns:
            The directory path

        Raises:
            StorageError: If the directory cannot be created
        """
        path = Path(path)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise StorageError(f"Permission denied creating {path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to create directory {path}: {e}")
        return path

    def repository(self, kind: str, name: str, remote_root: str, extension: str = '') -> Repository:
        """
        Build the Repository value for a remote repository.

        Args:
            kind: Source kind
            name: Repository name (directory entry under remote_root)
            remote_root: Remote root directory of the kind
            extension: Compression extension for dump artifacts

        Returns:
            Repository
        """
        remote_path = f"{remote_root.rstrip('/')}/{name}"
        return Repository(
            kind=kind,
            name=name,
            remote_path=remote_path,
            local_dir=self.kind_dir(kind),
            extension=extension
        )

    def apply_group_policy(self, path: Path, group: str):
        """
        Give a group shared ownership of a tree.

        Recursively assigns the group, grants it read/write (and execute where
        the owner has it, or on directories) and sets the set-group-ID bit on
        directories so new files inherit the group. No-op if group is empty.

        Args:
            path: Root of the tree
            group: Group name

        Raises:
            PermissionPolicyFailed: If the group is unknown or a change fails
        """
        if not group:
            return

        path = Path(path)
        if not path.exists():
            return

        try:
            gid = grp.getgrnam(group).gr_gid
        except KeyError:
            raise PermissionPolicyFailed(f"Unknown group: {group}")

        try:
            self._apply_to(path, gid)
            for dirpath, dirnames, filenames in os.walk(path):
                for entry in dirnames + filenames:
                    self._apply_to(Path(dirpath) / entry, gid)
        except OSError as e:
            raise PermissionPolicyFailed(f"Failed to apply group {group} to {path}: {e}")

        logger.info("Applied group '%s' to %s", group, path)

    def _apply_to(self, path: Path, gid: int):
        if path.is_symlink():
            return

        os.chown(path, -1, gid)
        mode = stat.S_IMODE(path.stat().st_mode)
        mode |= stat.S_IRGRP | stat.S_IWGRP

        if path.is_dir():
            mode |= stat.S_IXGRP | stat.S_ISGID
        elif mode & stat.S_IXUSR:
            mode |= stat.S_IXGRP

        os.chmod(path, mode)
