"""
Two-generation rotation of backup artifacts.

Only the current artifact and the one before it are kept. Rotation decisions are
based on what exists on disk, never on run counters, so an interrupted run can be
retried without manual cleanup.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def old_path_for(path: Path) -> Path:
    """Return the '.old' sibling of a file artifact."""
    path = Path(path)
    return path.with_name(path.name + '.old')


def discard(path: Path) -> bool:
    """
    Remove a file or directory tree if it exists.

    Args:
        path: File or directory to remove

    Returns:
        True if something was removed
    """
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    if path.exists() or path.is_symlink():
        path.unlink()
        return True
    return False


def rotate_file(path: Path) -> Optional[Path]:
    """
    Move the current artifact to '.old', replacing any older generation.

    Args:
        path: Current artifact

    Returns:
        Path of the rotated artifact, or None if there was nothing to rotate
    """
    path = Path(path)
    if not path.exists():
        return None

    previous = old_path_for(path)
    os.replace(path, previous)
    logger.debug("Rotated %s -> %s", path.name, previous.name)
    return previous


def demote_directory(current: Path, previous: Path):
    """
    Replace the previous generation directory with the current one.

    Args:
        current: Current generation (e.g. 'demo.std')
        previous: Previous generation (e.g. 'demo.old')
    """
    discard(previous)
    os.rename(current, previous)
    logger.debug("Demoted %s -> %s", Path(current).name, Path(previous).name)


def promote_directory(scratch: Path, current: Path):
    """
    Promote a validated scratch directory to the current generation.

    Args:
        scratch: Validated directory (e.g. 'demo.tmp')
        current: Target name (e.g. 'demo.std'); must not exist

    Raises:
        FileExistsError: If current still exists
    """
    if Path(current).exists():
        raise FileExistsError(f"Refusing to overwrite {current}")
    os.rename(scratch, current)
    logger.debug("Promoted %s -> %s", Path(scratch).name, Path(current).name)
