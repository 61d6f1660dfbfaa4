"""
Dump-verify pipeline for repositories without reliable incremental mirroring.

Per repository and run:
1. VERIFY_REMOTE  - the remote repository checks its own integrity
2. TRY_SYNC       - incremental sync into the local sync target; an empty sync
                    log on an existing target, with {name}.verified stamping the
                    current dump, means nothing changed and the run ends here
3. FULL_DUMP      - hot-copy on the remote, stream a compressed dump of the copy
                    into {name}.dump{ext} (previous dump rotated to .old first)
4. VERIFY_RESTORE - load the dump into {name}.tmp and verify it
5. ROTATE         - {name}.std -> {name}.old, {name}.tmp -> {name}.std, verify,
                    stamp {name}.verified

Only a failed sync is recovered (by taking the full dump path). Every other
failure ends the repository's run and leaves {name}.std untouched unless the
promotion itself failed.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, List

from .compression import Compressor, CompressionError, DECOMPRESSION_ERRORS
from .errors import (
    BackupError,
    DumpFailed,
    RemoteCorrupt,
    RestoreFailed,
    RotationFailed,
    SyncFailed,
)
from .locking import RepositoryLock
from .retention import demote_directory, discard, promote_directory, rotate_file
from .storage import Repository, StorageLayout

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    VERIFY_REMOTE = 'verify_remote'
    TRY_SYNC = 'try_sync'
    FULL_DUMP = 'full_dump'
    VERIFY_RESTORE = 'verify_restore'
    ROTATE = 'rotate'


class DumpTooling(ABC):
    """
    Native tooling of a dump-only repository kind.

    Boolean results report success of the underlying command; connection
    problems raise RemoteUnreachable.
    """

    @abstractmethod
    def verify_remote(self, repository: Repository) -> bool:
        """Run the remote repository's own integrity check."""

    def has_sync_target(self, repository: Repository) -> bool:
        """Whether the local incremental sync target exists."""
        return repository.local_path.is_dir()

    @abstractmethod
    def init_sync_target(self, repository: Repository) -> bool:
        """Create the local incremental sync target."""

    @abstractmethod
    def sync(self, repository: Repository, log: BinaryIO) -> bool:
        """Synchronize the sync target, writing the tool's output to log."""

    @abstractmethod
    def hotcopy(self, repository: Repository, scratch: str) -> bool:
        """Make a frozen copy of the repository at a remote scratch path."""

    @abstractmethod
    def dump(self, scratch: str, sink: BinaryIO) -> bool:
        """Stream a full serialized dump of the remote scratch copy into sink."""

    @abstractmethod
    def remove_scratch(self, scratch: str) -> bool:
        """Delete the remote scratch copy."""

    @abstractmethod
    def create(self, path: Path) -> bool:
        """Create an empty local repository."""

    @abstractmethod
    def load(self, path: Path, source: BinaryIO) -> bool:
        """Load a dump stream into a local repository."""

    @abstractmethod
    def verify(self, path: Path) -> bool:
        """Verify a local repository."""


@dataclass
class PipelineResult:
    """What a pipeline run did for one repository."""

    repository: str
    stages: List[Stage] = field(default_factory=list)
    dumped: bool = False

    @property
    def skipped(self) -> bool:
        return not self.dumped


class DumpVerifyPipeline:
    """
    Runs the dump-verify protocol for one repository at a time.
    """

    def __init__(self, tooling: DumpTooling, compressor: Compressor, layout: StorageLayout,
                 scratch_dir: str = '/tmp'):
        """
        Initialize the pipeline.

        Args:
            tooling: Native commands of the repository kind
            compressor: Compression adapter for dump artifacts
            layout: Local storage layout
            scratch_dir: Remote directory for hot-copies
        """
        self.tooling = tooling
        self.compressor = compressor
        self.layout = layout
        self.scratch_dir = scratch_dir.rstrip('/') or '/'

    def run(self, repository: Repository) -> PipelineResult:
        """
        Back up one repository.

        Args:
            repository: Repository to back up

        Returns:
            PipelineResult

        Raises:
            BackupError: Any non-recoverable stage failure
        """
        result = PipelineResult(repository=repository.name)
        self.layout.ensure(repository.local_dir)

        with RepositoryLock(repository.lock_path):
            result.stages.append(Stage.VERIFY_REMOTE)
            self.verify_remote(repository)

            result.stages.append(Stage.TRY_SYNC)
            if self.try_sync(repository):
                discard(repository.sync_log_path)
                logger.info("%s: no changes since last verified backup", repository.name)
                return result

            result.stages.append(Stage.FULL_DUMP)
            self.full_dump(repository)
            result.dumped = True

            result.stages.append(Stage.VERIFY_RESTORE)
            self.verify_restore(repository)

            result.stages.append(Stage.ROTATE)
            self.rotate(repository)

            discard(repository.sync_log_path)

        logger.info("%s: dumped, restored and verified", repository.name)
        return result

    def verify_remote(self, repository: Repository):
        """
        Raises:
            RemoteCorrupt: If the remote repository fails its integrity check
        """
        if not self.tooling.verify_remote(repository):
            raise RemoteCorrupt(
                f"Remote repository {repository.remote_path} failed verification",
                repository=repository.name
            )

    def try_sync(self, repository: Repository) -> bool:
        """
        Attempt an incremental sync.

        The sync output is appended to {name}.sync, which is only removed once
        the repository's run succeeds, so output left by an interrupted run
        keeps forcing a full dump.

        Returns:
            True if nothing changed and dump/verify can be skipped
        """
        fresh = False

        if not self.tooling.has_sync_target(repository):
            logger.info("%s: creating sync target", repository.name)
            if not self.tooling.init_sync_target(repository):
                logger.warning("%s: could not create sync target, falling back to full dump", repository.name)
                discard(repository.local_path)
                return False
            fresh = True

        try:
            with open(repository.sync_log_path, 'ab') as log:
                synced = self.tooling.sync(repository, log)
            if not synced:
                raise SyncFailed("Incremental sync failed", repository=repository.name)
        except SyncFailed as e:
            logger.warning("%s, falling back to full dump", e.describe())
            return False
        except OSError as e:
            logger.warning("%s: cannot write sync log (%s), falling back to full dump", repository.name, e)
            return False

        if fresh:
            # Sync-only copies are never trusted as restorable
            return False

        if repository.sync_log_path.stat().st_size > 0:
            logger.info("%s: changes detected by sync", repository.name)
            return False

        if not (repository.dump_path.exists() and repository.std_path.is_dir()):
            logger.info("%s: no verified backup yet", repository.name)
            return False

        if not repository.verified_path.exists():
            logger.info("%s: current dump was never verified", repository.name)
            return False

        return True

    def full_dump(self, repository: Repository):
        """
        Produce a fresh dump artifact from a remote hot-copy.

        Raises:
            DumpFailed: If any sub-step fails
        """
        scratch = f"{self.scratch_dir}/{repository.kind}-{repository.name}.hotcopy"

        try:
            if not self.tooling.hotcopy(repository, scratch):
                raise DumpFailed(f"Hot-copy to {scratch} failed", repository=repository.name)

            try:
                discard(repository.verified_path)
                rotate_file(repository.dump_path)
            except OSError as e:
                raise DumpFailed(f"Cannot rotate {repository.dump_path.name}: {e}", repository=repository.name)

            self._write_dump(repository, scratch)
        finally:
            self._remove_scratch(repository, scratch)

    def _write_dump(self, repository: Repository, scratch: str):
        try:
            with self.compressor.writer(repository.dump_path) as sink:
                dumped = self.tooling.dump(scratch, sink)
        except BackupError:
            discard(repository.dump_path)
            raise
        except OSError as e:
            discard(repository.dump_path)
            raise DumpFailed(f"Cannot write {repository.dump_path.name}: {e}", repository=repository.name)

        if not dumped:
            discard(repository.dump_path)
            raise DumpFailed("Remote dump command failed", repository=repository.name)

    def _remove_scratch(self, repository: Repository, scratch: str):
        try:
            if not self.tooling.remove_scratch(scratch):
                logger.warning("%s: could not remove remote scratch %s", repository.name, scratch)
        except BackupError as e:
            logger.warning("%s: could not remove remote scratch %s: %s", repository.name, scratch, e)

    def verify_restore(self, repository: Repository):
        """
        Restore the dump artifact into {name}.tmp and verify it.

        Raises:
            RestoreFailed: If the dump cannot be loaded or the copy fails verification
        """
        tmp = repository.tmp_path
        verified = False

        try:
            discard(tmp)
            if not self.tooling.create(tmp):
                raise RestoreFailed(f"Cannot create {tmp.name}", repository=repository.name)

            try:
                with self.compressor.reader(repository.dump_path) as source:
                    loaded = self.tooling.load(tmp, source)
            except (CompressionError,) + DECOMPRESSION_ERRORS as e:
                raise RestoreFailed(f"Cannot read {repository.dump_path.name}: {e}; backup may be lost",
                                    repository=repository.name)

            if not loaded:
                raise RestoreFailed(f"Loading {repository.dump_path.name} failed; backup may be lost",
                                    repository=repository.name)

            if not self.tooling.verify(tmp):
                raise RestoreFailed(f"Restored copy of {repository.dump_path.name} failed verification; "
                                    f"backup may be lost", repository=repository.name)
            verified = True
        except OSError as e:
            raise RestoreFailed(f"Cannot prepare {tmp.name}: {e}", repository=repository.name)
        finally:
            if not verified:
                self._discard_scratch_copy(repository)

    def _discard_scratch_copy(self, repository: Repository):
        try:
            discard(repository.tmp_path)
        except OSError as e:
            logger.warning("%s: could not remove %s: %s", repository.name, repository.tmp_path, e)

    def rotate(self, repository: Repository):
        """
        Promote the verified restore to {name}.std.

        Raises:
            RotationFailed: If promotion fails or the promoted copy does not verify
        """
        std, old, tmp = repository.std_path, repository.old_path, repository.tmp_path

        try:
            if std.exists():
                if self.tooling.verify(std):
                    demote_directory(std, old)
                else:
                    logger.warning("%s: previous %s failed verification, discarding it",
                                   repository.name, std.name)
                    discard(std)
            promote_directory(tmp, std)
        except OSError as e:
            raise RotationFailed(f"Promotion of {tmp.name} failed: {e}", repository=repository.name)

        if not self.tooling.verify(std):
            raise RotationFailed(f"{std.name} failed verification after promotion; "
                                 f"manual investigation required", repository=repository.name)

        try:
            repository.verified_path.write_text(f"{repository.dump_path.name}\n")
        except OSError as e:
            # Without the stamp the next run dumps again
            logger.warning("%s: could not write %s: %s", repository.name, repository.verified_path.name, e)
