"""
Application state: files/configuration and the database.

The 'app' kind has no repositories. Its extra steps mirror the configured
remote paths with rsync and stream a database dump into a rotated,
compressed artifact.
"""

import logging
import shlex
from pathlib import Path
from typing import Callable, List, Tuple

from .errors import BackupError, DumpFailed, MirrorFailed
from .retention import discard, rotate_file
from .strategies import ReplicationStrategy, StrategyRegistry
from .storage import Repository

logger = logging.getLogger(__name__)


@StrategyRegistry.register('app')
class ApplicationStateStrategy(ReplicationStrategy):
    """Backs up application files and the application database."""

    @property
    def extension(self) -> str:
        return self.context.compressor.extension

    @property
    def files_dir(self) -> Path:
        return self.context.layout.kind_dir(self.kind) / 'files'

    @property
    def database_path(self) -> Path:
        return self.context.layout.kind_dir(self.kind) / f"database.sql{self.extension}"

    def enumerate(self) -> List[str]:
        return []

    def replicate(self, repository: Repository):
        raise BackupError("The application kind has no repositories", repository=repository.name, stage='setup')

    def extra_steps(self) -> List[Tuple[str, Callable[[], None]]]:
        steps = [(f"files:{path}", lambda path=path: self.sync_files(path)) for path in self.settings.app_files]
        if self.settings.app_database_dump:
            steps.append(('database', self.dump_database))
        return steps

    def sync_files(self, remote_path: str):
        """
        Mirror a remote directory into files/<remote path>/ with rsync.

        '/etc/redmine' lands in files/etc/redmine/, so paths sharing a
        basename never share a destination.

        Args:
            remote_path: Remote directory

        Raises:
            MirrorFailed: If rsync fails
        """
        name = remote_path.rstrip('/') or '/'
        dest = self.context.layout.ensure(self.files_dir.joinpath(*self._path_parts(remote_path)))

        argv = ['rsync', '-a', '--delete', '-e', self.settings.ssh_command()]
        if self.settings.quiet:
            argv.append('--quiet')
        elif self.settings.verbose:
            argv.append('--verbose')
        if self.settings.progress:
            argv.append('--info=progress2')
        argv += [f"{self.settings.ssh_target}:{remote_path.rstrip('/')}/", f"{dest}/"]

        result = self.context.runner.run(argv)
        if not result.ok:
            detail = result.stderr.decode('utf-8', errors='replace').strip()
            raise MirrorFailed(f"rsync of {remote_path} failed: {detail}", repository=name, stage='files')

        logger.info("Synchronized %s -> %s", remote_path, dest)

    @staticmethod
    def _path_parts(remote_path: str) -> List[str]:
        parts = [part for part in remote_path.split('/') if part not in ('', '.')]
        if '..' in parts:
            raise MirrorFailed(f"Refusing relative path component in {remote_path}",
                               repository=remote_path, stage='files')
        return parts or ['root']

    def dump_database(self):
        """
        Stream the database dump command's output into database.sql{ext}.

        The previous dump is rotated to '.old' first; a partial dump is removed.

        Raises:
            DumpFailed: If the dump command fails or the artifact cannot be written
        """
        self.context.layout.ensure(self.database_path.parent)
        argv = shlex.split(self.settings.app_database_dump)

        try:
            rotate_file(self.database_path)
            with self.context.compressor.writer(self.database_path) as sink:
                result = self.context.channel.stream(argv, sink)
        except OSError as e:
            discard(self.database_path)
            raise DumpFailed(f"Cannot write {self.database_path.name}: {e}", repository='database')
        except Exception:
            discard(self.database_path)
            raise

        if not result.ok:
            discard(self.database_path)
            detail = result.stderr.decode('utf-8', errors='replace').strip()
            raise DumpFailed(f"Database dump failed: {detail}", repository='database')

        logger.info("Database dumped to %s", self.database_path)
