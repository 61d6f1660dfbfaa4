"""
Subversion tooling for the dump-verify pipeline.

Remote side (through the remote channel): svnadmin verify/hotcopy/dump.
Local side: svnsync for the incremental sync target, svnadmin create/load/verify
for restores.
"""

import logging
from pathlib import Path
from typing import BinaryIO

from forgeback.config import BackupSettings
from .local import LocalRunner
from .pipeline import DumpTooling
from .remote import RemoteChannel
from .storage import Repository

logger = logging.getLogger(__name__)

REVPROP_HOOK = "#!/bin/sh\nexit 0\n"


class SvnTooling(DumpTooling):
    """svnadmin/svnsync implementation of DumpTooling."""

    def __init__(self, settings: BackupSettings, channel: RemoteChannel, runner: LocalRunner):
        """
        Initialize subversion tooling.

        Args:
            settings: Resolved backup settings
            channel: Remote command channel
            runner: Local command runner
        """
        self.settings = settings
        self.channel = channel
        self.runner = runner

    def source_url(self, repository: Repository) -> str:
        """svn+ssh URL of the remote repository."""
        return f"svn+ssh://{self.settings.ssh_target}{repository.remote_path}"

    def _env(self):
        return {'SVN_SSH': self.settings.ssh_command()}

    def _quiet(self):
        return [] if self.settings.verbose else ['--quiet']

    # Remote side

    def verify_remote(self, repository: Repository) -> bool:
        result = self.channel.run(['svnadmin', 'verify', '--quiet', repository.remote_path])
        if not result.ok:
            logger.error("svnadmin verify failed for %s: %s", repository.remote_path,
                         result.stderr.decode('utf-8', errors='replace').strip())
        return result.ok

    def hotcopy(self, repository: Repository, scratch: str) -> bool:
        if not self.channel.run(['rm', '-rf', scratch]).ok:
            return False
        return self.channel.run(['svnadmin', 'hotcopy', repository.remote_path, scratch]).ok

    def dump(self, scratch: str, sink: BinaryIO) -> bool:
        return self.channel.stream(['svnadmin', 'dump'] + self._quiet() + [scratch], sink).ok

    def remove_scratch(self, scratch: str) -> bool:
        return self.channel.run(['rm', '-rf', scratch]).ok

    # Local side

    def init_sync_target(self, repository: Repository) -> bool:
        """
        Create a local mirror and bind it to the remote repository with svnsync.

        Args:
            repository: Repository to mirror

        Returns:
            True if the mirror is ready for 'svnsync synchronize'
        """
        path = repository.local_path
        if not self.create(path):
            return False

        # svnsync needs revision property changes allowed on the mirror
        hook = path / 'hooks' / 'pre-revprop-change'
        try:
            hook.write_text(REVPROP_HOOK)
            hook.chmod(0o755)
        except OSError as e:
            logger.error("Cannot install %s: %s", hook, e)
            return False

        result = self.runner.run(
            ['svnsync', 'initialize', '--non-interactive', path.as_uri(), self.source_url(repository)],
            env=self._env()
        )
        return result.ok

    def sync(self, repository: Repository, log: BinaryIO) -> bool:
        # Never pass --quiet here: the printed revisions are the change signal
        result = self.runner.run(
            ['svnsync', 'synchronize', '--non-interactive',
             repository.local_path.as_uri(), self.source_url(repository)],
            env=self._env()
        )
        log.write(result.stdout)
        return result.ok

    def create(self, path: Path) -> bool:
        return self.runner.run(['svnadmin', 'create', str(path)]).ok

    def load(self, path: Path, source: BinaryIO) -> bool:
        result = self.runner.feed(['svnadmin', 'load', '--quiet', str(path)], source)
        if not result.ok:
            logger.error("svnadmin load into %s failed: %s", path,
                         result.stderr.decode('utf-8', errors='replace').strip())
        return result.ok

    def verify(self, path: Path) -> bool:
        return self.runner.run(['svnadmin', 'verify', '--quiet', str(path)]).ok
