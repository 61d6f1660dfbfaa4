"""
Error taxonomy for backup runs.

Every error carries the repository it happened to and the stage that raised it,
so a failed source kind can still be attributed to a specific repository.
"""

from typing import Optional


class BackupError(Exception):
    """Base class for all backup failures."""

    stage = 'backup'

    def __init__(self, message: str, repository: Optional[str] = None, stage: Optional[str] = None):
        """
        Initialize a backup error.

        Args:
            message: Human readable description
            repository: Name of the repository being processed (if any)
            stage: Stage that failed (defaults to the class stage)
        """
        super().__init__(message)
        self.message = message
        self.repository = repository
        if stage is not None:
            self.stage = stage

    def describe(self) -> str:
        """Return '<repository> [<stage>]: <message>' for reports."""
        target = self.repository or '-'
        return f"{target} [{self.stage}]: {self.message}"


class RemoteUnreachable(BackupError):
    """Raised when the remote host cannot be contacted."""

    stage = 'remote'


class EnumerationFailed(BackupError):
    """Raised when the remote repository listing fails."""

    stage = 'enumerate'


class RemoteCorrupt(BackupError):
    """Raised when the remote repository fails its own integrity check."""

    stage = 'verify_remote'


class SyncFailed(BackupError):
    """Raised when incremental synchronization fails. Recoverable."""

    stage = 'sync'


class DumpFailed(BackupError):
    """Raised when a full dump cannot be produced."""

    stage = 'dump'


class RestoreFailed(BackupError):
    """Raised when the dump artifact cannot be restored and verified."""

    stage = 'verify_restore'
    backup_may_be_lost = True


class RotationFailed(BackupError):
    """Raised when promotion of the verified copy leaves an unknown local state."""

    stage = 'rotate'


class MirrorFailed(BackupError):
    """Raised when a mirror clone or update fails."""

    stage = 'mirror'


class StorageError(BackupError):
    """Raised when the local storage tree cannot be prepared."""

    stage = 'storage'


class PermissionPolicyFailed(BackupError):
    """Raised when group ownership or permissions cannot be applied."""

    stage = 'permissions'
