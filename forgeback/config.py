import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional, Tuple


# Fixed processing order of source kinds
SOURCE_KINDS = ('svn', 'git', 'hg', 'bzr', 'app')

DEFAULT_ROOTS = {
    'svn': '/var/lib/svn',
    'git': '/var/lib/git',
    'hg': '/var/lib/hg',
    'bzr': '/var/lib/bzr',
}


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name):
    value = os.environ.get(name, '')
    return [item.strip() for item in value.split(',') if item.strip()]


def _optional_int(value):
    if value is None or str(value).strip() == '':
        return None
    return int(value)


class Config:
    """Base configuration"""

    # Database (run history and scheduler job store)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/forgeback.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Remote application server
    REMOTE_HOST = os.environ.get('REMOTE_HOST')
    REMOTE_PORT = int(os.environ.get('REMOTE_PORT', 22))
    REMOTE_USER = os.environ.get('REMOTE_USER')
    REMOTE_KEY_FILE = os.environ.get('REMOTE_KEY_FILE')
    REMOTE_PASSWORD = os.environ.get('REMOTE_PASSWORD')
    REMOTE_TIMEOUT = int(os.environ.get('REMOTE_TIMEOUT', 30))
    # Unset: remote commands may stay silent indefinitely (svnadmin verify --quiet)
    REMOTE_COMMAND_TIMEOUT = _optional_int(os.environ.get('REMOTE_COMMAND_TIMEOUT'))
    REMOTE_SCRATCH_DIR = os.environ.get('REMOTE_SCRATCH_DIR') or '/tmp'

    # Local storage
    STORAGE_ROOT = os.environ.get('STORAGE_ROOT') or '/data/backups'
    COMPRESSION = os.environ.get('COMPRESSION') or 'xz'

    # Verbosity (never changes control flow)
    BACKUP_QUIET = _env_flag('BACKUP_QUIET')
    BACKUP_VERBOSE = _env_flag('BACKUP_VERBOSE')
    BACKUP_PROGRESS = _env_flag('BACKUP_PROGRESS')

    # Per source kind settings
    SOURCE_ROOTS = {
        kind: os.environ.get(f'{kind.upper()}_ROOT') or default
        for kind, default in DEFAULT_ROOTS.items()
    }
    DISABLED_SOURCES = [kind for kind in SOURCE_KINDS if _env_flag(f'{kind.upper()}_DISABLED')]
    SOURCE_GROUPS = {
        kind: os.environ.get(f'{kind.upper()}_GROUP')
        for kind in SOURCE_KINDS
        if os.environ.get(f'{kind.upper()}_GROUP')
    }

    # Application state
    APP_FILES = _env_list('APP_FILES')
    APP_DATABASE_DUMP = os.environ.get('APP_DATABASE_DUMP')

    # Scheduler
    SCHEDULER_ENABLED = _env_flag('SCHEDULER_ENABLED', default=True)
    SCHEDULER_TIMEZONE = 'UTC'
    BACKUP_SCHEDULE_CRON = os.environ.get('BACKUP_SCHEDULE_CRON') or '0 3 * * *'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "forgeback.db")}'
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    STORAGE_ROOT = os.path.join(DATA_DIR, 'backups')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Test configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    LOG_DIR = None
    SCHEDULER_ENABLED = False
    REMOTE_HOST = 'forge.example.com'
    REMOTE_USER = 'backup'
    STORAGE_ROOT = '/tmp/forgeback-test'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


@dataclass(frozen=True)
class BackupSettings:
    """
    Resolved settings for one backup run.

    Built once from the application config and handed to every component,
    so nothing reads configuration from ambient state.
    """

    remote_host: str
    storage_root: str
    remote_port: int = 22
    remote_user: Optional[str] = None
    remote_key_file: Optional[str] = None
    remote_password: Optional[str] = None
    remote_timeout: int = 30
    remote_command_timeout: Optional[int] = None
    remote_scratch_dir: str = '/tmp'
    compression: str = 'xz'
    quiet: bool = False
    verbose: bool = False
    progress: bool = False
    source_roots: Dict[str, str] = field(default_factory=dict)
    disabled_sources: FrozenSet[str] = frozenset()
    source_groups: Dict[str, str] = field(default_factory=dict)
    app_files: Tuple[str, ...] = ()
    app_database_dump: Optional[str] = None

    def __post_init__(self):
        from forgeback.backup.compression import FORMAT_MAP

        if not self.remote_host:
            raise ValueError("REMOTE_HOST is not configured")
        if not os.path.isabs(self.storage_root):
            raise ValueError(f"STORAGE_ROOT must be an absolute path: {self.storage_root}")
        if self.compression not in FORMAT_MAP:
            raise ValueError(
                f"Invalid compression format: {self.compression}. "
                f"Valid options: {list(FORMAT_MAP.keys())}"
            )

    @classmethod
    def from_config(cls, mapping: Mapping) -> 'BackupSettings':
        """
        Build settings from a Flask config mapping.

        Args:
            mapping: app.config or any mapping with the Config keys

        Returns:
            BackupSettings

        Raises:
            ValueError: If a required value is missing or invalid
        """
        return cls(
            remote_host=mapping.get('REMOTE_HOST'),
            storage_root=mapping.get('STORAGE_ROOT') or '',
            remote_port=int(mapping.get('REMOTE_PORT', 22)),
            remote_user=mapping.get('REMOTE_USER'),
            remote_key_file=mapping.get('REMOTE_KEY_FILE'),
            remote_password=mapping.get('REMOTE_PASSWORD'),
            remote_timeout=int(mapping.get('REMOTE_TIMEOUT', 30)),
            remote_command_timeout=_optional_int(mapping.get('REMOTE_COMMAND_TIMEOUT')),
            remote_scratch_dir=mapping.get('REMOTE_SCRATCH_DIR') or '/tmp',
            compression=mapping.get('COMPRESSION') or 'xz',
            quiet=bool(mapping.get('BACKUP_QUIET', False)),
            verbose=bool(mapping.get('BACKUP_VERBOSE', False)),
            progress=bool(mapping.get('BACKUP_PROGRESS', False)),
            source_roots=dict(mapping.get('SOURCE_ROOTS') or {}),
            disabled_sources=frozenset(mapping.get('DISABLED_SOURCES') or ()),
            source_groups=dict(mapping.get('SOURCE_GROUPS') or {}),
            app_files=tuple(mapping.get('APP_FILES') or ()),
            app_database_dump=mapping.get('APP_DATABASE_DUMP')
        )

    @property
    def ssh_target(self) -> str:
        """'user@host' (or just host) for tools that take an ssh destination."""
        if self.remote_user:
            return f"{self.remote_user}@{self.remote_host}"
        return self.remote_host

    @property
    def ssh_authority(self) -> str:
        """'user@host:port' authority used in ssh:// URLs."""
        return f"{self.ssh_target}:{self.remote_port}"

    def ssh_command(self) -> str:
        """ssh invocation used by local tools that reach the remote host."""
        parts = ['ssh', '-p', str(self.remote_port), '-o', 'BatchMode=yes']
        if self.remote_key_file:
            parts += ['-i', os.path.expanduser(self.remote_key_file)]
        return ' '.join(parts)

    def is_disabled(self, kind: str) -> bool:
        return kind in self.disabled_sources
