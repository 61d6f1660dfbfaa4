"""
Unit tests for configuration (forgeback/config.py).
"""

from dataclasses import FrozenInstanceError

import pytest

from forgeback import config as config_module
from forgeback.config import SOURCE_KINDS, BackupSettings


class TestBackupSettings:
    """Test BackupSettings construction and validation."""

    def test_from_config(self, app):
        app.config.update({
            'REMOTE_PORT': '2222',
            'COMPRESSION': 'gzip',
            'BACKUP_QUIET': True,
            'DISABLED_SOURCES': ['bzr'],
            'SOURCE_GROUPS': {'git': 'forge'},
            'APP_FILES': ['/etc/forge'],
        })

        settings = BackupSettings.from_config(app.config)

        assert settings.remote_host == 'forge.example.com'
        assert settings.remote_port == 2222
        assert settings.compression == 'gzip'
        assert settings.quiet is True
        assert settings.disabled_sources == frozenset({'bzr'})
        assert settings.source_groups == {'git': 'forge'}
        assert settings.app_files == ('/etc/forge',)
        assert settings.source_roots['svn'] == '/srv/svn'

    def test_command_timeout(self, app):
        """Test an unset command timeout means no limit, separate from the connect timeout."""
        app.config['REMOTE_COMMAND_TIMEOUT'] = ''
        assert BackupSettings.from_config(app.config).remote_command_timeout is None

        app.config['REMOTE_COMMAND_TIMEOUT'] = '14400'
        settings = BackupSettings.from_config(app.config)
        assert settings.remote_command_timeout == 14400
        assert settings.remote_timeout == 30

    def test_missing_remote_host(self, storage_root):
        with pytest.raises(ValueError, match='REMOTE_HOST'):
            BackupSettings(remote_host='', storage_root=str(storage_root))

    def test_relative_storage_root(self):
        with pytest.raises(ValueError, match='absolute'):
            BackupSettings(remote_host='forge.example.com', storage_root='backups')

    def test_unknown_compression(self, storage_root):
        with pytest.raises(ValueError, match='Invalid compression format'):
            BackupSettings(remote_host='forge.example.com', storage_root=str(storage_root), compression='zip')

    def test_immutable(self, settings):
        with pytest.raises(FrozenInstanceError):
            settings.quiet = True

    def test_ssh_helpers(self, storage_root):
        settings = BackupSettings(
            remote_host='forge.example.com',
            storage_root=str(storage_root),
            remote_user='backup',
            remote_port=2222,
            remote_key_file='/etc/forgeback/id_ed25519'
        )

        assert settings.ssh_target == 'backup@forge.example.com'
        assert settings.ssh_authority == 'backup@forge.example.com:2222'
        assert settings.ssh_command() == 'ssh -p 2222 -o BatchMode=yes -i /etc/forgeback/id_ed25519'

    def test_ssh_target_without_user(self, storage_root):
        settings = BackupSettings(remote_host='forge.example.com', storage_root=str(storage_root))

        assert settings.ssh_target == 'forge.example.com'

    def test_is_disabled(self, storage_root):
        settings = BackupSettings(remote_host='forge.example.com', storage_root=str(storage_root),
                                  disabled_sources=frozenset({'svn'}))

        assert settings.is_disabled('svn') is True
        assert settings.is_disabled('git') is False


class TestConfigClasses:
    """Test Flask config objects."""

    def test_source_kind_order(self):
        assert SOURCE_KINDS == ('svn', 'git', 'hg', 'bzr', 'app')

    def test_testing_config(self):
        assert config_module.TestingConfig.SQLALCHEMY_DATABASE_URI == 'sqlite:///:memory:'
        assert config_module.TestingConfig.SCHEDULER_ENABLED is False
        assert config_module.TestingConfig.LOG_DIR is None
