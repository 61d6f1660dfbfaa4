"""
Shared pytest fixtures for forgeback tests.

This module provides fixtures for:
- Flask app, test client and CLI runner
- Database setup with in-memory SQLite
- Backup settings and storage layout rooted in a temp directory
- A fake dump tooling with in-memory remote repositories
- Mock fixtures for external services (SSH, scheduler)
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from forgeback import create_app, db as _db
from forgeback.config import BackupSettings
from forgeback.backup.compression import get_compressor
from forgeback.backup.pipeline import DumpTooling, DumpVerifyPipeline
from forgeback.backup.remote import CommandResult
from forgeback.backup.storage import StorageLayout


DUMP_HEADER = b'FAKE-DUMP-FORMAT 1\n'


class FakeDumpTooling(DumpTooling):
    """
    Dump tooling backed by in-memory remote repositories.

    A remote repository is a list of revision strings. Local repositories are
    directories holding a 'format' marker and the loaded 'revisions'.
    """

    def __init__(self, remote=None):
        self.remote = {name: list(revisions) for name, revisions in (remote or {}).items()}
        self.scratch = {}
        self.calls = []
        self.fail = set()
        self.corrupt_remote = set()
        self.corrupt_dump = False
        self.on_verify_remote = None

    def commit(self, name, revision):
        self.remote.setdefault(name, []).append(revision)

    def verify_remote(self, repository):
        self.calls.append(('verify_remote', repository.name))
        if self.on_verify_remote:
            self.on_verify_remote(repository)
        return 'verify_remote' not in self.fail and repository.name not in self.corrupt_remote

    def init_sync_target(self, repository):
        self.calls.append(('init_sync_target', repository.name))
        if 'init_sync_target' in self.fail:
            return False
        repository.local_path.mkdir(parents=True)
        (repository.local_path / 'synced').write_text('0')
        return True

    def sync(self, repository, log):
        self.calls.append(('sync', repository.name))
        if 'sync' in self.fail:
            return False
        marker = repository.local_path / 'synced'
        done = int(marker.read_text())
        revisions = self.remote[repository.name]
        for number in range(done + 1, len(revisions) + 1):
            log.write(f"Committed revision {number}.\n".encode())
        marker.write_text(str(len(revisions)))
        return True

    def hotcopy(self, repository, scratch):
        self.calls.append(('hotcopy', repository.name))
        if 'hotcopy' in self.fail:
            return False
        self.scratch[scratch] = list(self.remote[repository.name])
        return True

    def dump(self, scratch, sink):
        self.calls.append(('dump', scratch))
        if 'dump' in self.fail:
            return False
        if self.corrupt_dump:
            sink.write(b'not a dump stream\n')
            return True
        sink.write(DUMP_HEADER)
        for revision in self.scratch[scratch]:
            sink.write(revision.encode() + b'\n')
        return True

    def remove_scratch(self, scratch):
        self.calls.append(('remove_scratch', scratch))
        self.scratch.pop(scratch, None)
        return True

    def create(self, path):
        self.calls.append(('create', Path(path).name))
        if 'create' in self.fail:
            return False
        path.mkdir()
        (path / 'format').write_text('fake\n')
        return True

    def load(self, path, source):
        self.calls.append(('load', Path(path).name))
        data = source.read()
        if not data.startswith(DUMP_HEADER):
            return False
        (path / 'revisions').write_bytes(data[len(DUMP_HEADER):])
        return True

    def verify(self, path):
        self.calls.append(('verify', Path(path).name))
        if 'verify' in self.fail:
            return False
        return (path / 'format').is_file() and (path / 'revisions').is_file()


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    app = create_app('testing')

    # Override configuration for testing
    app.config.update({
        'STORAGE_ROOT': str(tmp_path / 'backups'),
        'SOURCE_ROOTS': {
            'svn': '/srv/svn',
            'git': '/srv/git',
            'hg': '/srv/hg',
            'bzr': '/srv/bzr',
        },
        'DISABLED_SOURCES': [],
        'SOURCE_GROUPS': {},
        'APP_FILES': [],
        'APP_DATABASE_DUMP': None,
    })

    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def cli_runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def storage_root(tmp_path):
    root = tmp_path / 'backups'
    root.mkdir()
    return root


@pytest.fixture
def settings(storage_root):
    """BackupSettings pointing at a temp storage root."""
    return BackupSettings(
        remote_host='forge.example.com',
        storage_root=str(storage_root),
        remote_user='backup',
        source_roots={
            'svn': '/srv/svn',
            'git': '/srv/git',
            'hg': '/srv/hg',
            'bzr': '/srv/bzr',
        }
    )


@pytest.fixture
def layout(storage_root):
    return StorageLayout(str(storage_root))


@pytest.fixture
def fake_tooling():
    """
    Fake dump tooling with remote repository 'demo' holding 3 revisions.
    """
    return FakeDumpTooling({'demo': ['r1: initial import', 'r2: add README', 'r3: fix build']})


@pytest.fixture
def pipeline(fake_tooling, layout):
    """Dump-verify pipeline with xz compression over the fake tooling."""
    return DumpVerifyPipeline(fake_tooling, get_compressor('xz'), layout, scratch_dir='/tmp')


@pytest.fixture
def demo_repository(layout):
    """Repository value of svn repository 'demo'."""
    return layout.repository('svn', 'demo', '/srv/svn', extension='.xz')


@pytest.fixture
def mock_channel():
    """
    MagicMock standing in for RemoteChannel.

    run() and stream() succeed with empty output unless configured otherwise.
    """
    channel = MagicMock()
    channel.run.return_value = CommandResult(stdout=b'', exit_status=0)
    channel.stream.return_value = CommandResult(stdout=b'', exit_status=0)
    return channel


@pytest.fixture
def mock_runner():
    """MagicMock standing in for LocalRunner."""
    runner = MagicMock()
    runner.run.return_value = CommandResult(stdout=b'', exit_status=0)
    runner.feed.return_value = CommandResult(stdout=b'', exit_status=0)
    return runner


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for remote channel testing.

    Returns the patched SSHClient class.
    """
    with patch('forgeback.backup.remote.SSHClient') as mock_ssh:
        mock_ssh.return_value.connect.return_value = None
        yield mock_ssh


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('forgeback.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        # Mock scheduler methods
        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
