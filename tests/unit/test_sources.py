"""
Unit tests for repository enumeration (forgeback/backup/sources.py).
"""

import pytest

from forgeback.backup.errors import EnumerationFailed, RemoteUnreachable
from forgeback.backup.remote import CommandResult
from forgeback.backup.sources import RepositoryEnumerator


ROOTS = {'svn': '/srv/svn', 'git': '/srv/git'}


class TestRepositoryEnumerator:
    """Test RepositoryEnumerator."""

    def test_list(self, mock_channel):
        """Test names are sorted and hidden entries skipped."""
        mock_channel.run.return_value = CommandResult(stdout=b'tools\n.cache\ndemo\nweb\n', exit_status=0)

        names = RepositoryEnumerator(mock_channel, ROOTS).list('svn')

        assert names == ['demo', 'tools', 'web']
        mock_channel.run.assert_called_once_with(['ls', '-1', '/srv/svn'])

    def test_list_empty_root(self, mock_channel):
        assert RepositoryEnumerator(mock_channel, ROOTS).list('git') == []

    def test_listing_failure(self, mock_channel):
        """Test a failed listing raises EnumerationFailed."""
        mock_channel.run.return_value = CommandResult(
            stdout=b'', exit_status=2, stderr=b"ls: cannot access '/srv/svn': No such file or directory"
        )

        with pytest.raises(EnumerationFailed, match='No such file'):
            RepositoryEnumerator(mock_channel, ROOTS).list('svn')

    def test_unconfigured_kind(self, mock_channel):
        enumerator = RepositoryEnumerator(mock_channel, ROOTS)

        with pytest.raises(EnumerationFailed, match="No remote root configured for source kind 'hg'"):
            enumerator.list('hg')

        mock_channel.run.assert_not_called()

    def test_unreachable_host_propagates(self, mock_channel):
        mock_channel.run.side_effect = RemoteUnreachable('Failed to connect to forge.example.com')

        with pytest.raises(RemoteUnreachable):
            RepositoryEnumerator(mock_channel, ROOTS).list('svn')

    def test_root_for(self, mock_channel):
        assert RepositoryEnumerator(mock_channel, ROOTS).root_for('git') == '/srv/git'
