"""
Unit tests for the local tool runner (forgeback/backup/local.py).

Uses /bin/sh so no version-control tools are needed.
"""

import io
import subprocess
from unittest.mock import patch

import pytest

from forgeback.backup.local import EXIT_NOT_FOUND, EXIT_TIMEOUT, LocalRunner


class TestRun:
    """Test LocalRunner.run()."""

    def test_captures_output_and_status(self):
        result = LocalRunner().run(['sh', '-c', 'echo out; echo err >&2; exit 3'])

        assert result.exit_status == 3
        assert result.stdout == b'out\n'
        assert result.stderr == b'err\n'

    def test_env_is_merged(self):
        """Test extra variables are added to the inherited environment."""
        result = LocalRunner().run(['sh', '-c', 'echo "$SVN_SSH:${PATH:+path}"'],
                                   env={'SVN_SSH': 'ssh -p 2222'})

        assert result.stdout == b'ssh -p 2222:path\n'

    def test_cwd(self, tmp_path):
        result = LocalRunner().run(['pwd'], cwd=str(tmp_path))

        assert result.text.strip() == str(tmp_path)

    def test_missing_tool(self):
        """Test a missing executable reports 127 instead of raising."""
        result = LocalRunner().run(['forgeback-no-such-tool', '--version'])

        assert result.exit_status == EXIT_NOT_FOUND
        assert not result.ok

    def test_timeout(self):
        with patch('forgeback.backup.local.subprocess.run',
                   side_effect=subprocess.TimeoutExpired(cmd='svnsync', timeout=5)):
            result = LocalRunner(timeout=5).run(['svnsync', 'synchronize'])

        assert result.exit_status == EXIT_TIMEOUT


class TestFeed:
    """Test LocalRunner.feed()."""

    def test_feeds_stream_into_stdin(self, tmp_path):
        """Test the whole source reaches the process."""
        target = tmp_path / 'loaded'
        payload = b'revision\n' * 50000

        result = LocalRunner(chunk_size=4096).feed(['sh', '-c', f'cat > {target}'], io.BytesIO(payload))

        assert result.ok
        assert target.read_bytes() == payload

    def test_reports_failure_and_stderr(self):
        result = LocalRunner().feed(['sh', '-c', 'cat >/dev/null; echo bad dump >&2; exit 1'],
                                    io.BytesIO(b'data'))

        assert result.exit_status == 1
        assert result.stderr == b'bad dump\n'

    def test_early_exit_is_failure(self):
        """Test a process that stops reading early never reports success."""
        result = LocalRunner().feed(['sh', '-c', 'exit 0'], io.BytesIO(b'x' * (8 * 1024 * 1024)))

        assert not result.ok

    def test_missing_tool(self):
        result = LocalRunner().feed(['forgeback-no-such-tool'], io.BytesIO(b''))

        assert result.exit_status == EXIT_NOT_FOUND

    def test_source_error_propagates(self):
        """Test read errors from the source are raised after killing the process."""
        class BrokenSource(io.RawIOBase):
            def readable(self):
                return True

            def read(self, size=-1):
                raise EOFError('Compressed file ended before the end-of-stream marker was reached')

        with pytest.raises(EOFError):
            LocalRunner().feed(['sh', '-c', 'cat >/dev/null'], BrokenSource())
