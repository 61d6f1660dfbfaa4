"""
Runner for local tools (svnadmin, svnsync, git, hg, bzr, rsync).
"""

import logging
import os
import shutil
import subprocess
import tempfile
from typing import BinaryIO, Dict, List, Optional

from .remote import CommandResult

logger = logging.getLogger(__name__)

# Shell conventions, so callers can treat both like any other failed command
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


class LocalRunner:
    """Runs local commands and reports their exit status."""

    def __init__(self, timeout: Optional[int] = None, chunk_size: int = 1024 * 1024):
        """
        Initialize the runner.

        Args:
            timeout: Timeout in seconds for each command (None waits forever)
            chunk_size: Copy size used when feeding a stream into a command
        """
        self.timeout = timeout
        self.chunk_size = chunk_size

    def _environment(self, env: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if not env:
            return None
        merged = dict(os.environ)
        merged.update(env)
        return merged

    def run(self, argv: List[str], env: Optional[Dict[str, str]] = None, cwd: Optional[str] = None) -> CommandResult:
        """
        Run a command and capture its output.

        Args:
            argv: Command and arguments
            env: Extra environment variables
            cwd: Working directory

        Returns:
            CommandResult with stdout, stderr and exit status
        """
        logger.debug("Local command: %s", ' '.join(argv))

        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                env=self._environment(env),
                cwd=cwd,
                timeout=self.timeout
            )
        except FileNotFoundError:
            logger.error("Command not found: %s", argv[0])
            return CommandResult(stdout=b'', exit_status=EXIT_NOT_FOUND, stderr=f"{argv[0]}: not found".encode())
        except subprocess.TimeoutExpired:
            logger.error("Command timed out after %ss: %s", self.timeout, ' '.join(argv))
            return CommandResult(stdout=b'', exit_status=EXIT_TIMEOUT, stderr=b'timed out')

        if result.returncode != 0:
            logger.debug("'%s' exited with %s: %s", argv[0], result.returncode,
                         result.stderr.decode('utf-8', errors='replace').strip())

        return CommandResult(stdout=result.stdout, exit_status=result.returncode, stderr=result.stderr)

    def feed(self, argv: List[str], source: BinaryIO, env: Optional[Dict[str, str]] = None) -> CommandResult:
        """
        Run a command with a binary stream copied into its stdin.

        Errors raised while reading the source (for example a corrupt compressed
        artifact) propagate after the process has been killed.

        Args:
            argv: Command and arguments
            source: Readable binary stream
            env: Extra environment variables

        Returns:
            CommandResult with stderr and exit status (stdout is discarded)
        """
        logger.debug("Local command (fed): %s", ' '.join(argv))

        with tempfile.TemporaryFile() as errors:
            try:
                process = subprocess.Popen(
                    argv,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.DEVNULL,
                    stderr=errors,
                    env=self._environment(env)
                )
            except FileNotFoundError:
                logger.error("Command not found: %s", argv[0])
                return CommandResult(stdout=b'', exit_status=EXIT_NOT_FOUND, stderr=f"{argv[0]}: not found".encode())

            broken_pipe = False
            try:
                shutil.copyfileobj(source, process.stdin, self.chunk_size)
            except BrokenPipeError:
                broken_pipe = True
            except Exception:
                process.kill()
                process.wait()
                raise
            finally:
                try:
                    process.stdin.close()
                except BrokenPipeError:
                    broken_pipe = True

            try:
                status = process.wait(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
                logger.error("Command timed out after %ss: %s", self.timeout, ' '.join(argv))
                return CommandResult(stdout=b'', exit_status=EXIT_TIMEOUT, stderr=b'timed out')

            errors.seek(0)
            stderr = errors.read()

        if broken_pipe and status == 0:
            # The tool stopped reading before the stream ended
            status = 1

        return CommandResult(stdout=b'', exit_status=status, stderr=stderr)
