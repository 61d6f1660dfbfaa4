"""
Remote command channel.

Every remote inspection and operation (listing, verifying, dumping) goes through
RemoteChannel, which executes a command over SSH and returns its stdout and exit
status. Non-zero exit statuses are returned to the caller; only connection level
problems raise.
"""

import io
import logging
import select
import shlex
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from .errors import RemoteUnreachable

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Output of a finished command."""

    stdout: bytes
    exit_status: int
    stderr: bytes = b''

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def text(self) -> str:
        return self.stdout.decode('utf-8', errors='replace')

    def lines(self) -> List[str]:
        """Return non-empty stdout lines."""
        return [line.strip() for line in self.text.splitlines() if line.strip()]


class RemoteChannel:
    """
    Executes commands on the remote application server via SSH.

    The connection is opened lazily on first use and reused for every command
    of a run.
    """

    def __init__(
        self,
        host: str,
        port: int = 22,
        username: Optional[str] = None,
        key_file: Optional[str] = None,
        password: Optional[str] = None,
        timeout: int = 30,
        command_timeout: Optional[float] = None,
        chunk_size: int = 1024 * 1024
    ):
        """
        Initialize the channel.

        Args:
            host: SSH hostname or IP
            port: SSH port (default 22)
            username: SSH username (defaults to the local user)
            key_file: Path to private key file (optional)
            password: SSH password (optional)
            timeout: Connect timeout in seconds
            command_timeout: Seconds a command may stay silent before the
                connection is considered lost (None waits indefinitely)
            chunk_size: Read size used when streaming command output
        """
        self.host = host
        self.port = port
        self.username = username
        self.key_file = key_file
        self.password = password
        self.timeout = timeout
        self.command_timeout = command_timeout
        self.chunk_size = chunk_size

        self.ssh_client = None

    def _connect(self):
        """
        Establish the SSH connection if it is not open yet.

        Raises:
            RemoteUnreachable: If connection or authentication fails
        """
        if self.ssh_client is not None:
            return

        client = SSHClient()
        client.set_missing_host_key_policy(AutoAddPolicy())

        connect_kwargs = {
            'hostname': self.host,
            'port': self.port,
            'timeout': self.timeout
        }
        if self.username:
            connect_kwargs['username'] = self.username

        if self.password:
            connect_kwargs['password'] = self.password
        elif self.key_file:
            key_path = Path(self.key_file).expanduser()
            if not key_path.exists():
                raise RemoteUnreachable(f"Private key not found: {self.key_file}")
            connect_kwargs['key_filename'] = str(key_path)

        try:
            client.connect(**connect_kwargs)
        except paramiko.AuthenticationException as e:
            raise RemoteUnreachable(f"SSH authentication failed for {self.host}: {e}")
        except (paramiko.SSHException, OSError) as e:
            raise RemoteUnreachable(f"Failed to connect to {self.host}: {e}")

        logger.debug("Connected to %s:%s", self.host, self.port)
        self.ssh_client = client

    def _exec(self, argv: List[str]):
        self._connect()
        command = shlex.join(argv)
        logger.debug("Remote command on %s: %s", self.host, command)

        try:
            stdin, stdout, stderr = self.ssh_client.exec_command(command, timeout=self.command_timeout)
        except (paramiko.SSHException, OSError) as e:
            self.close()
            raise RemoteUnreachable(f"Failed to execute '{command}' on {self.host}: {e}")

        stdin.close()
        return command, stdout.channel

    def _collect(self, channel, sink: BinaryIO) -> Tuple[bytes, int, int]:
        """
        Copy stdout into sink while draining stderr, until the command ends.

        Both streams share the channel window, so stderr is read as soon as it
        arrives; a chatty stderr would otherwise stall stdout.

        Returns:
            (stderr, exit status, bytes written to sink)
        """
        errors = bytearray()
        transferred = 0

        while True:
            if channel.recv_stderr_ready():
                errors += channel.recv_stderr(self.chunk_size)
            elif channel.recv_ready():
                chunk = channel.recv(self.chunk_size)
                sink.write(chunk)
                transferred += len(chunk)
            elif channel.eof_received or channel.closed:
                break
            elif not select.select([channel], [], [], self.command_timeout)[0]:
                raise socket.timeout(f"no output for {self.command_timeout}s")

        return bytes(errors), channel.recv_exit_status(), transferred

    def run(self, argv: List[str]) -> CommandResult:
        """
        Run a command and collect its whole output.

        Args:
            argv: Command and arguments

        Returns:
            CommandResult with stdout, stderr and exit status

        Raises:
            RemoteUnreachable: If the connection fails
        """
        command, channel = self._exec(argv)
        buffer = io.BytesIO()

        try:
            errors, status, _ = self._collect(channel, buffer)
        except (paramiko.SSHException, socket.timeout, OSError) as e:
            self.close()
            raise RemoteUnreachable(f"Lost connection to {self.host} while running '{command}': {e}")

        if status != 0:
            logger.debug("'%s' exited with %s: %s", command, status, errors.decode('utf-8', errors='replace').strip())

        return CommandResult(stdout=buffer.getvalue(), exit_status=status, stderr=errors)

    def stream(self, argv: List[str], sink: BinaryIO) -> CommandResult:
        """
        Run a command and copy its stdout into a binary sink as it arrives.

        Used for dump streams that must not be held in memory or truncated.

        Args:
            argv: Command and arguments
            sink: Writable binary stream

        Returns:
            CommandResult with empty stdout, the stderr and the exit status

        Raises:
            RemoteUnreachable: If the connection fails mid-stream
        """
        command, channel = self._exec(argv)

        try:
            errors, status, transferred = self._collect(channel, sink)
        except (paramiko.SSHException, socket.timeout) as e:
            self.close()
            raise RemoteUnreachable(f"Lost connection to {self.host} while streaming '{command}': {e}")
        except OSError:
            # Local sink failure or a dropped socket; the channel is unusable either way
            self.close()
            raise

        logger.debug("Streamed %d bytes from '%s' (exit %s)", transferred, command, status)
        return CommandResult(stdout=b'', exit_status=status, stderr=errors)

    def close(self):
        """Close the SSH connection."""
        if self.ssh_client:
            try:
                self.ssh_client.close()
            except (paramiko.SSHException, OSError) as e:
                logger.debug("Error while closing connection to %s: %s", self.host, e)
            self.ssh_client = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
