"""
Repository enumeration on the remote host.

Each source kind has a root directory on the application server; every entry
in it is a candidate repository.
"""

import logging
from typing import Dict, List

from .errors import EnumerationFailed
from .remote import RemoteChannel

logger = logging.getLogger(__name__)


class RepositoryEnumerator:
    """
    Lists repositories present on the remote host for a source kind.
    """

    def __init__(self, channel: RemoteChannel, roots: Dict[str, str]):
        """
        Initialize enumerator.

        Args:
            channel: Remote command channel
            roots: Mapping of source kind to remote root directory
        """
        self.channel = channel
        self.roots = roots

    def root_for(self, kind: str) -> str:
        """
        Get the remote root directory of a kind.

        Raises:
            EnumerationFailed: If no root is configured for the kind
        """
        root = self.roots.get(kind)
        if not root:
            raise EnumerationFailed(f"No remote root configured for source kind '{kind}'")
        return root

    def list(self, kind: str) -> List[str]:
        """
        List repository names for a kind.

        Args:
            kind: Source kind

        Returns:
            Sorted list of directory entries under the kind's root

        Raises:
            EnumerationFailed: If the listing command fails
            RemoteUnreachable: If the remote host cannot be reached
        """
        root = self.root_for(kind)
        result = self.channel.run(['ls', '-1', root])

        if not result.ok:
            message = result.stderr.decode('utf-8', errors='replace').strip() or f"exit status {result.exit_status}"
            raise EnumerationFailed(f"Failed to list {root}: {message}")

        names = sorted(name for name in result.lines() if not name.startswith('.'))
        logger.info("Found %d %s repositories under %s", len(names), kind, root)
        return names
