"""
Backup module for forgeback.

This module handles the replication core:
- Remote command channel (SSH) and local tool runner
- Repository enumeration per source kind
- Mirror, dump-verify and application-state strategies
- Compression, storage layout and generation rotation
- Execution orchestration (see executor.py)
"""

from .errors import BackupError
from .remote import CommandResult, RemoteChannel
from .local import LocalRunner
from .compression import Compressor, get_compressor
from .storage import Repository, StorageLayout

__all__ = [
    'BackupError',
    'CommandResult',
    'RemoteChannel',
    'LocalRunner',
    'Compressor',
    'get_compressor',
    'Repository',
    'StorageLayout'
]
