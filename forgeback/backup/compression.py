"""
Compression adapters for dump artifacts.

Supports multiple formats:
- none: No compression (identity filter)
- gzip: Gzip compressed stream (.gz)
- bzip2: Bzip2 compressed stream (.bz2)
- xz: LZMA compressed stream (.xz)
"""

import bz2
import gzip
import lzma
import zlib
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, Union

from tqdm import tqdm

from .errors import BackupError


# Exceptions a truncated or corrupt artifact raises while being read
DECOMPRESSION_ERRORS = (OSError, EOFError, lzma.LZMAError, zlib.error)


class CompressionError(BackupError):
    """Raised when an artifact cannot be compressed or decompressed."""

    stage = 'compression'


def _open_plain(path, mode):
    return open(path, mode)


# Map format to extension and opener
FORMAT_MAP = {
    'none': ('', _open_plain),
    'gzip': ('.gz', gzip.open),
    'bzip2': ('.bz2', bz2.open),
    'xz': ('.xz', lzma.open),
}


class Compressor:
    """
    Put/get filter around one compression format.

    writer() compresses everything written to it into the target file and
    reader() yields the decompressed content of a file.
    """

    def __init__(self, name: str, progress: bool = False):
        """
        Initialize compressor.

        Args:
            name: Format name ('none', 'gzip', 'bzip2', 'xz')
            progress: Show a tqdm progress bar while streaming

        Raises:
            ValueError: If the format is unknown
        """
        if name not in FORMAT_MAP:
            raise ValueError(
                f"Invalid compression format: {name}. "
                f"Valid options: {list(FORMAT_MAP.keys())}"
            )

        self.name = name
        self.extension, self._opener = FORMAT_MAP[name]
        self.progress = progress

    def __repr__(self):
        return f'<Compressor {self.name}>'

    @contextmanager
    def writer(self, path: Union[str, Path]) -> Iterator[BinaryIO]:
        """
        Open a compressing stream onto path.

        Args:
            path: Destination file

        Yields:
            Writable binary stream
        """
        with self._opener(path, 'wb') as stream:
            if self.progress:
                with tqdm.wrapattr(stream, 'write', desc=f"dump {Path(path).name}", unit='B',
                                   unit_scale=True, unit_divisor=1024) as wrapped:
                    yield wrapped
            else:
                yield stream

    @contextmanager
    def reader(self, path: Union[str, Path]) -> Iterator[BinaryIO]:
        """
        Open a decompressing stream from path.

        Args:
            path: Source file

        Yields:
            Readable binary stream

        Raises:
            CompressionError: If the file does not exist
        """
        path = Path(path)
        if not path.exists():
            raise CompressionError(f"Artifact not found: {path}")

        with self._opener(path, 'rb') as stream:
            if self.progress:
                with tqdm.wrapattr(stream, 'read', desc=f"load {path.name}", unit='B',
                                   unit_scale=True, unit_divisor=1024) as wrapped:
                    yield wrapped
            else:
                yield stream


def get_compressor(name: str, progress: bool = False) -> Compressor:
    """
    Factory function for compressors.

    Args:
        name: Format name
        progress: Show progress bars

    Returns:
        Compressor instance
    """
    return Compressor(name, progress=progress)


def dump_filename(name: str, compression_format: str) -> str:
    """
    Build the artifact filename for a repository.

    Format: {name}.dump{ext}

    Args:
        name: Repository name
        compression_format: Compression format

    Returns:
        Filename (without path)
    """
    if compression_format not in FORMAT_MAP:
        raise ValueError(f"Invalid compression format: {compression_format}")
    extension = FORMAT_MAP[compression_format][0]
    return f"{name}.dump{extension}"
