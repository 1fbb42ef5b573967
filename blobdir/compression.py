"""
Module that decides which files are compressed before upload and how.

Index payload files (term dictionaries, stored fields, postings) tend to compress well
and are read in full once they're cached, so transferring them compressed trades a bit
of CPU for a lot less bandwidth. LZ4 is used for the same reason as elsewhere: it is
fast enough that decompression never becomes the bottleneck of opening a file.

Small bookkeeping files like segments.gen are left alone by default.
"""

from __future__ import annotations

import fnmatch
from typing import Callable, Iterable, Optional, Tuple

import lz4.frame

# Value of the compression metadata field for LZ4 frame compressed objects.
LZ4_CODEC = "lz4"

DEFAULT_COMPRESSED_PATTERNS: Tuple[str, ...] = (
    "*.cfs",
    "*.fdt",
    "*.fdx",
    "*.frq",
    "*.tis",
    "*.tii",
    "*.nrm",
    "*.tvx",
    "*.tvd",
    "*.tvf",
    "*.prx",
)


class CompressionPolicy:
    """
    Policy that selects the files to compress by matching their names.

    Either a set of fnmatch patterns or an arbitrary predicate can be supplied. The
    policy never applies when it is disabled, regardless of the patterns.
    """

    def __init__(
        self,
        enabled: bool = False,
        patterns: Iterable[str] = DEFAULT_COMPRESSED_PATTERNS,
        predicate: Optional[Callable[[str], bool]] = None,
    ) -> None:
        """Instantiate a compression policy."""
        self.enabled = enabled
        self.patterns = tuple(patterns)
        self._predicate = predicate

    @staticmethod
    def disabled() -> CompressionPolicy:
        """Return a policy that never compresses."""
        return CompressionPolicy(enabled=False)

    def should_compress(self, name: str) -> bool:
        """Return whether the file with the given name should be uploaded compressed."""
        if not self.enabled:
            return False

        if self._predicate is not None:
            return self._predicate(name)

        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.patterns)

    @staticmethod
    def compress(data: bytes) -> bytes:
        return lz4.frame.compress(data)

    @staticmethod
    def decompress(data: bytes) -> bytes:
        return lz4.frame.decompress(data)

    def __repr__(self) -> str:
        return f"CompressionPolicy(enabled={self.enabled}, patterns={self.patterns})"
