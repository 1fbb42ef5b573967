"""Exceptions raised by the directory, its streams and its locks."""

from typing import Optional


class FileNotInStoreError(FileNotFoundError):
    """Raised when a file cannot be opened because its remote object is unavailable."""

    def __init__(self, name: str, cause: Optional[BaseException] = None) -> None:
        """Instantiate the error for the named file and the underlying failure."""
        super().__init__(f"{name}: {cause}" if cause else name)

        self.name = name
        self.cause = cause


class CacheIOError(IOError):
    """Raised when a local cache entry cannot be read or written."""

    def __init__(self, name: str, message: str, offset: Optional[int] = None) -> None:
        """Instantiate the error for the named cache entry, optionally at an offset."""
        if offset is not None:
            super().__init__(f"{name} at offset {offset}: {message}")
        else:
            super().__init__(f"{name}: {message}")

        self.name = name
        self.offset = offset


class LockTimeoutError(TimeoutError):
    """Raised when a distributed lock could not be obtained within its timeout."""

    def __init__(self, name: str, timeout: float) -> None:
        """Instantiate the error for the named lock."""
        super().__init__(f"failed to obtain lock {name} within {timeout} seconds")

        self.name = name
        self.timeout = timeout
