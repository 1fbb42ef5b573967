"""Module for configuration variables with defaults that are overridable by a file."""

from __future__ import annotations

from configparser import ConfigParser, SectionProxy
from dataclasses import dataclass, field
import os
from typing import Optional, Tuple

from blobdir.compression import DEFAULT_COMPRESSED_PATTERNS
from blobdir.logger import log


@dataclass
class StoreConfig:
    """
    Configuration variables related to the remote blob store.

    The backend is one of "local" (a directory acting as object store), "rpc" (a
    blob store served by `blobdir serve`) or "azure" (Azure Blob Storage).
    """

    backend: str = "local"

    path: str = os.path.expanduser("~/.blobdir/store")
    endpoint: str = "tcp://127.0.0.1:31000"
    token: Optional[str] = None
    timeout: int = 5000

    connection_string: Optional[str] = None

    @staticmethod
    def load(section: SectionProxy) -> StoreConfig:
        """Load overridden variables from a section within a config file."""
        config = StoreConfig()

        config.backend = section.get("backend", fallback=config.backend).lower()

        config.path = os.path.expanduser(section.get("path", fallback=config.path))
        config.endpoint = section.get("endpoint", fallback=config.endpoint)
        config.token = section.get("token", fallback=config.token)
        config.timeout = section.getint("timeout", fallback=config.timeout)

        config.connection_string = section.get(
            "connection_string", fallback=config.connection_string
        )

        return config


@dataclass
class CacheConfig:
    """Configuration variables related to the local disk cache."""

    path: str = os.path.expanduser("~/.blobdir/cache")

    @staticmethod
    def load(section: SectionProxy) -> CacheConfig:
        """Load overridden variables from a section within a config file."""
        config = CacheConfig()

        config.path = os.path.expanduser(section.get("path", fallback=config.path))

        return config


@dataclass
class CompressionConfig:
    """Configuration variables related to transparent payload compression."""

    enabled: bool = False
    patterns: Tuple[str, ...] = DEFAULT_COMPRESSED_PATTERNS

    @staticmethod
    def load(section: SectionProxy) -> CompressionConfig:
        """Load overridden variables from a section within a config file."""
        config = CompressionConfig()

        config.enabled = section.getboolean("enabled", fallback=config.enabled)

        if "patterns" in section:
            config.patterns = tuple(section["patterns"].split())

        return config


@dataclass
class LockConfig:
    """Configuration variables related to distributed locks (all in seconds)."""

    timeout: float = 10.0
    stale_after: float = 60.0
    retry_interval: float = 0.05
    max_retry_interval: float = 1.0

    @staticmethod
    def load(section: SectionProxy) -> LockConfig:
        """Load overridden variables from a section within a config file."""
        config = LockConfig()

        config.timeout = section.getfloat("timeout", fallback=config.timeout)
        config.stale_after = section.getfloat("stale_after", fallback=config.stale_after)
        config.retry_interval = section.getfloat(
            "retry_interval", fallback=config.retry_interval
        )
        config.max_retry_interval = section.getfloat(
            "max_retry_interval", fallback=config.max_retry_interval
        )

        return config


@dataclass
class Config:
    """Configuration variables."""

    store: StoreConfig = field(default_factory=StoreConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    lock: LockConfig = field(default_factory=LockConfig)

    @staticmethod
    def load(filename: str) -> Config:
        """Load overridden configuration variables from a config file."""
        parser = ConfigParser()

        config = Config()

        try:
            with open(filename, "r") as f:
                parser.read_string(f.read(), filename)

            if "store" in parser:
                config.store = StoreConfig.load(parser["store"])
            if "cache" in parser:
                config.cache = CacheConfig.load(parser["cache"])
            if "compression" in parser:
                config.compression = CompressionConfig.load(parser["compression"])
            if "lock" in parser:
                config.lock = LockConfig.load(parser["lock"])
        except FileNotFoundError:
            log.info(f"no config file at {filename}")
        except Exception as e:
            # An unreadable config file is not considered a fatal error since we can
            # fall back to defaults.
            log.error(f"failed to read config file {filename}: {e}")
        else:
            log.info(f"loaded config: {config}")

        return config
