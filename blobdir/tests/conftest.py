"""Module with fixtures shared by the tests, like blob stores and RPC servers."""

import logging
import socket
import threading

import pytest

from blobdir.cache import LocalCacheStore
from blobdir.directory import BlobDirectory
from blobdir.logger import log
from blobdir.rpc import Server
from blobdir.store import LocalBlobService
from blobdir.store.common import STORE_ERRORS


def _free_endpoint() -> str:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]

    return f"tcp://127.0.0.1:{port}"


@pytest.fixture(autouse=True)
def reset_log_level():
    """Undo log level changes made by the command-line entry point."""
    yield
    log.setLevel(logging.NOTSET)


@pytest.fixture
def serve_in_thread():
    """Return a function that serves an object in a thread and returns its endpoint."""

    def serve(service, token=None):
        endpoint = _free_endpoint()

        server = Server(service, token=token, worker_count=2, exceptions=STORE_ERRORS)

        t = threading.Thread(target=server.serve, args=(endpoint,), daemon=True)
        t.start()

        return endpoint

    return serve


@pytest.fixture
def store(tmp_path):
    return LocalBlobService(str(tmp_path / "store"))


@pytest.fixture
def cache(tmp_path):
    return LocalCacheStore(str(tmp_path / "cache"))


@pytest.fixture
def directory(store, cache):
    d = BlobDirectory(store, "Catalog", cache=cache)
    yield d
    d.dispose()
