"""Module implementing the commands of the command-line interface."""

import shutil
import sys
from typing import BinaryIO, Callable, Dict, NoReturn

from blobdir.args import Arguments
from blobdir.config import Config
from blobdir.directory import BlobDirectory
from blobdir.logger import log
import blobdir.rpc as rpc
from blobdir.store import BlobStoreService
from blobdir.store.common import STORE_ERRORS


def serve(args: Arguments, config: Config) -> NoReturn:
    """Serve the local blob store over RPC until interrupted."""
    root = args.root or config.store.path
    endpoint = args.endpoint or config.store.endpoint
    token = args.token or config.store.token

    server = rpc.Server(
        BlobStoreService(root),
        token=token,
        worker_count=args.workers,
        exceptions=STORE_ERRORS,
    )

    log.info(f"serving blob store at {root}")

    server.serve(endpoint)


def list_files(args: Arguments, config: Config) -> int:
    with BlobDirectory.from_config(config, args.catalog) as directory:
        for name in sorted(directory.list_all()):
            print(f"{directory.file_length(name):>12}  {name}")

    return 0


def cat_file(args: Arguments, config: Config) -> int:
    with BlobDirectory.from_config(config, args.catalog) as directory:
        with directory.open_input_stream(args.name) as f:
            shutil.copyfileobj(f, sys.stdout.buffer)

        sys.stdout.buffer.flush()

    return 0


def put_file(args: Arguments, config: Config) -> int:
    with BlobDirectory.from_config(config, args.catalog) as directory:
        src: BinaryIO = open(args.file, "rb") if args.file else sys.stdin.buffer

        try:
            with directory.create_output_stream(args.name) as out:
                shutil.copyfileobj(src, out)
        finally:
            if args.file:
                src.close()

    return 0


def remove_file(args: Arguments, config: Config) -> int:
    with BlobDirectory.from_config(config, args.catalog) as directory:
        directory.delete_file(args.name)

    return 0


def clear_cache(args: Arguments, config: Config) -> int:
    with BlobDirectory.from_config(config, args.catalog) as directory:
        directory.clear_cache()

    return 0


def break_lock(args: Arguments, config: Config) -> int:
    with BlobDirectory.from_config(config, args.catalog) as directory:
        lock = directory.make_lock(args.name)
        marker = lock.read_marker()

        if marker is None:
            log.info(f"lock {args.name} is not held")
        else:
            log.info(
                f"breaking lock {args.name} held by {marker.holder} "
                f"(pid {marker.pid} on {marker.host})"
            )

        directory.clear_lock(args.name)

    return 0


COMMANDS: Dict[str, Callable[[Arguments, Config], int]] = {
    "serve": serve,
    "ls": list_files,
    "cat": cat_file,
    "put": put_file,
    "rm": remove_file,
    "clear-cache": clear_cache,
    "break-lock": break_lock,
}
