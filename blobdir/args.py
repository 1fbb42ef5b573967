"""Module defining the command-line arguments and providing a parser for them."""

from __future__ import annotations

import argparse
from typing import List, Optional

from blobdir.constants import PROTOCOL_VERSION, VERSION


class Arguments(argparse.Namespace):
    """Parsed command-line arguments."""

    command: str

    config: str
    catalog: Optional[str]
    debug: bool

    # serve
    root: Optional[str]
    endpoint: Optional[str]
    token: Optional[str]
    workers: int

    # file and lock commands
    name: str
    file: Optional[str]

    @classmethod
    def parse(cls, args: Optional[List[str]] = None) -> Arguments:
        """
        Parse command-line arguments from the given list of strings.

        Defaults to sys.argv if none are specified.
        """
        return cls._get_parser().parse_args(args, namespace=cls())

    @classmethod
    def _get_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="blobdir",
            description="Manage index catalogs stored in a remote blob store.",
        )

        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {VERSION} (protocol {PROTOCOL_VERSION})",
            help="show the program version and protocol version",
        )

        parser.add_argument(
            "--config",
            type=str,
            help="path to config file (default is ~/.blobdir/config)",
            default="~/.blobdir/config",
        )
        parser.add_argument(
            "--catalog", type=str, help="catalog to operate on (default is index)"
        )
        parser.add_argument(
            "--debug", action="store_true", help="enable debug information"
        )

        commands = parser.add_subparsers(dest="command", metavar="command")
        commands.required = True

        serve = commands.add_parser("serve", help="serve a local blob store over RPC")
        serve.add_argument("--root", type=str, help="directory holding the objects")
        serve.add_argument(
            "--endpoint", type=str, help="endpoint to listen on (tcp://host:port)"
        )
        serve.add_argument("--token", type=str, help="shared secret for clients")
        serve.add_argument(
            "--workers",
            type=cls._parse_workers,
            help="number of worker threads",
            default=4,
        )

        commands.add_parser("ls", help="list the files of the catalog")

        cat = commands.add_parser("cat", help="write a file to stdout")
        cat.add_argument("name", type=str, help="file name")

        put = commands.add_parser("put", help="store a file from disk or stdin")
        put.add_argument("name", type=str, help="file name")
        put.add_argument("file", type=str, nargs="?", help="source (default stdin)")

        rm = commands.add_parser("rm", help="delete a file")
        rm.add_argument("name", type=str, help="file name")

        commands.add_parser("clear-cache", help="delete the local cache of the catalog")

        break_lock = commands.add_parser("break-lock", help="forcefully break a lock")
        break_lock.add_argument("name", type=str, help="lock name")

        return parser

    @staticmethod
    def _parse_workers(arg: str) -> int:
        try:
            val = int(arg)
            assert val > 0
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected number > 0")
