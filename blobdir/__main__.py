"""
Module implementing the command-line interface of blobdir.

The commands either serve a directory as a network blob store (`blobdir serve`), or
perform maintenance on a catalog of the blob store that is configured in the config
file: listing, reading, writing and deleting files, clearing the local cache, and
breaking locks that were left behind.
"""

import logging
import os
import signal
import sys
from typing import List, NoReturn, Optional

import blobdir.commands as commands
from blobdir.config import Config
import blobdir.constants as constants
from blobdir.errors import FileNotInStoreError
from blobdir.logger import log
from .args import Arguments


def main(arguments: Optional[List[str]] = None) -> NoReturn:
    """
    Run the command specified by the given arguments.

    Defaults to parsing command-line arguments from sys.argv if none are specified.
    """
    args = Arguments.parse(arguments)

    # Configure debug logging.
    if args.debug:
        log.setLevel(logging.DEBUG)
    else:
        log.setLevel(logging.ERROR)

    config = Config.load(os.path.expanduser(args.config))

    try:
        exit_code = commands.COMMANDS[args.command](args, config)
    except KeyboardInterrupt:
        exit_code = 128 + signal.SIGINT
    except FileNotInStoreError as e:
        log.error(f"no such file: {e}")
        exit_code = constants.BLOBDIR_ERROR_CODE
    except Exception as e:
        log.error(f"failed to run command: {e}")
        exit_code = constants.BLOBDIR_ERROR_CODE

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
