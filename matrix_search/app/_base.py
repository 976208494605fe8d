#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright (C) 2025 Element Creations Ltd
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# See the GNU Affero General Public License for more details:
# <https://www.gnu.org/licenses/agpl-3.0.html>.
#
#

import logging
import os
import sys
import traceback
from textwrap import indent
from typing import Awaitable, Callable, NoReturn

from typing_extensions import ParamSpec

from twisted.internet import defer
from twisted.internet.interfaces import IReactorCore

logger = logging.getLogger(__name__)

P = ParamSpec("P")


def quit_with_error(error_string: str) -> NoReturn:
    message_lines = error_string.split("\n")
    line_length = min(max(len(line) for line in message_lines), 80) + 2
    sys.stderr.write("*" * line_length + "\n")
    for line in message_lines:
        sys.stderr.write(" %s\n" % (line.rstrip(),))
    sys.stderr.write("*" * line_length + "\n")
    sys.exit(1)


def handle_startup_exception(e: Exception) -> NoReturn:
    # Exceptions between setting up logging and starting the reactor are
    # written to the logs, followed by a summary to stderr.
    logger.exception("Exception during startup")

    error_string = "".join(traceback.format_exception(type(e), e, e.__traceback__))
    quit_with_error(
        "Error during initialisation:\n%s\nThere may be more information in the logs."
        % (indent(error_string, "    "),)
    )


def register_start(
    reactor: IReactorCore,
    cb: Callable[P, Awaitable],
    *args: P.args,
    **kwargs: P.kwargs,
) -> None:
    """Register a callback with the reactor, to be called once it is running

    Any exception raised by the callback will be printed and logged, and the process
    will exit.
    """

    async def wrapper() -> None:
        try:
            await cb(*args, **kwargs)
        except Exception:
            # Write the exception to both the logs and the unredirected stderr,
            # so that it is seen whichever of the two is being watched.
            logger.fatal("Error during startup", exc_info=True)
            print("Error during startup:", file=sys.__stderr__)
            traceback.print_exc(file=sys.__stderr__)

            # sys.exit would only raise a SystemExit, which the reactor would
            # catch and carry on.
            os._exit(1)

    reactor.callWhenRunning(lambda: defer.ensureDeferred(wrapper()))


def run_supervised(
    desc: str,
    func: Callable[[], Awaitable[None]],
    fatal_errors: tuple[type[Exception], ...],
    on_fatal: Callable[[], None],
) -> "defer.Deferred[None]":
    """Run one of the indexer's long-running loops in the background.

    Unlike `run_as_background_process`, errors which mean the indexer can't
    safely carry on are not just logged: `on_fatal` is called, which should
    shut the process down.

    Args:
        desc: a description of the loop, for the logs.
        func: the loop.
        fatal_errors: the exceptions which are fatal if they escape the loop.
            Anything else is logged, and the loop is not restarted.
        on_fatal: called when a fatal error escapes the loop.
    """

    async def run() -> None:
        try:
            await func()
        except fatal_errors:
            logger.critical("Fatal error in %s, shutting down", desc, exc_info=True)
            on_fatal()
        except Exception:
            logger.exception("%s stopped with an unexpected error", desc)
        else:
            logger.info("%s finished", desc)

    return defer.ensureDeferred(run())
