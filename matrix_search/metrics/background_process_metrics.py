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
from typing import Any, Awaitable, Callable, TypeVar

from prometheus_client import Counter, Gauge

from twisted.internet import defer

logger = logging.getLogger(__name__)


_background_process_start_count = Counter(
    "matrix_search_background_process_start_count",
    "Number of background processes started",
    labelnames=["name"],
)

_background_process_in_flight_count = Gauge(
    "matrix_search_background_process_in_flight_count",
    "Number of background processes in flight",
    labelnames=["name"],
)

_background_process_failure_count = Counter(
    "matrix_search_background_process_failure_count",
    "Number of background processes which raised an exception",
    labelnames=["name"],
)

R = TypeVar("R")


def run_as_background_process(
    desc: str,
    func: Callable[..., Awaitable[R | None]],
    *args: Any,
    **kwargs: Any,
) -> "defer.Deferred[R | None]":
    """Run the given function as a background process, with metrics.

    This should be used to wrap processes which are fired off to run in the
    background: the caller does not wait for them, but any exception they raise
    is logged (with the description) and counted, rather than being lost in an
    unhandled Deferred.

    Args:
        desc: a description for this background process type
        func: a function, which may return a Deferred or a coroutine
        args: positional args for func
        kwargs: keyword args for func

    Returns:
        Deferred which returns the result of func, or `None` if func raises.
    """

    async def run() -> R | None:
        _background_process_start_count.labels(name=desc).inc()
        _background_process_in_flight_count.labels(name=desc).inc()

        try:
            return await func(*args, **kwargs)
        except defer.CancelledError:
            logger.debug("Background process '%s' was cancelled", desc)
            return None
        except Exception:
            _background_process_failure_count.labels(name=desc).inc()
            logger.exception("Background process '%s' threw an exception", desc)
            return None
        finally:
            _background_process_in_flight_count.labels(name=desc).dec()

    return defer.ensureDeferred(run())
