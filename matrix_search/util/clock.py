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
from typing import Any, Callable

from twisted.internet import defer
from twisted.internet.interfaces import IDelayedCall, IReactorTime

logger = logging.getLogger(__name__)


class Clock:
    """
    A Clock wraps a Twisted reactor and provides utilities on top of it.

    This clock should be used in place of calls to the base reactor wherever
    `DelayedCall`s are made, so that tests can swap in a `MemoryReactorClock`
    and advance time by hand. Pending calls are tracked so they can be
    cancelled when the indexer shuts down.

    Args:
        reactor: The Twisted reactor to use.
    """

    def __init__(self, reactor: IReactorTime) -> None:
        self._reactor = reactor

        self._delayed_calls: set[IDelayedCall] = set()
        """Delayed calls which have not fired yet"""

        self._is_shutdown = False

    def shutdown(self) -> None:
        self._is_shutdown = True
        for call in list(self._delayed_calls):
            if call.active():
                call.cancel()
        self._delayed_calls.clear()

    async def sleep(self, seconds: float) -> None:
        d: defer.Deferred[float] = defer.Deferred()
        self.call_later(seconds, d.callback, seconds)
        await d

    def time(self) -> float:
        """Returns the current system time in seconds since epoch."""
        return self._reactor.seconds()

    def time_msec(self) -> int:
        """Returns the current system time in milliseconds since epoch."""
        return int(self.time() * 1000)

    def call_later(
        self, delay: float, callback: Callable, *args: Any, **kwargs: Any
    ) -> IDelayedCall:
        """Call something later

        Args:
            delay: How long to wait in seconds.
            callback: Function to call
            *args: Postional arguments to pass to function.
            **kwargs: Key arguments to pass to function.
        """
        if self._is_shutdown:
            raise Exception("Cannot start delayed call. Clock has been shutdown")

        def wrapped_callback(*args: Any, **kwargs: Any) -> None:
            self._delayed_calls.discard(call)
            callback(*args, **kwargs)

        call = self._reactor.callLater(delay, wrapped_callback, *args, **kwargs)
        self._delayed_calls.add(call)
        return call
