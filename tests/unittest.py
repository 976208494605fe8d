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

import os
from typing import Awaitable, TypeVar

from twisted.internet import defer
from twisted.internet.testing import MemoryReactorClock
from twisted.python.failure import Failure
from twisted.trial import unittest as _unittest

from matrix_search.config.indexer import IndexerConfig
from matrix_search.server import IndexerServer
from matrix_search.types import JsonDict
from matrix_search.util.clock import Clock

from tests.test_utils import (
    FakeCryptoEngine,
    FakeTransport,
    InMemorySearchStorage,
)
from tests.test_utils.logging_setup import setup_logging
from tests.utils import BOT_DEVICE_ID, BOT_USER_ID, default_config

setup_logging()

TV = TypeVar("TV")


class TestCase(_unittest.TestCase):
    """A subclass of twisted.trial's TestCase with helpers for driving
    coroutines to completion."""

    def get_success(self, d: Awaitable[TV]) -> TV:
        """Assert that the given coroutine or Deferred has completed, and
        return its result."""
        deferred: defer.Deferred[TV] = defer.ensureDeferred(d)  # type: ignore[arg-type]
        return self.successResultOf(deferred)

    def get_failure(self, d: Awaitable, exc: type[BaseException]) -> Failure:
        """Assert that the given coroutine or Deferred has failed with the
        given exception, and return the failure."""
        deferred: defer.Deferred = defer.ensureDeferred(d)  # type: ignore[arg-type]
        return self.failureResultOf(deferred, exc)


class IndexerTestCase(TestCase):
    """
    A base TestCase that builds an IndexerServer whose outside world is faked
    out: the homeserver (`self.transport`), the crypto engine
    (`self.crypto_engine`) and the search storage (`self.search_storage`).

    Time only moves when the test advances `self.reactor`.

    Attributes:
        storage_path: a fresh directory for the checkpoints.
    """

    def setUp(self) -> None:
        self.reactor = MemoryReactorClock()
        self.clock = Clock(self.reactor)

        self.storage_path = os.path.abspath(self.mktemp())
        os.makedirs(self.storage_path)

        config = IndexerConfig()
        config.parse_config_dict(self.default_config())
        self.hs = self.make_indexer_server(config)

        self.prepare(self.reactor, self.clock, self.hs)

    def tearDown(self) -> None:
        self.clock.shutdown()

    def default_config(self) -> JsonDict:
        """Get a default config dictionary. Override this to change the
        config of the test's IndexerServer."""
        return default_config(self.storage_path)

    def make_indexer_server(self, config: IndexerConfig) -> IndexerServer:
        hs = IndexerServer(config, reactor=self.reactor)
        hs._clock = self.clock  # type: ignore[attr-defined]

        self.transport = FakeTransport()
        self.crypto_engine = FakeCryptoEngine()
        self.search_storage = InMemorySearchStorage()
        hs._transport = self.transport  # type: ignore[attr-defined]
        hs._crypto_engine = self.crypto_engine  # type: ignore[attr-defined]
        hs._search_storage = self.search_storage  # type: ignore[attr-defined]

        hs.set_identity(BOT_USER_ID, BOT_DEVICE_ID)
        return hs

    def prepare(
        self, reactor: MemoryReactorClock, clock: Clock, hs: IndexerServer
    ) -> None:
        """
        Prepare for the test. Called after the IndexerServer is built.
        """

    def pump(self, by: float = 0.0) -> None:
        """Advance the clock, running any calls which become due."""
        self.reactor.advance(by)
