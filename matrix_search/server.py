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

import functools
import logging
from typing import Any, Callable, TypeVar, cast

from matrix_search import __version__
from matrix_search.config.indexer import IndexerConfig
from matrix_search.crypto.engine import CryptoEngine, NullCryptoEngine
from matrix_search.crypto.orchestrator import EncryptionOrchestrator
from matrix_search.handlers.backfill import BackfillHandler
from matrix_search.handlers.commands import CommandHandler
from matrix_search.handlers.ingestion import IngestionCoordinator
from matrix_search.handlers.sync import LiveSyncHandler
from matrix_search.http.client import SimpleHttpClient
from matrix_search.http.transport import MatrixTransport
from matrix_search.search import SearchStorage
from matrix_search.search.meilisearch import MeilisearchStorage
from matrix_search.storage.cursors import BackfillStateStore, SyncCursorStore
from matrix_search.types import IIndexerReactor
from matrix_search.util.clock import Clock

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[["IndexerServer"], Any])


def cache_in_self(builder: F) -> F:
    """Wraps a function called e.g. `get_foo`, checking if `self._foo` exists and
    returning if so. If not, calls the given function and sets `self._foo` to it.

    Also ensures that dependency cycles throw an exception correctly, rather
    than overflowing the stack.
    """

    if not builder.__name__.startswith("get_"):
        raise Exception(
            "@cache_in_self can only be used on functions starting with `get_`"
        )

    # get_attr -> _attr
    depname = builder.__name__[len("get") :]

    building = [False]

    @functools.wraps(builder)
    def _get(self: "IndexerServer") -> Any:
        try:
            return getattr(self, depname)
        except AttributeError:
            pass

        # Prevent cyclic dependencies from deadlocking
        if building[0]:
            raise ValueError("Cyclic dependency while building %s" % (depname,))

        building[0] = True
        try:
            dep = builder(self)
            setattr(self, depname, dep)
        finally:
            building[0] = False

        return dep

    return cast(F, _get)


class IndexerServer:
    """Holds the components of a running indexer.

    Dependencies should be added by creating a `def get_<depname>(self)`
    function, wrapping it in `@cache_in_self`. Tests can swap a component out
    by setting `_<depname>` before anything asks for it.

    The account we are running as is only known once we have asked the
    homeserver, so `set_identity` must be called before building anything that
    depends on it (the crypto engine and the command handler).

    Attributes:
        config: The full config of the indexer.
    """

    def __init__(self, config: IndexerConfig, reactor: IIndexerReactor | None = None):
        if not reactor:
            from twisted.internet import reactor as _reactor

            reactor = cast(IIndexerReactor, _reactor)

        self._reactor = reactor
        self.config = config
        self.version_string = "matrix-search/" + __version__

        self._user_id: str | None = None
        self._device_id: str | None = None

    def set_identity(self, user_id: str, device_id: str) -> None:
        self._user_id = user_id
        self._device_id = device_id

    def get_user_id(self) -> str:
        if self._user_id is None:
            raise Exception("set_identity has not been called")
        return self._user_id

    def get_device_id(self) -> str:
        if self._device_id is None:
            raise Exception("set_identity has not been called")
        return self._device_id

    def get_reactor(self) -> IIndexerReactor:
        """
        Fetch the Twisted reactor in use by this IndexerServer.
        """
        return self._reactor

    @cache_in_self
    def get_clock(self) -> Clock:
        return Clock(self._reactor)

    @cache_in_self
    def get_http_client(self) -> SimpleHttpClient:
        return SimpleHttpClient(
            self.get_reactor(),
            self.get_clock(),
            self.config.homeserver.url,
            self.config.homeserver.access_token,
            user_agent=self.version_string,
        )

    @cache_in_self
    def get_transport(self) -> MatrixTransport:
        return MatrixTransport(
            self.get_http_client(),
            page_retries=self.config.backfill.page_retries,
            page_retry_delay=self.config.backfill.page_retry_delay,
        )

    @cache_in_self
    def get_crypto_engine(self) -> CryptoEngine:
        engine = self.config.encryption.crypto_engine
        if engine is None:
            logger.info(
                "No crypto engine configured; encrypted rooms won't be indexed"
            )
            return NullCryptoEngine()

        engine_class, engine_config = engine
        logger.info("Using crypto engine %s", engine_class.__name__)
        return engine_class(
            engine_config,
            user_id=self.get_user_id(),
            device_id=self.get_device_id(),
            store_path=self.config.storage.crypto_store_path,
        )

    @cache_in_self
    def get_encryption_orchestrator(self) -> EncryptionOrchestrator:
        return EncryptionOrchestrator(self.get_transport(), self.get_crypto_engine())

    @cache_in_self
    def get_sync_cursor_store(self) -> SyncCursorStore:
        return SyncCursorStore(self.config.storage.sync_checkpoint_path)

    @cache_in_self
    def get_backfill_state_store(self) -> BackfillStateStore:
        return BackfillStateStore(self.config.storage.backfill_checkpoint_path)

    @cache_in_self
    def get_search_http_client(self) -> SimpleHttpClient:
        return SimpleHttpClient(
            self.get_reactor(),
            self.get_clock(),
            self.config.search.meilisearch_host,
            self.config.search.meilisearch_master_key,
            user_agent=self.version_string,
        )

    @cache_in_self
    def get_search_storage(self) -> SearchStorage:
        return MeilisearchStorage(
            self.get_search_http_client(), self.config.search.index
        )

    @cache_in_self
    def get_command_handler(self) -> CommandHandler | None:
        if not self.config.commands.enabled:
            return None
        return CommandHandler(self)

    @cache_in_self
    def get_ingestion_coordinator(self) -> IngestionCoordinator:
        return IngestionCoordinator(self)

    @cache_in_self
    def get_sync_handler(self) -> LiveSyncHandler:
        return LiveSyncHandler(self)

    @cache_in_self
    def get_backfill_handler(self) -> BackfillHandler:
        return BackfillHandler(self)
