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
from typing import TYPE_CHECKING, Literal

from matrix_search.api.constants import MessageTypes
from matrix_search.api.errors import NetworkError, NotFoundError
from matrix_search.events import MessageEvent, parse_event
from matrix_search.events.utils import normalize_event_id
from matrix_search.http.transport import MatrixTransport
from matrix_search.metrics import (
    documents_deleted_counter,
    documents_upserted_counter,
    events_received_counter,
)
from matrix_search.metrics.background_process_metrics import run_as_background_process
from matrix_search.search import IndexedDocument
from matrix_search.types import JsonDict

if TYPE_CHECKING:
    from matrix_search.server import IndexerServer

logger = logging.getLogger(__name__)


class RoomNameCache:
    """Remembers the names of rooms for the lifetime of the process.

    A room is either unknown (not in the cache), named, or known to have no
    name (cached as False, so that we don't look it up for every message).
    Room renames are not picked up until restart.
    """

    def __init__(self, transport: MatrixTransport):
        self._transport = transport
        self._names: dict[str, str | Literal[False]] = {}

    async def get(self, room_id: str) -> str | None:
        cached = self._names.get(room_id)
        if cached is not None:
            return cached or None

        try:
            name = await self._transport.get_room_name(room_id)
        except NetworkError as e:
            # Don't cache the failure; we'll try again for the next message.
            logger.warning("Failed to look up the name of %s: %s", room_id, e)
            return None

        self._names[room_id] = name or False
        return name


class IngestionCoordinator:
    """Turns the messages from the live sync and the backfill into documents in
    search storage.

    Both paths may hand us the same message, in any order. Documents are keyed
    by event ID, so indexing a message twice leaves a single copy. The IDs of
    edited messages are remembered for the lifetime of the process, so that an
    original which turns up after its edit (e.g. backfilled after the edit came
    down the live sync) isn't indexed again.
    """

    def __init__(self, hs: "IndexerServer"):
        self._storage = hs.get_search_storage()
        self._command_handler = hs.get_command_handler()
        self.room_names = RoomNameCache(hs.get_transport())

        # IDs of the events which an edit we have indexed replaces.
        self._replaced_event_ids: set[str] = set()

    async def on_live_event(self, room_id: str, event: JsonDict) -> None:
        events_received_counter.labels(source="live").inc()
        if self._command_handler is not None:
            if await self._command_handler.maybe_handle(room_id, event):
                return
        await self.handle_message(room_id, event)

    async def on_backfill_event(self, room_id: str, event: JsonDict) -> None:
        events_received_counter.labels(source="backfill").inc()
        await self.handle_message(room_id, event)

    async def handle_message(self, room_id: str, event: JsonDict) -> None:
        """Index the event, if it is a message we index.

        If the message is an edit, the document of the message it replaces is
        deleted: only the latest version of a message is searchable. A message
        which has already been edited is not indexed.

        The storage operations are started in the background and not waited
        for.
        """
        parsed = parse_event(event, room_id)
        if not isinstance(parsed, MessageEvent):
            return
        if parsed.msgtype not in MessageTypes.INDEXED:
            return

        if parsed.event_id in self._replaced_event_ids:
            logger.debug("Not indexing %s, which has been edited", parsed.event_id)
            return

        replaces = parsed.replaces
        if replaces is not None:
            self._replaced_event_ids.add(replaces)
            run_as_background_process(
                "delete_replaced_document",
                self._delete_document,
                normalize_event_id(replaces),
            )

        room_name = await self.room_names.get(room_id)
        document = IndexedDocument.from_event(parsed, room_name)
        run_as_background_process("upsert_document", self._upsert_document, document)

    async def _upsert_document(self, document: IndexedDocument) -> None:
        await self._storage.upsert(document)
        documents_upserted_counter.inc()

    async def _delete_document(self, document_id: str) -> None:
        try:
            await self._storage.delete(document_id)
        except NotFoundError:
            # The original was never indexed, e.g. because the backfill
            # skipped it.
            logger.debug("Replaced document %s was not in the index", document_id)
            return
        documents_deleted_counter.inc()
