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

import enum
import logging
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, Iterator

from matrix_search.api.errors import NetworkError
from matrix_search.metrics import sync_loop_counter
from matrix_search.storage.cursors import SyncCursor
from matrix_search.types import JsonDict, RoomEvent

if TYPE_CHECKING:
    from matrix_search.server import IndexerServer

logger = logging.getLogger(__name__)


class SyncState(enum.Enum):
    STOPPED = "stopped"
    POLLING = "polling"
    PROCESSING = "processing"


def _joined_room_timelines(response: JsonDict) -> Iterator[RoomEvent]:
    """Yields the (room ID, event) pairs of the timelines of the joined rooms in
    a sync response, in the order the server sent them."""
    rooms = (response.get("rooms") or {}).get("join") or {}
    for room_id, room in rooms.items():
        timeline = (room or {}).get("timeline") or {}
        for event in timeline.get("events") or []:
            if isinstance(event, dict):
                yield room_id, event


class LiveSyncHandler:
    """Follows the /sync stream, yielding each new timeline event of the rooms
    we are joined to.

    Our position in the stream is checkpointed after every response, once all
    of its events have been handed on. After a restart we resume from the last
    checkpoint, so events are delivered at least once.
    """

    def __init__(self, hs: "IndexerServer"):
        self.clock = hs.get_clock()
        self._transport = hs.get_transport()
        self._orchestrator = hs.get_encryption_orchestrator()
        self._cursor_store = hs.get_sync_cursor_store()

        self._timeout_ms = hs.config.sync.timeout_ms
        self._retry_interval = hs.config.sync.retry_interval

        self.state = SyncState.STOPPED
        self._stop_requested = False

    def stop(self) -> None:
        """Stop following the stream once the current iteration is done."""
        logger.info("Stopping live sync")
        self._stop_requested = True

    async def run(self, callback: Callable[[str, JsonDict], Awaitable[None]]) -> None:
        """Pass every live event to the callback, until stopped.

        Raises:
            PersistenceError if the sync checkpoint can't be written.
        """
        async for room_id, event in self.stream():
            await callback(room_id, event)

    async def stream(self) -> AsyncIterator[RoomEvent]:
        """Yields (room ID, event) pairs from the sync stream, decrypted where
        possible, until `stop` is called.

        Raises:
            PersistenceError if the sync checkpoint can't be written.
        """
        logger.info("Starting live sync")
        self._stop_requested = False
        try:
            while not self._stop_requested:
                async for item in self._sync_once():
                    yield item
        finally:
            self.state = SyncState.STOPPED

    async def _sync_once(self) -> AsyncIterator[RoomEvent]:
        """Do one /sync request and yield the events in the response."""
        self.state = SyncState.POLLING

        # Read the checkpoint from disk each time, so that what we send as
        # `since` is always what was last persisted.
        cursor = self._cursor_store.load()
        since = cursor.current_token if cursor is not None else None

        try:
            response = await self._transport.sync(since, self._timeout_ms)
        except NetworkError as e:
            sync_loop_counter.labels(outcome="error").inc()
            logger.warning(
                "Sync failed, retrying in %ss: %s", self._retry_interval, e
            )
            await self.clock.sleep(self._retry_interval)
            return

        next_token = response.get("next_batch")
        if not isinstance(next_token, str):
            sync_loop_counter.labels(outcome="error").inc()
            logger.warning(
                "Sync response has no next_batch, retrying in %ss",
                self._retry_interval,
            )
            await self.clock.sleep(self._retry_interval)
            return

        self.state = SyncState.PROCESSING

        # The crypto state always moves forward, even for a page we have
        # already seen: to-device messages are not redelivered.
        await self._orchestrator.receive_sync_changes(response)
        await self._orchestrator.send_outgoing_requests()

        if cursor is not None and cursor.is_duplicate(next_token):
            sync_loop_counter.labels(outcome="duplicate").inc()
            logger.info("Skipping already processed sync response %s", next_token)
            self._cursor_store.save(cursor)
            return

        for room_id, event in _joined_room_timelines(response):
            yield room_id, await self._orchestrator.decrypt(event, room_id)

        if cursor is None:
            new_cursor = SyncCursor(current_token=next_token)
        else:
            new_cursor = cursor.advance(next_token)
        self._cursor_store.save(new_cursor)
        sync_loop_counter.labels(outcome="processed").inc()
