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
from typing import TYPE_CHECKING, AsyncIterator

import attr

from matrix_search.api.constants import Direction, EventTypes, RelationTypes
from matrix_search.api.errors import NetworkError
from matrix_search.events import get_relation
from matrix_search.metrics import rooms_backfilled_counter
from matrix_search.types import JsonDict

if TYPE_CHECKING:
    from matrix_search.server import IndexerServer

logger = logging.getLogger(__name__)

# Only fetch the events which may turn out to be messages.
BACKFILL_FILTER: JsonDict = {"types": [EventTypes.Message, EventTypes.Encrypted]}


@attr.s(slots=True, frozen=True, auto_attribs=True)
class Page:
    """A page of a room's history, newest event first.

    Attributes:
        events: the raw events in the page.
        next_token: the token to fetch the next (older) page with, or None if
            this is the oldest page.
    """

    events: list[JsonDict]
    next_token: str | None


def _track_edit(event: JsonDict, edited_event_ids: set[str]) -> None:
    content = event.get("content")
    if not isinstance(content, dict):
        return
    relation = get_relation(content)
    if relation is not None and relation[0] == RelationTypes.REPLACE:
        edited_event_ids.add(relation[1])


class BackfillHandler:
    """Crawls the history of every joined room, newest to oldest, and hands
    each message to the ingestion coordinator.

    A room is recorded as completed once its whole history has been crawled,
    and isn't crawled again on later runs. A room whose crawl fails part way
    through is crawled again from the start on the next run.

    Since history is walked backwards, an edit is always seen before the
    message it replaces. The replaced message is then skipped, so that only
    the latest version of each message ends up in the index.
    """

    def __init__(self, hs: "IndexerServer"):
        self._transport = hs.get_transport()
        self._orchestrator = hs.get_encryption_orchestrator()
        self._state_store = hs.get_backfill_state_store()
        self._coordinator = hs.get_ingestion_coordinator()

    async def run(self) -> None:
        """Backfill every joined room which hasn't been backfilled yet.

        Raises:
            PersistenceError if the backfill checkpoint can't be written.
            ValueError if the backfill checkpoint on disk is invalid.
            NetworkError if the list of joined rooms can't be fetched.
        """
        state = self._state_store.load()
        joined_rooms = await self._transport.get_joined_rooms()
        pending = [r for r in joined_rooms if r not in state.completed_rooms]
        logger.info(
            "Backfilling %d of %d joined rooms", len(pending), len(joined_rooms)
        )

        # Event IDs superseded by an edit seen earlier in this run.
        edited_event_ids: set[str] = set()

        for room_id in pending:
            try:
                await self._backfill_room(room_id, edited_event_ids)
            except NetworkError as e:
                logger.warning(
                    "Failed to backfill %s, will retry on next start: %s", room_id, e
                )
                continue

            state.completed_rooms.add(room_id)
            self._state_store.save(state)
            rooms_backfilled_counter.inc()
            logger.info("Finished backfilling %s", room_id)

        logger.info("Backfill complete")

    async def paginate(
        self, room_id: str, from_token: str | None = None
    ) -> AsyncIterator[Page]:
        """Yields the pages of a room's history, from `from_token` (or the most
        recent event) backwards to the room's creation.

        Raises:
            NetworkError if a page can't be fetched, even after retrying.
        """
        token = from_token
        while True:
            response = await self._transport.get_room_messages(
                room_id, Direction.BACKWARDS, token, BACKFILL_FILTER
            )
            events = [e for e in response.get("chunk") or [] if isinstance(e, dict)]
            end = response.get("end")
            next_token = end if isinstance(end, str) else None

            # A server which hands back the token we asked with has nothing
            # more to give.
            if next_token == token:
                next_token = None

            yield Page(events=events, next_token=next_token)

            if next_token is None:
                return
            token = next_token

    async def _backfill_room(self, room_id: str, edited_event_ids: set[str]) -> None:
        logger.info("Backfilling %s", room_id)
        async for page in self.paginate(room_id):
            for raw_event in page.events:
                if raw_event.get("event_id") in edited_event_ids:
                    logger.debug("Skipping edited event %s", raw_event["event_id"])
                    continue

                _track_edit(raw_event, edited_event_ids)
                event = await self._orchestrator.decrypt(raw_event, room_id)
                if event is not raw_event:
                    # Encrypted edits only reveal their relation once decrypted.
                    _track_edit(event, edited_event_ids)

                await self._coordinator.on_backfill_event(room_id, event)
