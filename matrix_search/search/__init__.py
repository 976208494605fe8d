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

"""The interface to the search storage the indexed messages are kept in."""

from typing import Protocol

import attr

from matrix_search.events import MessageEvent
from matrix_search.events.utils import normalize_event_id, redact_mxids
from matrix_search.types import JsonDict


@attr.s(slots=True, frozen=True, auto_attribs=True)
class IndexedDocument:
    """A message as it is stored for searching.

    This is derived from the event, so it can always be rebuilt; the event is
    the authoritative copy.
    """

    id: str
    sender: str
    content: JsonDict
    room_id: str
    origin_server_ts: int
    room_name: str | None = None

    @classmethod
    def from_event(
        cls, event: MessageEvent, room_name: str | None = None
    ) -> "IndexedDocument":
        return cls(
            id=normalize_event_id(event.event_id),
            sender=event.sender,
            content=redact_mxids(event.content),
            room_id=event.room_id,
            origin_server_ts=event.origin_server_ts,
            room_name=room_name,
        )

    def to_json(self) -> JsonDict:
        doc = {
            "id": self.id,
            "sender": self.sender,
            "content": self.content,
            "room_id": self.room_id,
            "origin_server_ts": self.origin_server_ts,
        }
        if self.room_name:
            doc["room_name"] = self.room_name
        return doc


@attr.s(slots=True, frozen=True, auto_attribs=True)
class SearchFilters:
    """Restricts a query to the messages of a room and/or a sender."""

    room_id: str | None = None
    sender: str | None = None


@attr.s(slots=True, frozen=True, auto_attribs=True)
class SearchHits:
    hits: list[JsonDict]
    estimated_total_hits: int


class SearchStorage(Protocol):
    async def setup(self) -> None:
        """Prepare the storage for use, e.g. by creating the index. Called once
        at startup; must be safe to call again on every start.

        Raises:
            StorageError
        """
        ...

    async def upsert(self, document: IndexedDocument) -> None:
        """Insert the document, replacing any document with the same ID.

        Raises:
            StorageError
        """
        ...

    async def delete(self, document_id: str) -> None:
        """Delete the document with the given ID.

        Raises:
            NotFoundError if there is no such document.
            StorageError
        """
        ...

    async def query(
        self,
        term: str,
        filters: SearchFilters = SearchFilters(),
        limit: int = 20,
        offset: int = 0,
    ) -> SearchHits:
        """Search for documents matching the term. An empty term matches every
        document, most recent first.

        Raises:
            StorageError
        """
        ...
