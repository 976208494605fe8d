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

"""
Utilities for running the unit tests
"""
import json
from typing import Any, Iterable, Tuple

import attr
import zope.interface

from twisted.internet import defer
from twisted.internet.interfaces import IProtocol
from twisted.python.failure import Failure
from twisted.web.client import ResponseDone
from twisted.web.http import RESPONSES
from twisted.web.http_headers import Headers
from twisted.web.iweb import IResponse

from matrix_search.api.errors import DecryptionError, NotFoundError
from matrix_search.crypto.engine import OutgoingRequest
from matrix_search.search import IndexedDocument, SearchFilters, SearchHits
from matrix_search.types import JsonDict


# Type ignore: it does not fully implement IResponse, but is good enough for tests
@zope.interface.implementer(IResponse)
@attr.s(slots=True, frozen=True, auto_attribs=True, eq=False)
class FakeResponse:  # type: ignore[misc]
    """A fake twisted.web.IResponse object, good enough for treq to read."""

    version: Tuple[bytes, int, int] = (b"HTTP", 1, 1)

    # HTTP response code
    code: int = 200

    # body of the response
    body: bytes = b""

    headers: Headers = attr.Factory(Headers)

    @property
    def phrase(self) -> bytes:
        return RESPONSES.get(self.code, b"Unknown Status")

    @property
    def length(self) -> int:
        return len(self.body)

    def deliverBody(self, protocol: IProtocol) -> None:
        protocol.dataReceived(self.body)
        protocol.connectionLost(Failure(ResponseDone()))

    @classmethod
    def json(cls, *, code: int = 200, payload: Any) -> "FakeResponse":
        headers = Headers({"Content-Type": ["application/json"]})
        body = json.dumps(payload).encode("utf-8")
        return cls(code=code, body=body, headers=headers)


def make_event(
    event_id: str,
    body: str = "hello",
    *,
    sender: str = "@alice:test",
    msgtype: str = "m.text",
    origin_server_ts: int = 1000,
    replaces: str | None = None,
) -> JsonDict:
    """Build a raw `m.room.message` event, as the homeserver would send it."""
    content: JsonDict = {"msgtype": msgtype, "body": body}
    if replaces is not None:
        content["m.new_content"] = {"msgtype": msgtype, "body": body}
        content["m.relates_to"] = {"rel_type": "m.replace", "event_id": replaces}
    return {
        "event_id": event_id,
        "type": "m.room.message",
        "sender": sender,
        "origin_server_ts": origin_server_ts,
        "content": content,
    }


def make_encrypted_event(
    event_id: str, *, sender: str = "@alice:test", replaces: str | None = None
) -> JsonDict:
    content: JsonDict = {
        "algorithm": "m.megolm.v1.aes-sha2",
        "ciphertext": "AwgAEnAC...",
        "session_id": "session",
    }
    if replaces is not None:
        content["m.relates_to"] = {"rel_type": "m.replace", "event_id": replaces}
    return {
        "event_id": event_id,
        "type": "m.room.encrypted",
        "sender": sender,
        "origin_server_ts": 1000,
        "content": content,
    }


def make_sync_response(
    next_batch: str, rooms: dict[str, Iterable[JsonDict]] | None = None
) -> JsonDict:
    return {
        "next_batch": next_batch,
        "rooms": {
            "join": {
                room_id: {"timeline": {"events": list(events)}}
                for room_id, events in (rooms or {}).items()
            }
        },
    }


class FakeTransport:
    """Stands in for `MatrixTransport`, serving canned responses and recording
    what was asked of it.

    Any of the canned responses may be an exception, which is raised instead.
    """

    def __init__(self) -> None:
        self.whoami_response: JsonDict = {
            "user_id": "@indexer:test",
            "device_id": "INDEXERDEVICE",
        }

        # Served in order. Once they run out, /sync hangs forever.
        self.sync_responses: list[JsonDict | Exception] = []
        self.sync_calls: list[str | None] = []

        self.joined_rooms: list[str] | Exception = []

        # (room ID, from token) -> response
        self.room_messages: dict[tuple[str, str | None], JsonDict | Exception] = {}
        self.room_messages_calls: list[tuple[str, str | None]] = []

        self.room_names: dict[str, str | Exception] = {}
        self.room_name_lookups: list[str] = []

        self.room_members: dict[str, list[str]] = {}

        self.sent_messages: list[tuple[str, JsonDict]] = []
        self.redactions: list[tuple[str, str]] = []

        # (endpoint, body) of every key management request
        self.crypto_requests: list[tuple[str, Any]] = []
        # endpoint -> response to serve, or exception to raise
        self.crypto_responses: dict[str, JsonDict | Exception] = {}

    async def whoami(self) -> JsonDict:
        return self.whoami_response

    async def sync(self, since: str | None, timeout_ms: int) -> JsonDict:
        self.sync_calls.append(since)
        if not self.sync_responses:
            # Like a long-poll which never returns.
            return await defer.Deferred()
        return _raise_or_return(self.sync_responses.pop(0))

    async def get_joined_rooms(self) -> list[str]:
        return _raise_or_return(self.joined_rooms)

    async def get_room_messages(
        self,
        room_id: str,
        direction: str = "b",
        from_token: str | None = None,
        event_filter: JsonDict | None = None,
    ) -> JsonDict:
        self.room_messages_calls.append((room_id, from_token))
        return _raise_or_return(self.room_messages[(room_id, from_token)])

    async def get_room_name(self, room_id: str) -> str | None:
        self.room_name_lookups.append(room_id)
        return _raise_or_return(self.room_names.get(room_id))

    async def get_room_members(
        self, room_id: str, memberships: Iterable[str]
    ) -> list[str]:
        return list(self.room_members.get(room_id, []))

    async def send_message(
        self, room_id: str, content: JsonDict, event_type: str = "m.room.message"
    ) -> str:
        self.sent_messages.append((room_id, content))
        return "$sent%d" % (len(self.sent_messages),)

    async def redact_event(
        self, room_id: str, event_id: str, reason: str | None = None
    ) -> JsonDict:
        self.redactions.append((room_id, event_id))
        return {"event_id": "$redaction"}

    async def _crypto_request(self, endpoint: str, body: Any) -> JsonDict:
        self.crypto_requests.append((endpoint, body))
        return _raise_or_return(self.crypto_responses.get(endpoint, {}))

    async def upload_keys(self, body: Any) -> JsonDict:
        return await self._crypto_request("keys/upload", body)

    async def query_keys(self, body: Any) -> JsonDict:
        return await self._crypto_request("keys/query", body)

    async def claim_keys(self, body: Any) -> JsonDict:
        return await self._crypto_request("keys/claim", body)

    async def upload_signatures(self, body: Any) -> JsonDict:
        return await self._crypto_request("keys/signatures/upload", body)

    async def upload_room_keys_backup(self, version: str, body: Any) -> JsonDict:
        return await self._crypto_request(
            "room_keys/keys?version=%s" % (version,), body
        )

    async def send_to_device(self, event_type: str, txn_id: str, body: Any) -> JsonDict:
        return await self._crypto_request(
            "sendToDevice/%s/%s" % (event_type, txn_id), body
        )

    async def send_room_event(
        self, room_id: str, event_type: str, txn_id: str, body: Any
    ) -> JsonDict:
        return await self._crypto_request(
            "rooms/%s/send/%s/%s" % (room_id, event_type, txn_id), body
        )


def _raise_or_return(value: Any) -> Any:
    if isinstance(value, Exception):
        raise value
    return value


class FakeCryptoEngine:
    """A crypto engine which 'decrypts' the events it has been given the
    plaintext of, and otherwise records what it is told."""

    def __init__(self) -> None:
        # event ID -> decrypted event
        self.plaintexts: dict[str, JsonDict] = {}
        self.decrypted: list[str] = []

        self.pending_requests: list[OutgoingRequest] = []
        self.sent_requests: list[tuple[str, str, str]] = []

        self.sync_changes: list[tuple[Any, ...]] = []
        self.tracked_users: list[str] = []
        self.missing_sessions_request: OutgoingRequest | None = None

    async def decrypt_room_event(self, serialized_event: str, room_id: str) -> str:
        event = json.loads(serialized_event)
        plaintext = self.plaintexts.get(event["event_id"])
        if plaintext is None:
            raise DecryptionError("No session for %s" % (event["event_id"],))
        self.decrypted.append(event["event_id"])
        return json.dumps(plaintext)

    async def receive_sync_changes(
        self,
        to_device_events: Any,
        changed_devices: Any,
        left_devices: Any,
        one_time_key_counts: Any,
        unused_fallback_keys: Any,
    ) -> None:
        self.sync_changes.append(
            (
                to_device_events,
                changed_devices,
                left_devices,
                one_time_key_counts,
                unused_fallback_keys,
            )
        )

    async def outgoing_requests(self) -> list[OutgoingRequest]:
        return list(self.pending_requests)

    async def mark_request_as_sent(
        self, request_id: str, request_type: str, response: str
    ) -> None:
        self.sent_requests.append((request_id, request_type, response))
        self.pending_requests = [r for r in self.pending_requests if r.id != request_id]

    async def update_tracked_users(self, user_ids: Any) -> None:
        self.tracked_users.extend(user_ids)

    async def get_missing_sessions(self, user_ids: Any) -> OutgoingRequest | None:
        request = self.missing_sessions_request
        self.missing_sessions_request = None
        return request


class InMemorySearchStorage:
    """Search storage held in a dict, with substring matching for queries."""

    def __init__(self) -> None:
        self.documents: dict[str, JsonDict] = {}
        # ("upsert" | "delete", document ID), in the order they were made
        self.operations: list[tuple[str, str]] = []
        self.is_set_up = False
        self.fail_with: Exception | None = None

    async def setup(self) -> None:
        self.is_set_up = True

    async def upsert(self, document: IndexedDocument) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.operations.append(("upsert", document.id))
        self.documents[document.id] = document.to_json()

    async def delete(self, document_id: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.operations.append(("delete", document_id))
        if document_id not in self.documents:
            raise NotFoundError(document_id)
        del self.documents[document_id]

    async def query(
        self,
        term: str,
        filters: SearchFilters = SearchFilters(),
        limit: int = 20,
        offset: int = 0,
    ) -> SearchHits:
        if self.fail_with is not None:
            raise self.fail_with

        matches = []
        for doc in self.documents.values():
            if filters.room_id is not None and doc["room_id"] != filters.room_id:
                continue
            if filters.sender is not None and doc["sender"] != filters.sender:
                continue
            if term.lower() not in doc["content"].get("body", "").lower():
                continue
            matches.append(doc)

        matches.sort(key=lambda d: d["origin_server_ts"], reverse=True)
        return SearchHits(
            hits=matches[offset : offset + limit], estimated_total_hits=len(matches)
        )
