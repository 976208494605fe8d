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

"""The contract between the indexer and the end-to-end encryption engine.

The engine itself (an Olm/Megolm implementation with its own key store) is
provided by a module named in the config. It never talks to the network: it
hands us `OutgoingRequest`s to send, and we feed it what the homeserver says.
"""

import logging
from typing import Any, Final, Mapping, Protocol, Sequence

import attr

from matrix_search.api.errors import DecryptionError
from matrix_search.types import JsonDict

logger = logging.getLogger(__name__)


class RequestType:
    """The kinds of request the crypto engine can ask us to send."""

    KEYS_UPLOAD: Final = "keys_upload"
    KEYS_QUERY: Final = "keys_query"
    KEYS_CLAIM: Final = "keys_claim"
    SIGNATURE_UPLOAD: Final = "signature_upload"
    TO_DEVICE: Final = "to_device"
    ROOM_MESSAGE: Final = "room_message"
    KEYS_BACKUP: Final = "keys_backup"


@attr.s(slots=True, frozen=True, auto_attribs=True)
class OutgoingRequest:
    """A request the crypto engine wants sent to the homeserver.

    Attributes:
        id: the engine's ID for the request, to report back once it is sent.
        type: one of `RequestType`.
        body: the JSON body to send.
        event_type: the event type, for to-device and room message requests.
        txn_id: the transaction ID, for to-device and room message requests.
        room_id: the room, for room message requests.
        version: the key backup version, for key backup requests.
    """

    id: str
    type: str
    body: JsonDict
    event_type: str | None = None
    txn_id: str | None = None
    room_id: str | None = None
    version: str | None = None


class CryptoEngine(Protocol):
    async def decrypt_room_event(self, serialized_event: str, room_id: str) -> str:
        """Decrypt an `m.room.encrypted` event.

        Args:
            serialized_event: the encrypted event, as JSON.
            room_id: the room the event was sent in.

        Returns:
            The plaintext event, as JSON.

        Raises:
            DecryptionError if the event can't be decrypted.
        """
        ...

    async def receive_sync_changes(
        self,
        to_device_events: Sequence[JsonDict],
        changed_devices: Sequence[str],
        left_devices: Sequence[str],
        one_time_key_counts: Mapping[str, int],
        unused_fallback_keys: Sequence[str],
    ) -> None:
        """Feed the encryption-related parts of a sync response to the engine."""
        ...

    async def outgoing_requests(self) -> list[OutgoingRequest]:
        """The requests the engine currently wants sent."""
        ...

    async def mark_request_as_sent(
        self, request_id: str, request_type: str, response: str
    ) -> None:
        """Report the homeserver's (JSON) response to a request."""
        ...

    async def update_tracked_users(self, user_ids: Sequence[str]) -> None:
        """Make sure the engine tracks the devices of the given users."""
        ...

    async def get_missing_sessions(
        self, user_ids: Sequence[str]
    ) -> OutgoingRequest | None:
        """Returns a keys claim request for the users' devices we have no Olm
        session with, or None if there are none."""
        ...


class NullCryptoEngine:
    """The engine used when no encryption module is configured.

    It never has anything to send, and every decryption fails, so encrypted
    events are simply not indexed.
    """

    def __init__(self, config: Any = None, **kwargs: Any):
        pass

    async def decrypt_room_event(self, serialized_event: str, room_id: str) -> str:
        raise DecryptionError("End-to-end encryption is not configured")

    async def receive_sync_changes(
        self,
        to_device_events: Sequence[JsonDict],
        changed_devices: Sequence[str],
        left_devices: Sequence[str],
        one_time_key_counts: Mapping[str, int],
        unused_fallback_keys: Sequence[str],
    ) -> None:
        pass

    async def outgoing_requests(self) -> list[OutgoingRequest]:
        return []

    async def mark_request_as_sent(
        self, request_id: str, request_type: str, response: str
    ) -> None:
        pass

    async def update_tracked_users(self, user_ids: Sequence[str]) -> None:
        pass

    async def get_missing_sessions(
        self, user_ids: Sequence[str]
    ) -> OutgoingRequest | None:
        return None
