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
from typing import Any, Awaitable, Callable

from twisted.internet import defer

from matrix_search.api.constants import EventTypes, Membership
from matrix_search.api.errors import (
    DecryptionError,
    InvalidOutgoingRequestError,
    NetworkError,
    UnknownRequestTypeError,
)
from matrix_search.crypto.engine import CryptoEngine, OutgoingRequest, RequestType
from matrix_search.http.transport import MatrixTransport
from matrix_search.metrics import decryption_failures_counter
from matrix_search.types import JsonDict
from matrix_search.util.json import json_decoder, json_encoder

logger = logging.getLogger(__name__)

# Keys which the plaintext event inherits from the encrypted one if the crypto
# engine leaves them out.
_ENVELOPE_KEYS = ("event_id", "sender", "origin_server_ts", "room_id")


class EncryptionOrchestrator:
    """Drives the crypto engine: feeds it sync data, sends the requests it
    asks for, and decrypts room events with it.

    Args:
        transport: used to send the engine's requests to the homeserver.
        engine: the crypto engine.
    """

    def __init__(self, transport: MatrixTransport, engine: CryptoEngine):
        self._transport = transport
        self._engine = engine

        # Both the live sync and the backfill end up draining the engine's
        # queue; make sure they don't send the same request twice.
        self._outgoing_requests_lock = defer.DeferredLock()

        self._senders: dict[str, Callable[[OutgoingRequest], Awaitable[Any]]] = {
            RequestType.KEYS_UPLOAD: lambda r: self._transport.upload_keys(r.body),
            RequestType.KEYS_QUERY: lambda r: self._transport.query_keys(r.body),
            RequestType.KEYS_CLAIM: lambda r: self._transport.claim_keys(r.body),
            RequestType.SIGNATURE_UPLOAD: lambda r: self._transport.upload_signatures(
                r.body
            ),
            RequestType.KEYS_BACKUP: self._send_keys_backup,
            RequestType.TO_DEVICE: self._send_to_device,
            RequestType.ROOM_MESSAGE: self._send_room_message,
        }

    async def decrypt(self, event: JsonDict, room_id: str) -> JsonDict:
        """Decrypt the given event if it is encrypted.

        Plaintext events are returned as they are (the very same object). If an
        encrypted event can't be decrypted, it is returned unchanged: callers
        will find it isn't a message and skip it.

        Args:
            event: the raw event.
            room_id: the room the event is in.

        Returns:
            The plaintext event.
        """
        if event.get("type") != EventTypes.Encrypted:
            return event

        try:
            await self.track_room_devices(room_id)
        except NetworkError as e:
            # We may well have the keys already, so try to decrypt regardless.
            logger.warning("Failed to update the devices in %s: %s", room_id, e)

        event_id = event.get("event_id")
        try:
            plaintext = await self._engine.decrypt_room_event(
                json_encoder.encode(event), room_id
            )
            decrypted = json_decoder.decode(plaintext)
        except DecryptionError as e:
            decryption_failures_counter.inc()
            logger.warning("Unable to decrypt %s in %s: %s", event_id, room_id, e)
            return event
        except ValueError as e:
            decryption_failures_counter.inc()
            logger.warning(
                "Crypto engine returned invalid JSON for %s in %s: %s",
                event_id,
                room_id,
                e,
            )
            return event

        if not isinstance(decrypted, dict):
            decryption_failures_counter.inc()
            logger.warning("Decrypted %s in %s is not an event", event_id, room_id)
            return event

        for key in _ENVELOPE_KEYS:
            if key not in decrypted and key in event:
                decrypted[key] = event[key]
        decrypted.setdefault("room_id", room_id)

        return decrypted

    async def track_room_devices(self, room_id: str) -> None:
        """Make sure the engine knows about the devices of everyone in the room,
        and has an Olm session with each of them.

        Raises:
            NetworkError if talking to the homeserver failed.
        """
        members = await self._transport.get_room_members(
            room_id, (Membership.JOIN, Membership.INVITE)
        )
        await self._engine.update_tracked_users(members)

        # Tracking new users queues up key queries.
        await self.send_outgoing_requests()

        request = await self._engine.get_missing_sessions(members)
        if request is None:
            return

        logger.debug("Claiming one-time keys for %d users in %s", len(members), room_id)
        response = await self._transport.claim_keys(request.body)
        await self._engine.mark_request_as_sent(
            request.id, request.type, json_encoder.encode(response)
        )

    async def receive_sync_changes(self, sync_response: JsonDict) -> None:
        """Hand the encryption-related parts of a sync response to the engine."""
        to_device_events = (sync_response.get("to_device") or {}).get("events") or []
        device_lists = sync_response.get("device_lists") or {}

        await self._engine.receive_sync_changes(
            to_device_events,
            device_lists.get("changed") or [],
            device_lists.get("left") or [],
            sync_response.get("device_one_time_keys_count") or {},
            sync_response.get("device_unused_fallback_key_types") or [],
        )

    async def send_outgoing_requests(self) -> None:
        """Send every request the engine currently wants sent.

        A request which fails is not retried here: the engine keeps it in its
        queue until it is marked as sent, so it is picked up again the next
        time this is called. A failing request never stops the others from
        being sent.
        """
        async with self._outgoing_requests_lock:
            requests = await self._engine.outgoing_requests()
            for request in requests:
                try:
                    response = await self._send(request)
                    await self._engine.mark_request_as_sent(
                        request.id, request.type, json_encoder.encode(response)
                    )
                except InvalidOutgoingRequestError as e:
                    logger.error("Dropping request %s: %s", request.id, e)
                except NetworkError as e:
                    logger.warning(
                        "Failed to send %s request %s, will retry: %s",
                        request.type,
                        request.id,
                        e,
                    )
                except Exception:
                    logger.exception(
                        "Error sending %s request %s", request.type, request.id
                    )

    async def _send(self, request: OutgoingRequest) -> Any:
        sender = self._senders.get(request.type)
        if sender is None:
            raise UnknownRequestTypeError(request.type)
        logger.debug("Sending %s request %s", request.type, request.id)
        return await sender(request)

    async def _send_keys_backup(self, request: OutgoingRequest) -> Any:
        if request.version is None:
            raise InvalidOutgoingRequestError(
                "%s request has no backup version" % (request.type,)
            )
        return await self._transport.upload_room_keys_backup(
            request.version, request.body
        )

    async def _send_to_device(self, request: OutgoingRequest) -> Any:
        if request.event_type is None or request.txn_id is None:
            raise InvalidOutgoingRequestError(
                "%s request needs an event type and a transaction ID"
                % (request.type,)
            )
        return await self._transport.send_to_device(
            request.event_type, request.txn_id, request.body
        )

    async def _send_room_message(self, request: OutgoingRequest) -> Any:
        if (
            request.room_id is None
            or request.event_type is None
            or request.txn_id is None
        ):
            raise InvalidOutgoingRequestError(
                "%s request needs a room, an event type and a transaction ID"
                % (request.type,)
            )
        return await self._transport.send_room_event(
            request.room_id, request.event_type, request.txn_id, request.body
        )
