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
import urllib.parse
from typing import Any, Iterable

from matrix_search.api.constants import CLIENT_API_PREFIX, Direction, EventTypes
from matrix_search.api.errors import Codes, HttpResponseException
from matrix_search.http.client import LONG_TIMEOUT, SimpleHttpClient
from matrix_search.types import JsonDict
from matrix_search.util.json import json_encoder
from matrix_search.util.stringutils import random_string

logger = logging.getLogger(__name__)


def _create_path(path_format: str, *args: str) -> str:
    """
    Ensures that all args are url encoded.
    """
    return CLIENT_API_PREFIX + path_format % tuple(
        urllib.parse.quote(arg, "") for arg in args
    )


class MatrixTransport:
    """Sends requests to the client-server API endpoints the indexer uses.

    Each method maps to one endpoint and returns its decoded JSON response.
    Errors from the underlying `SimpleHttpClient` are passed through unchanged,
    except where noted.

    Args:
        client: the HTTP client to send the requests with.
        page_retries: how many times to try to fetch a page of room history.
        page_retry_delay: seconds to wait between attempts to fetch a page.
    """

    def __init__(
        self,
        client: SimpleHttpClient,
        page_retries: int = 15,
        page_retry_delay: float = 1.0,
    ):
        self.client = client
        self._page_retries = page_retries
        self._page_retry_delay = page_retry_delay

    async def whoami(self) -> JsonDict:
        return await self.client.get_json(_create_path("/account/whoami"))

    async def sync(self, since: str | None, timeout_ms: int) -> JsonDict:
        """Long-poll the homeserver for new events.

        Args:
            since: the `next_batch` token of the last sync response we
                processed, or None to start from scratch.
            timeout_ms: how long the server should wait for new events before
                returning an empty response.
        """
        args = {"timeout": str(timeout_ms)}
        if since is not None:
            args["since"] = since
        return await self.client.get_json(
            _create_path("/sync"), args=args, timeout=LONG_TIMEOUT
        )

    async def get_joined_rooms(self) -> list[str]:
        response = await self.client.get_json(_create_path("/joined_rooms"))
        return list(response.get("joined_rooms", []))

    async def get_room_messages(
        self,
        room_id: str,
        direction: str = Direction.BACKWARDS,
        from_token: str | None = None,
        event_filter: JsonDict | None = None,
    ) -> JsonDict:
        """Fetch a page of a room's history.

        Retries on transient failure, since the server may take a while to
        assemble a page of old history.
        """
        args = {"dir": direction}
        if from_token is not None:
            args["from"] = from_token
        if event_filter is not None:
            args["filter"] = json_encoder.encode(event_filter)

        return await self.client.request_with_retries(
            "GET",
            _create_path("/rooms/%s/messages", room_id),
            query=args,
            timeout=LONG_TIMEOUT,
            max_attempts=self._page_retries,
            retry_delay=self._page_retry_delay,
        )

    async def get_room_name(self, room_id: str) -> str | None:
        """Returns the name of the room, or None if it has no name.

        Raises:
            HttpResponseException if the lookup failed for another reason than
            the room having no `m.room.name` state.
        """
        try:
            response = await self.client.get_json(
                _create_path("/rooms/%s/state/%s", room_id, EventTypes.Name)
            )
        except HttpResponseException as e:
            # A 404 from a server which doesn't know the endpoint has a
            # different errcode.
            if e.code == 404 and e.to_matrix_error().errcode == Codes.NOT_FOUND:
                return None
            raise

        name = response.get("name")
        if isinstance(name, str) and name:
            return name
        return None

    async def get_room_members(
        self, room_id: str, memberships: Iterable[str]
    ) -> list[str]:
        """Returns the user IDs of the room's members whose membership is one of
        the given ones."""
        response = await self.client.get_json(
            _create_path("/rooms/%s/members", room_id)
        )

        wanted = set(memberships)
        members = []
        for event in response.get("chunk", []):
            content = event.get("content") or {}
            user_id = event.get("state_key")
            if isinstance(user_id, str) and content.get("membership") in wanted:
                members.append(user_id)
        return members

    async def send_message(
        self, room_id: str, content: JsonDict, event_type: str = EventTypes.Message
    ) -> str:
        """Send an event to a room, returning its event ID."""
        response = await self.client.put_json(
            _create_path(
                "/rooms/%s/send/%s/%s", room_id, event_type, random_string(16)
            ),
            content,
        )
        return response["event_id"]

    async def redact_event(
        self, room_id: str, event_id: str, reason: str | None = None
    ) -> JsonDict:
        body = {}
        if reason is not None:
            body["reason"] = reason
        return await self.client.put_json(
            _create_path(
                "/rooms/%s/redact/%s/%s", room_id, event_id, random_string(16)
            ),
            body,
        )

    #
    # End-to-end encryption endpoints. The bodies are produced by the crypto
    # engine and sent as-is.
    #

    async def upload_keys(self, body: Any) -> JsonDict:
        return await self.client.post_json_get_json(_create_path("/keys/upload"), body)

    async def query_keys(self, body: Any) -> JsonDict:
        return await self.client.post_json_get_json(_create_path("/keys/query"), body)

    async def claim_keys(self, body: Any) -> JsonDict:
        """Claim one-time keys. Safe to retry: a retried claim at worst uses up
        another one-time key."""
        return await self.client.request_with_retries(
            "POST",
            _create_path("/keys/claim"),
            body=body,
            max_attempts=self._page_retries,
            retry_delay=self._page_retry_delay,
        )

    async def upload_signatures(self, body: Any) -> JsonDict:
        return await self.client.post_json_get_json(
            _create_path("/keys/signatures/upload"), body
        )

    async def upload_room_keys_backup(self, version: str, body: Any) -> JsonDict:
        return await self.client.put_json(
            _create_path("/room_keys/keys"), body, query={"version": version}
        )

    async def send_to_device(self, event_type: str, txn_id: str, body: Any) -> JsonDict:
        return await self.client.put_json(
            _create_path("/sendToDevice/%s/%s", event_type, txn_id), body
        )

    async def send_room_event(
        self, room_id: str, event_type: str, txn_id: str, body: Any
    ) -> JsonDict:
        return await self.client.put_json(
            _create_path("/rooms/%s/send/%s/%s", room_id, event_type, txn_id), body
        )
