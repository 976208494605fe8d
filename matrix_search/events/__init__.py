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

"""Typed views over the raw events we receive from the homeserver.

Events arrive as JSON whose `content` depends on the event `type` (and, for
messages, on the `msgtype`). `parse_event` turns the raw dict into one of a
small set of frozen classes, so that callers check the variant before touching
any type-specific field. Anything we don't recognise, or which doesn't have the
shape its type promises, becomes an `UnknownEvent`.

The raw dict is kept on every variant: it is what gets handed to the crypto
engine and to search storage, and it must not be altered on the way.
"""

import logging
from typing import Any

import attr
from pydantic import Field, StrictStr, ValidationError, field_validator

from matrix_search.api.constants import EventContentFields, EventTypes, RelationTypes
from matrix_search.types import JsonDict
from matrix_search.util.pydantic_models import ParseModel

logger = logging.getLogger(__name__)


class RelatesTo(ParseModel):
    """`content` -> `m.relates_to` of an event which relates to another."""

    rel_type: StrictStr | None = None
    event_id: StrictStr | None = None


class MessageContent(ParseModel):
    """
    Represents the `content` field of an `m.room.message` event
    """

    msgtype: StrictStr
    body: StrictStr = ""

    relates_to: RelatesTo | None = Field(None, alias="m.relates_to")

    # A broken relation shouldn't stop us from indexing the message itself.
    @field_validator("relates_to", mode="before")
    @classmethod
    def ignore_invalid_relation(cls, relates_to: Any) -> RelatesTo | None:
        try:
            return RelatesTo.model_validate(relates_to)
        except ValidationError:
            return None


@attr.s(slots=True, frozen=True, auto_attribs=True)
class EventBase:
    raw: JsonDict
    event_id: str
    type: str
    sender: str
    room_id: str
    origin_server_ts: int

    @property
    def content(self) -> JsonDict:
        content = self.raw.get("content")
        if not isinstance(content, dict):
            return {}
        return content


@attr.s(slots=True, frozen=True, auto_attribs=True)
class MessageEvent(EventBase):
    message: MessageContent

    @property
    def msgtype(self) -> str:
        return self.message.msgtype

    @property
    def body(self) -> str:
        return self.message.body

    @property
    def replaces(self) -> str | None:
        """The ID of the event this one is an edit of, if any."""
        relation = self.message.relates_to
        if relation is None or relation.rel_type != RelationTypes.REPLACE:
            return None
        return relation.event_id


@attr.s(slots=True, frozen=True, auto_attribs=True)
class ReactionEvent(EventBase):
    pass


@attr.s(slots=True, frozen=True, auto_attribs=True)
class RedactionEvent(EventBase):
    redacts: str | None


@attr.s(slots=True, frozen=True, auto_attribs=True)
class EncryptedEvent(EventBase):
    pass


@attr.s(slots=True, frozen=True, auto_attribs=True)
class StateEvent(EventBase):
    state_key: str


@attr.s(slots=True, frozen=True, auto_attribs=True)
class UnknownEvent(EventBase):
    pass


def _get_str(raw: JsonDict, key: str) -> str:
    value = raw.get(key)
    return value if isinstance(value, str) else ""


def parse_event(raw: JsonDict, room_id: str | None = None) -> EventBase:
    """Wrap a raw event in the class matching its type.

    Args:
        raw: the event as received from the homeserver (or as returned by the
            crypto engine after decryption).
        room_id: the room the event was received in. Events in a /sync response
            don't carry a `room_id`, so the caller has to supply it.

    Returns:
        One of the `EventBase` subclasses. Never raises: an event which doesn't
        look like its type says it should is returned as an `UnknownEvent`.
    """
    ts = raw.get("origin_server_ts")
    fields = {
        "raw": raw,
        "event_id": _get_str(raw, "event_id"),
        "type": _get_str(raw, "type"),
        "sender": _get_str(raw, "sender"),
        "room_id": room_id or _get_str(raw, "room_id"),
        "origin_server_ts": ts if isinstance(ts, int) else 0,
    }
    event_type = fields["type"]

    state_key = raw.get("state_key")
    if isinstance(state_key, str):
        return StateEvent(state_key=state_key, **fields)

    if event_type == EventTypes.Message:
        try:
            message = MessageContent.model_validate(raw.get("content"))
        except ValidationError:
            logger.debug(
                "Ignoring malformed message %s in %s",
                fields["event_id"],
                fields["room_id"],
            )
            return UnknownEvent(**fields)
        return MessageEvent(message=message, **fields)

    if event_type == EventTypes.Encrypted:
        return EncryptedEvent(**fields)

    if event_type == EventTypes.Reaction:
        return ReactionEvent(**fields)

    if event_type == EventTypes.Redaction:
        # `redacts` moved into the content in room version 11.
        redacts = raw.get("redacts")
        if not isinstance(redacts, str):
            content = raw.get("content")
            if isinstance(content, dict) and isinstance(content.get("redacts"), str):
                redacts = content["redacts"]
            else:
                redacts = None
        return RedactionEvent(redacts=redacts, **fields)

    return UnknownEvent(**fields)


def get_relation(content: JsonDict) -> tuple[str, str] | None:
    """Returns the (rel_type, event_id) of the relation in the given content, if
    it has a well-formed one."""
    relation = content.get(EventContentFields.RELATIONS)
    if not isinstance(relation, dict):
        return None
    rel_type = relation.get("rel_type")
    event_id = relation.get("event_id")
    if not isinstance(rel_type, str) or not isinstance(event_id, str):
        return None
    return rel_type, event_id
