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

"""Contains constants from the Matrix specification."""

from typing import Final

CLIENT_API_PREFIX: Final = "/_matrix/client/v3"


class Membership:
    """Represents the membership states of a user in a room."""

    INVITE: Final = "invite"
    JOIN: Final = "join"


class EventTypes:
    Name: Final = "m.room.name"
    Redaction: Final = "m.room.redaction"
    Encrypted: Final = "m.room.encrypted"
    Message: Final = "m.room.message"
    Reaction: Final = "m.reaction"


class MessageTypes:
    TEXT: Final = "m.text"
    NOTICE: Final = "m.notice"

    # The message types which are indexed. Everything else (images, files,
    # emotes...) is ignored.
    INDEXED: Final = frozenset((TEXT, NOTICE))


class RelationTypes:
    """The types of relations which the indexer understands."""

    REPLACE: Final = "m.replace"


class Direction:
    """The direction in which to paginate a room's history."""

    BACKWARDS: Final = "b"


class EventContentFields:
    """Fields found in events' content, regardless of type."""

    RELATIONS: Final = "m.relates_to"
    BODY: Final = "body"


# The placeholder which Matrix user IDs are replaced with before a message is
# indexed.
REDACTED_MXID: Final = "<mxid>"
