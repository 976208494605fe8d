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

import re

from matrix_search.api.constants import REDACTED_MXID, EventContentFields
from matrix_search.types import JsonDict

# Matches a Matrix user ID (`@localpart:server.name`) anywhere in a string.
MXID_RE = re.compile(r"@[a-zA-Z0-9_\-.=]+:[a-zA-Z0-9\-.]+")

# Characters of an event ID which the search storage won't accept in a document
# ID, and what to replace them with.
_EVENT_ID_TRANSLATION = str.maketrans(
    {"$": None, ":": "_", ".": "_", "!": "_", "+": "-", "/": "_"}
)


def normalize_event_id(event_id: str) -> str:
    """Turn an event ID into an ID suitable for a search document.

    Search storage only accepts alphanumerics, `-` and `_` in document IDs, so
    the sigil is dropped and the separators are mapped to underscores. Room
    version 3 event IDs are standard base64, which is mapped to the URL-safe
    alphabet that later room versions use. This is lossy, but event IDs
    differing only in those characters don't occur in practice.

    >>> normalize_event_id("$abc:def.org")
    'abc_def_org'
    """
    return event_id.translate(_EVENT_ID_TRANSLATION)


def redact_mxids(content: JsonDict) -> JsonDict:
    """Returns a copy of the given event content with any user IDs in the body
    replaced by a placeholder.

    The original content is left untouched, since it may still be referenced
    by the event it came from.
    """
    body = content.get(EventContentFields.BODY)
    if not isinstance(body, str):
        return dict(content)

    redacted = dict(content)
    redacted[EventContentFields.BODY] = MXID_RE.sub(REDACTED_MXID, body)
    return redacted
