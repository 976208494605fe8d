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

"""Search commands, sent to the indexer as messages from its own account.

    !search <term> [--room <room_id>] [--sender <user_id>] [--page <n>]
    !search last <n>

The indexer replies to a command with a notice holding the results, then
redacts the command. Neither the command nor the reply is indexed.
"""

import logging
import math
import shlex
from typing import TYPE_CHECKING

import attr

from matrix_search.api.constants import MessageTypes
from matrix_search.api.errors import NetworkError, StorageError
from matrix_search.events import MessageEvent, parse_event
from matrix_search.search import SearchFilters, SearchHits
from matrix_search.types import JsonDict

if TYPE_CHECKING:
    from matrix_search.server import IndexerServer

logger = logging.getLogger(__name__)

# Marks the notices we send in reply to a command, so that we recognise them
# when they come back down the sync.
REPLY_MARKER = "org.matrix_search.reply"

# Upper bound on `last <n>`, to keep the reply a sensible size.
MAX_LAST_COUNT = 50


class CommandParseError(ValueError):
    """The command couldn't be understood. The message is shown to the user."""


@attr.s(slots=True, frozen=True, auto_attribs=True)
class SearchCommand:
    term: str
    filters: SearchFilters = SearchFilters()
    page: int = 1


@attr.s(slots=True, frozen=True, auto_attribs=True)
class LastCommand:
    count: int


def _parse_positive_int(value: str, what: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise CommandParseError(
            "%s must be a number, not %r" % (what, value)
        ) from None
    if number < 1:
        raise CommandParseError("%s must be at least 1" % (what,))
    return number


def parse_command(body: str, prefix: str) -> SearchCommand | LastCommand | None:
    """Parse the body of a message as a command.

    Returns:
        The command, or None if the message isn't a command at all.

    Raises:
        CommandParseError if the message is a command, but a malformed one.
    """
    if not body.startswith(prefix):
        return None
    rest = body[len(prefix) :]
    if rest and not rest[0].isspace():
        # e.g. "!searching"
        return None

    try:
        args = shlex.split(rest)
    except ValueError as e:
        raise CommandParseError(str(e)) from e

    if not args:
        raise CommandParseError(
            "Usage: %s <term> [--room <room_id>] [--sender <user_id>] [--page <n>]"
            " | %s last <n>" % (prefix, prefix)
        )

    if args[0] == "last":
        if len(args) != 2:
            raise CommandParseError("Usage: %s last <n>" % (prefix,))
        count = _parse_positive_int(args[1], "The number of messages")
        return LastCommand(count=min(count, MAX_LAST_COUNT))

    terms = []
    room_id = None
    sender = None
    page = 1
    it = iter(args)
    for arg in it:
        if arg in ("--room", "--sender", "--page"):
            value = next(it, None)
            if value is None:
                raise CommandParseError("%s needs a value" % (arg,))
            if arg == "--room":
                room_id = value
            elif arg == "--sender":
                sender = value
            else:
                page = _parse_positive_int(value, "The page")
        else:
            terms.append(arg)

    if not terms:
        raise CommandParseError("Nothing to search for")

    return SearchCommand(
        term=" ".join(terms),
        filters=SearchFilters(room_id=room_id, sender=sender),
        page=page,
    )


def _format_hit(hit: JsonDict) -> str:
    content = hit.get("content")
    body = content.get("body") if isinstance(content, dict) else None
    return "%s: %s" % (hit.get("sender", "?"), body if isinstance(body, str) else "")


def format_search_results(hits: SearchHits, page: int, page_size: int) -> str:
    """Render a page of search results as the body of a reply, one `sender:
    body` line per hit followed by the page number."""
    pages = max(1, math.ceil(hits.estimated_total_hits / page_size))
    lines = [_format_hit(hit) for hit in hits.hits]
    if not lines:
        lines.append("No results")
    lines.append("page %d/%d" % (page, pages))
    return "\n".join(lines)


class CommandHandler:
    def __init__(self, hs: "IndexerServer"):
        self._transport = hs.get_transport()
        self._storage = hs.get_search_storage()
        self._user_id = hs.get_user_id()

        config = hs.config.commands
        self._prefix = config.prefix
        self._page_size = config.page_size

    async def maybe_handle(self, room_id: str, event: JsonDict) -> bool:
        """Handle the event if it is a command, or our reply to one.

        Returns:
            True if the event was a command or a reply, in which case it must
            not be indexed.
        """
        parsed = parse_event(event, room_id)
        if not isinstance(parsed, MessageEvent) or parsed.sender != self._user_id:
            return False

        if parsed.content.get(REPLY_MARKER) is True:
            return True

        try:
            command = parse_command(parsed.body, self._prefix)
        except CommandParseError as e:
            await self._finish(room_id, parsed.event_id, str(e))
            return True

        if command is None:
            return False

        logger.info("Running command %s from %s", command, parsed.event_id)
        try:
            reply = await self._run(room_id, command)
        except (StorageError, NetworkError) as e:
            logger.warning("Command %s failed: %s", parsed.event_id, e)
            reply = "Search failed: %s" % (e,)

        await self._finish(room_id, parsed.event_id, reply)
        return True

    async def _run(self, room_id: str, command: SearchCommand | LastCommand) -> str:
        if isinstance(command, LastCommand):
            hits = await self._storage.query(
                "", SearchFilters(room_id=room_id), limit=command.count
            )
            # Oldest first, like the room's timeline.
            lines = [_format_hit(hit) for hit in reversed(hits.hits)]
            return "\n".join(lines) or "No messages indexed in this room"

        hits = await self._storage.query(
            command.term,
            command.filters,
            limit=self._page_size,
            offset=(command.page - 1) * self._page_size,
        )
        return format_search_results(hits, command.page, self._page_size)

    async def _finish(self, room_id: str, command_event_id: str, reply: str) -> None:
        """Send the reply, then redact the command."""
        try:
            await self._transport.send_message(
                room_id,
                {"msgtype": MessageTypes.NOTICE, "body": reply, REPLY_MARKER: True},
            )
        except NetworkError as e:
            logger.warning("Failed to reply to command %s: %s", command_event_id, e)

        try:
            await self._transport.redact_event(room_id, command_event_id)
        except NetworkError as e:
            logger.warning("Failed to redact command %s: %s", command_event_id, e)
