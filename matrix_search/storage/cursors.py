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

"""The checkpoints which let the indexer pick up where it left off after a
restart.

There are two, each written by exactly one component:

* the sync checkpoint (`bot.json`), written by the live sync after each
  response it has processed;
* the backfill checkpoint (`backfillState.json`), written by the backfill each
  time it finishes crawling a room.

Both are small JSON files, replaced atomically on every write. A failed write
raises `PersistenceError`, which must stop the process.
"""

import logging
import os
from typing import Any

import attr

from matrix_search.api.errors import PersistenceError
from matrix_search.util.json import json_decoder, json_encoder
from matrix_search.util.stringutils import random_string

logger = logging.getLogger(__name__)


@attr.s(slots=True, frozen=True, auto_attribs=True)
class SyncCursor:
    """Our position in the /sync stream.

    Attributes:
        current_token: the `next_batch` of the last sync response which was
            fully processed.
        previous_token: the token before that, if any. A response whose
            `next_batch` matches either token is one we have already seen.
    """

    current_token: str
    previous_token: str | None = None

    def is_duplicate(self, next_token: str) -> bool:
        return next_token in (self.current_token, self.previous_token)

    def advance(self, next_token: str) -> "SyncCursor":
        return SyncCursor(current_token=next_token, previous_token=self.current_token)


@attr.s(slots=True, auto_attribs=True)
class BackfillState:
    """The rooms whose history has been crawled completely."""

    completed_rooms: set[str] = attr.Factory(set)


def _write_atomically(path: str, data: Any) -> None:
    """Replace the file at `path` with the JSON encoding of `data`.

    The data is written to a temporary file next to the target, synced to disk
    and then renamed over the target, so that a crash leaves either the old or
    the new file, never a torn one.

    Raises:
        PersistenceError if any step fails.
    """
    tmp_path = "%s.%s.tmp" % (path, random_string(8))
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(json_encoder.encode(data))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        logger.error("Failed to write %s: %s", path, e)
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise PersistenceError(path, e) from e


def _read_json(path: str) -> Any | None:
    """Read the JSON file at `path`, or return None if it doesn't exist."""
    try:
        with open(path, encoding="utf-8") as f:
            return json_decoder.decode(f.read())
    except FileNotFoundError:
        return None


class SyncCursorStore:
    """Loads and saves the sync checkpoint, `{"syncToken": ..., "previous": ...}`."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> SyncCursor | None:
        """Returns the stored cursor, or None if we have never synced.

        Raises:
            ValueError if the file exists but isn't a valid checkpoint.
        """
        data = _read_json(self.path)
        if data is None:
            return None

        token = data.get("syncToken") if isinstance(data, dict) else None
        if not isinstance(token, str):
            raise ValueError("Sync checkpoint %s has no syncToken" % (self.path,))

        previous = data.get("previous")
        if not isinstance(previous, str):
            previous = None
        return SyncCursor(current_token=token, previous_token=previous)

    def save(self, cursor: SyncCursor) -> None:
        logger.debug("Saving sync token %s", cursor.current_token)
        _write_atomically(
            self.path,
            {"syncToken": cursor.current_token, "previous": cursor.previous_token},
        )


class BackfillStateStore:
    """Loads and saves the backfill checkpoint, `{"rooms": [...]}`."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> BackfillState:
        """Returns the stored state. If there is none yet, an empty state is
        written out and returned.

        Raises:
            ValueError if the file exists but isn't a valid checkpoint.
            PersistenceError if the empty state couldn't be written.
        """
        data = _read_json(self.path)
        if data is None:
            logger.info("No backfill state found, writing empty state file")
            state = BackfillState()
            self.save(state)
            return state

        rooms = data.get("rooms") if isinstance(data, dict) else None
        if not isinstance(rooms, list) or not all(isinstance(r, str) for r in rooms):
            raise ValueError("Backfill checkpoint %s has no room list" % (self.path,))
        return BackfillState(completed_rooms=set(rooms))

    def save(self, state: BackfillState) -> None:
        _write_atomically(self.path, {"rooms": sorted(state.completed_rooms)})
