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

from typing import Any

from twisted.internet.interfaces import IReactorCore, IReactorTCP, IReactorTime
from zope.interface import Interface

# A decoded JSON object, as received from the homeserver.
JsonDict = dict[str, Any]

# Sequence[str] that does not include str itself; str being a Sequence[str]
# is very misleading and results in bugs.
StrSequence = tuple[str, ...] | list[str]

# A (room ID, event) pair handed from the sync and backfill engines to the
# ingestion path.
RoomEvent = tuple[str, JsonDict]


class IIndexerReactor(IReactorTCP, IReactorTime, IReactorCore, Interface):
    """The interfaces necessary for the indexer to function."""


def strtobool(val: str) -> bool:
    """Convert a string representation of truth to True or False

    True values are 'y', 'yes', 't', 'true', 'on', and '1'; false values
    are 'n', 'no', 'f', 'false', 'off', and '0'.  Raises ValueError if
    'val' is anything else.
    """
    val = val.lower()
    if val in ("y", "yes", "t", "true", "on", "1"):
        return True
    elif val in ("n", "no", "f", "false", "off", "0"):
        return False
    else:
        raise ValueError("invalid truth value %r" % (val,))

