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

from matrix_search.config._base import Config, ConfigError
from matrix_search.config._util import validate_config
from matrix_search.http.client import LONG_TIMEOUT
from matrix_search.types import JsonDict

DURATION_SCHEMA = {"type": ["number", "string"]}

SYNC_SCHEMA = {
    "type": "object",
    "properties": {
        # The server must answer before our own timeout on the request fires.
        "timeout_ms": {
            "type": "integer",
            "minimum": 0,
            "exclusiveMaximum": int(LONG_TIMEOUT * 1000),
        },
        "retry_interval": DURATION_SCHEMA,
    },
}

BACKFILL_SCHEMA = {
    "type": "object",
    "properties": {
        "enabled": {"type": "boolean"},
        "page_retries": {"type": "integer", "minimum": 1},
        "page_retry_delay": DURATION_SCHEMA,
    },
}


def _read_duration(
    section_config: JsonDict, section: str, key: str, default: float
) -> float:
    value = section_config.get(key, default)
    try:
        return Config.parse_duration(value)
    except (TypeError, ValueError):
        raise ConfigError(
            "%r is not a valid duration" % (value,), (section, key)
        ) from None


class SyncConfig(Config):
    """How the live sync polls the homeserver."""

    section = "sync"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        sync_config = config.get("sync") or {}
        validate_config(SYNC_SCHEMA, sync_config, ("sync",))

        # How long the server may hold a /sync request open waiting for events.
        self.timeout_ms: int = sync_config.get("timeout_ms", 30000)
        # How long to wait before polling again after a failed /sync.
        self.retry_interval = _read_duration(sync_config, "sync", "retry_interval", 1)


class BackfillConfig(Config):
    section = "backfill"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        backfill_config = config.get("backfill") or {}
        validate_config(BACKFILL_SCHEMA, backfill_config, ("backfill",))

        self.enabled: bool = backfill_config.get("enabled", True)
        self.page_retries: int = backfill_config.get("page_retries", 15)
        self.page_retry_delay = _read_duration(
            backfill_config, "backfill", "page_retry_delay", 1
        )
