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
import os
from typing import Any

from matrix_search.config._base import Config, ConfigError
from matrix_search.config._util import validate_config
from matrix_search.types import JsonDict, strtobool

logger = logging.getLogger(__name__)

HOMESERVER_SCHEMA = {
    "type": "object",
    "properties": {
        "url": {"type": "string"},
        "access_token": {"type": "string"},
        "mas_mode": {"type": "boolean"},
    },
}


class HomeserverConfig(Config):
    """The homeserver to index, and the account to index it as.

    Settings missing from the file are taken from the `HOMESERVER_URL`,
    `ACCESS_TOKEN` and `MAS_MODE` environment variables.
    """

    section = "homeserver"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        homeserver_config = config.get("homeserver") or {}
        validate_config(HOMESERVER_SCHEMA, homeserver_config, ("homeserver",))

        url = homeserver_config.get("url") or os.environ.get("HOMESERVER_URL")
        if not url:
            raise ConfigError(
                "must be given, either here or as HOMESERVER_URL",
                ("homeserver", "url"),
            )
        if not url.startswith(("http://", "https://")):
            raise ConfigError(
                "must be an http:// or https:// URL", ("homeserver", "url")
            )
        self.url: str = url.rstrip("/")

        access_token = homeserver_config.get("access_token") or os.environ.get(
            "ACCESS_TOKEN"
        )
        if not access_token:
            raise ConfigError(
                "must be given, either here or as ACCESS_TOKEN",
                ("homeserver", "access_token"),
            )
        self.access_token: str = access_token

        # Whether the access token was issued by the Matrix Authentication
        # Service rather than the homeserver itself.
        mas_mode = homeserver_config.get("mas_mode")
        if mas_mode is None:
            try:
                mas_mode = strtobool(os.environ.get("MAS_MODE") or "false")
            except ValueError as e:
                raise ConfigError(
                    "MAS_MODE must be true or false", ("homeserver", "mas_mode")
                ) from e
        self.mas_mode: bool = mas_mode
