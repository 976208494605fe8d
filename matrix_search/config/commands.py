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

from matrix_search.config._base import Config
from matrix_search.config._util import validate_config
from matrix_search.types import JsonDict

COMMANDS_SCHEMA = {
    "type": "object",
    "properties": {
        "enabled": {"type": "boolean"},
        "prefix": {"type": "string", "minLength": 1},
        "page_size": {"type": "integer", "minimum": 1, "maximum": 50},
    },
}


class CommandsConfig(Config):
    section = "commands"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        commands_config = config.get("commands") or {}
        validate_config(COMMANDS_SCHEMA, commands_config, ("commands",))

        self.enabled: bool = commands_config.get("enabled", True)
        self.prefix: str = commands_config.get("prefix", "!search")
        self.page_size: int = commands_config.get("page_size", 10)
