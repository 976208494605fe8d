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

SEARCH_SCHEMA = {
    "type": "object",
    "properties": {
        "backend": {"type": "string", "enum": ["meilisearch"]},
        "index": {"type": "string", "minLength": 1},
        "meilisearch": {
            "type": "object",
            "required": ["host", "master_key"],
            "properties": {
                "host": {"type": "string", "pattern": "^https?://"},
                "master_key": {"type": "string"},
            },
        },
    },
    "required": ["meilisearch"],
}


class SearchConfig(Config):
    section = "search"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        search_config = config.get("search") or {}
        validate_config(SEARCH_SCHEMA, search_config, ("search",))

        self.backend = search_config.get("backend", "meilisearch")
        self.index = search_config.get("index", "messages")

        meilisearch_config = search_config["meilisearch"]
        self.meilisearch_host = meilisearch_config["host"].rstrip("/")
        self.meilisearch_master_key = meilisearch_config["master_key"]
