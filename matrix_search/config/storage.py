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

import os
from typing import Any

from matrix_search.config._base import Config, ConfigError
from matrix_search.types import JsonDict


class StorageConfig(Config):
    """Where the indexer keeps its checkpoints and the crypto engine's store."""

    section = "storage"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        storage_config = config.get("storage") or {}

        path = storage_config.get("path", "./storage")
        if not isinstance(path, str) or not path:
            raise ConfigError("must be a directory path", ("storage", "path"))
        self.storage_path = self.abspath(path)

        self.sync_checkpoint_path = os.path.join(self.storage_path, "bot.json")
        self.backfill_checkpoint_path = os.path.join(
            self.storage_path, "backfillState.json"
        )
        self.crypto_store_path = os.path.join(self.storage_path, "crypto")
