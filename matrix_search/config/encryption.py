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
from matrix_search.util.module_loader import load_module

ENCRYPTION_SCHEMA = {
    "type": "object",
    "properties": {
        "module": {"type": "string"},
        "config": {"type": "object"},
    },
}


class EncryptionConfig(Config):
    """The crypto engine to decrypt end-to-end encrypted rooms with.

    Without one, encrypted messages are not indexed.
    """

    section = "encryption"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        encryption_config = config.get("encryption") or {}
        validate_config(ENCRYPTION_SCHEMA, encryption_config, ("encryption",))

        self.crypto_engine: tuple[type, Any] | None = None
        if encryption_config.get("module"):
            self.crypto_engine = load_module(encryption_config, ("encryption",))
