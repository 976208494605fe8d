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

from matrix_search.types import JsonDict

BOT_USER_ID = "@indexer:test"
BOT_DEVICE_ID = "INDEXERDEVICE"


def default_config(storage_path: str) -> JsonDict:
    """
    Create a reasonable test config.
    """
    return {
        "homeserver": {
            "url": "https://matrix.test",
            "access_token": "syt_test_token",
        },
        "storage": {"path": storage_path},
        "search": {
            "meilisearch": {
                "host": "http://meilisearch.test:7700",
                "master_key": "masterkey",
            },
        },
        "sync": {"timeout_ms": 30000, "retry_interval": 1},
        "backfill": {"page_retries": 3, "page_retry_delay": 1},
    }
