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

METRICS_SCHEMA = {
    "type": "object",
    "properties": {
        "port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "bind_address": {"type": "string"},
    },
}


class MetricsConfig(Config):
    """Metrics Configuration

    If a port is given, Prometheus metrics are served on it.
    """

    section = "metrics"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        metrics_config = config.get("metrics") or {}
        validate_config(METRICS_SCHEMA, metrics_config, ("metrics",))

        self.port: int | None = metrics_config.get("port")
        self.bind_address: str = metrics_config.get("bind_address", "127.0.0.1")
