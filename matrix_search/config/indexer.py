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

from matrix_search.config._base import RootConfig
from matrix_search.config.commands import CommandsConfig
from matrix_search.config.encryption import EncryptionConfig
from matrix_search.config.homeserver import HomeserverConfig
from matrix_search.config.logger import LoggingConfig
from matrix_search.config.metrics import MetricsConfig
from matrix_search.config.search import SearchConfig
from matrix_search.config.storage import StorageConfig
from matrix_search.config.sync import BackfillConfig, SyncConfig


class IndexerConfig(RootConfig):
    """The configuration of the indexer, one attribute per section."""

    homeserver: HomeserverConfig
    storage: StorageConfig
    search: SearchConfig
    sync: SyncConfig
    backfill: BackfillConfig
    encryption: EncryptionConfig
    commands: CommandsConfig
    logging: LoggingConfig
    metrics: MetricsConfig

    config_classes = [
        LoggingConfig,
        HomeserverConfig,
        StorageConfig,
        SearchConfig,
        SyncConfig,
        BackfillConfig,
        EncryptionConfig,
        CommandsConfig,
        MetricsConfig,
    ]
