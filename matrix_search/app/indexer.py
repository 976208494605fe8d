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

"""The `matrix-search` entry point: indexes every message the bot's account
can see, live and historical, into search storage."""

import logging
import os
import sys

from matrix_search.api.errors import PersistenceError
from matrix_search.app._base import (
    handle_startup_exception,
    quit_with_error,
    register_start,
    run_supervised,
)
from matrix_search.config._base import ConfigError
from matrix_search.config.indexer import IndexerConfig
from matrix_search.config.logger import setup_logging
from matrix_search.metrics import listen_metrics
from matrix_search.server import IndexerServer
from matrix_search.util.stringutils import random_string

logger = logging.getLogger("matrix_search.app.indexer")


class Indexer:
    """Starts the live sync and the backfill, and stops the reactor if either
    hits an error it can't recover from.

    Attributes:
        exit_code: what the process should exit with once the reactor stops.
    """

    def __init__(self, hs: IndexerServer):
        self.hs = hs
        self.exit_code = 0

    async def start(self) -> None:
        """Log in, then start the indexing loops in the background."""
        hs = self.hs
        transport = hs.get_transport()

        whoami = await transport.whoami()
        user_id = whoami["user_id"]
        # A token which isn't tied to a device still needs a device for the
        # crypto engine to live on.
        device_id = whoami.get("device_id") or random_string(10)
        hs.set_identity(user_id, device_id)
        logger.info("Logged in as %s (device %s)", user_id, device_id)
        if hs.config.homeserver.mas_mode:
            logger.info("Using an access token issued by the authentication service")

        await hs.get_search_storage().setup()

        coordinator = hs.get_ingestion_coordinator()
        sync_handler = hs.get_sync_handler()
        hs.get_reactor().addSystemEventTrigger(
            "before", "shutdown", sync_handler.stop
        )

        # Anything escaping the live sync means we've stopped indexing new
        # messages, so give up.
        run_supervised(
            "live sync",
            lambda: sync_handler.run(coordinator.on_live_event),
            (Exception,),
            self.stop_with_error,
        )

        if hs.config.backfill.enabled:
            backfill_handler = hs.get_backfill_handler()
            run_supervised(
                "backfill",
                backfill_handler.run,
                (PersistenceError, ValueError),
                self.stop_with_error,
            )
        else:
            logger.info("Backfill is disabled")

    def stop_with_error(self) -> None:
        self.exit_code = 1
        self.hs.get_clock().shutdown()
        reactor = self.hs.get_reactor()
        if reactor.running:
            reactor.stop()


def setup(config: IndexerConfig) -> Indexer:
    """Set up the indexer, ready for the reactor to be started.

    Raises:
        ConfigError if the logging config can't be applied.
    """
    setup_logging(config.logging)

    os.makedirs(config.storage.storage_path, exist_ok=True)

    hs = IndexerServer(config)
    indexer = Indexer(hs)

    if config.metrics.port is not None:
        listen_metrics(
            hs.get_reactor(), config.metrics.bind_address, config.metrics.port
        )

    register_start(hs.get_reactor(), indexer.start)
    return indexer


def main() -> None:
    try:
        config = IndexerConfig.load_config(
            "Index the messages of a Matrix account", sys.argv[1:]
        )
    except ConfigError as e:
        sys.stderr.write("\n" + str(e) + "\n")
        sys.exit(1)

    try:
        indexer = setup(config)
    except ConfigError as e:
        quit_with_error(str(e))
    except Exception as e:
        handle_startup_exception(e)

    logger.info("Starting matrix-search")
    indexer.hs.get_reactor().run()
    sys.exit(indexer.exit_code)


if __name__ == "__main__":
    main()
