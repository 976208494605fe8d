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
import logging.config
import sys
from typing import Any

import yaml

from twisted.logger import LogBeginner, STDLibLogObserver, globalLogBeginner

from matrix_search.config._base import Config, ConfigError
from matrix_search.config._util import validate_config
from matrix_search.logging.formatter import LogFormatter
from matrix_search.types import JsonDict

LOGGING_SCHEMA = {
    "type": "object",
    "properties": {
        "level": {
            "type": "string",
            "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        },
        "log_config": {"type": "string"},
    },
}

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(lineno)d - %(levelname)s - %(message)s"


class LoggingConfig(Config):
    section = "logging"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        logging_config = config.get("logging") or {}
        validate_config(LOGGING_SCHEMA, logging_config, ("logging",))

        self.level: str = logging_config.get("level", "INFO")

        # A YAML file in the format of `logging.config.dictConfig`, which
        # replaces the default console logging entirely.
        self.log_config: str | None = None
        log_config = logging_config.get("log_config")
        if log_config is not None:
            self.log_config = self.abspath(log_config)


def _load_log_config(log_config_path: str) -> JsonDict:
    log_config = yaml.safe_load(
        Config.read_file(log_config_path, ("logging", "log_config"))
    )
    if not isinstance(log_config, dict):
        raise ConfigError(
            "%r is not a logging configuration" % (log_config_path,),
            ("logging", "log_config"),
        )
    return log_config


def setup_logging(
    config: LoggingConfig,
    log_beginner: LogBeginner = globalLogBeginner,
) -> None:
    """
    Set up the logging subsystem.

    Args:
        config: configuration data
        log_beginner: The Twisted logBeginner to use.

    Raises:
        ConfigError if the configured log config can't be loaded.
    """
    if config.log_config is None:
        handler = logging.StreamHandler()
        handler.setFormatter(LogFormatter(DEFAULT_LOG_FORMAT))

        root_logger = logging.getLogger("")
        root_logger.setLevel(config.level)
        root_logger.addHandler(handler)
    else:
        try:
            logging.config.dictConfig(_load_log_config(config.log_config))
        except ValueError as e:
            raise ConfigError(
                "Invalid logging configuration in %r" % (config.log_config,),
                ("logging", "log_config"),
            ) from e

    # Route Twisted's native logging through to the standard library logging
    # system.
    observer = STDLibLogObserver()

    # Warnings go to the same place as everything else.
    logging.captureWarnings(True)

    log_beginner.beginLoggingTo(
        [observer],
        redirectStandardIO=False,
        discardBuffer=True,
    )

    logging.getLogger(__name__).info(
        "Logging set up (Python %s)", sys.version.split()[0]
    )
