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
import sys

from matrix_search.config._base import ConfigError
from matrix_search.config.indexer import IndexerConfig


def main(args: list[str]) -> None:
    """Check that a config file parses, e.g.

        python -m matrix_search.config -c config.yaml
    """
    try:
        IndexerConfig.load_config("Check a matrix-search config file", args[1:])
    except ConfigError as e:
        sys.stderr.write("\n" + str(e) + "\n")
        sys.exit(1)

    print("Config parses OK!")


if __name__ == "__main__":
    main(sys.argv)
