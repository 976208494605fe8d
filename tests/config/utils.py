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
import shutil
import tempfile
import unittest
from unittest import mock

import yaml

from matrix_search.types import JsonDict

from tests.utils import default_config


class ConfigFileTestCase(unittest.TestCase):
    def setUp(self) -> None:
        # Make sure the environment of whoever runs the tests doesn't leak in.
        env_patcher = mock.patch.dict(
            os.environ, {"HOMESERVER_URL": "", "ACCESS_TOKEN": "", "MAS_MODE": ""}
        )
        env_patcher.start()
        self.addCleanup(env_patcher.stop)

        self.dir = tempfile.mkdtemp()
        self.config_file = os.path.join(self.dir, "config.yaml")

    def tearDown(self) -> None:
        shutil.rmtree(self.dir)

    def write_config(self, config: JsonDict | None = None) -> None:
        """Write the given config (or a working default one) to the config file."""
        if config is None:
            config = default_config(os.path.join(self.dir, "storage"))
        with open(self.config_file, "w") as f:
            yaml.safe_dump(config, f)

    def write_config_without(self, section: str, key: str | None = None) -> None:
        config = default_config(os.path.join(self.dir, "storage"))
        if key is None:
            del config[section]
        else:
            del config[section][key]
        self.write_config(config)
