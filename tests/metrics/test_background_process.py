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

from prometheus_client.core import REGISTRY

from twisted.internet import defer

from matrix_search.metrics.background_process_metrics import run_as_background_process

from tests import unittest


_PREFIX = "matrix_search_background_process_"


def _sample(name: str, desc: str) -> float:
    return REGISTRY.get_sample_value(_PREFIX + name, {"name": desc}) or 0.0


class RunAsBackgroundProcessTestCase(unittest.TestCase):
    def test_result(self) -> None:
        async def func(x: int) -> int:
            return x * 2

        d = run_as_background_process("test_result", func, 21)
        self.assertEqual(self.successResultOf(d), 42)
        self.assertEqual(_sample("start_count_total", "test_result"), 1)

    def test_exception_is_logged_and_counted(self) -> None:
        async def func() -> None:
            raise Exception("boom")

        d = run_as_background_process("test_exception", func)

        self.assertIsNone(self.successResultOf(d))
        self.assertEqual(_sample("failure_count_total", "test_exception"), 1)

    def test_in_flight(self) -> None:
        waiter: "defer.Deferred[None]" = defer.Deferred()

        async def func() -> None:
            await waiter

        d = run_as_background_process("test_in_flight", func)
        self.assertEqual(_sample("in_flight_count", "test_in_flight"), 1)

        waiter.callback(None)
        self.successResultOf(d)
        self.assertEqual(_sample("in_flight_count", "test_in_flight"), 0)
