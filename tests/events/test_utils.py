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

from matrix_search.events.utils import normalize_event_id, redact_mxids

from tests import unittest


class NormalizeEventIdTestCase(unittest.TestCase):
    def test_normalize(self) -> None:
        self.assertEqual(normalize_event_id("$abc:def.org"), "abc_def_org")

    def test_room_version_4_ids(self) -> None:
        # Event IDs in later room versions have no server name.
        self.assertEqual(
            normalize_event_id("$Rqnc-F-dvnEYJTyHq_iKxU2bZ1CI92-kuZq3a5lr5Zg"),
            "Rqnc-F-dvnEYJTyHq_iKxU2bZ1CI92-kuZq3a5lr5Zg",
        )

    def test_room_version_3_ids(self) -> None:
        # Standard base64, which may hold `+` and `/`.
        self.assertEqual(
            normalize_event_id("$acR1l0raoZnm60CBwAVgqbZqoO/mYU81xysh1u7XcJk"),
            "acR1l0raoZnm60CBwAVgqbZqoO_mYU81xysh1u7XcJk",
        )
        self.assertEqual(normalize_event_id("$a+b/c"), "a-b_c")

    def test_deterministic(self) -> None:
        self.assertEqual(
            normalize_event_id("$x:y.z"), normalize_event_id("$x:y.z")
        )


class RedactMxidsTestCase(unittest.TestCase):
    def test_redacts_user_ids(self) -> None:
        content = {"msgtype": "m.text", "body": "hello @alice:example.org"}
        self.assertEqual(
            redact_mxids(content), {"msgtype": "m.text", "body": "hello <mxid>"}
        )

    def test_redacts_every_user_id(self) -> None:
        content = {"body": "@a:b.c and @d-e:f.g said hi"}
        self.assertEqual(redact_mxids(content)["body"], "<mxid> and <mxid> said hi")

    def test_leaves_original_untouched(self) -> None:
        content = {"body": "ping @bob:example.org"}
        redact_mxids(content)
        self.assertEqual(content["body"], "ping @bob:example.org")

    def test_no_body(self) -> None:
        content = {"msgtype": "m.image", "url": "mxc://a/b"}
        redacted = redact_mxids(content)
        self.assertEqual(redacted, content)
        self.assertIsNot(redacted, content)

    def test_plain_text(self) -> None:
        self.assertEqual(redact_mxids({"body": "hi there"})["body"], "hi there")
