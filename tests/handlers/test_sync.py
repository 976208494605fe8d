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

from unittest import mock

from twisted.internet import defer
from twisted.internet.testing import MemoryReactorClock

from matrix_search.api.errors import PersistenceError, RequestSendFailed
from matrix_search.handlers.sync import SyncState
from matrix_search.server import IndexerServer
from matrix_search.storage.cursors import SyncCursor
from matrix_search.types import JsonDict
from matrix_search.util.clock import Clock

from tests import unittest
from tests.test_utils import make_encrypted_event, make_event, make_sync_response

ROOM_ID = "!room:test"


class LiveSyncHandlerTestCase(unittest.IndexerTestCase):
    def prepare(
        self, reactor: MemoryReactorClock, clock: Clock, hs: IndexerServer
    ) -> None:
        self.handler = hs.get_sync_handler()
        self.cursor_store = hs.get_sync_cursor_store()
        self.received: list[tuple[str, JsonDict]] = []

    async def _on_event(self, room_id: str, event: JsonDict) -> None:
        self.received.append((room_id, event))

    def start(self) -> "defer.Deferred[None]":
        d = defer.ensureDeferred(self.handler.run(self._on_event))
        self.assertNoResult(d)
        return d

    def test_initial_sync(self) -> None:
        e1 = make_event("$e1", "one")
        e2 = make_event("$e2", "two")
        self.transport.sync_responses.append(
            make_sync_response("T1", {ROOM_ID: [e1, e2]})
        )

        self.start()

        self.assertEqual(self.received, [(ROOM_ID, e1), (ROOM_ID, e2)])
        self.assertEqual(self.cursor_store.load(), SyncCursor(current_token="T1"))
        # The next request picks up from where the first left off.
        self.assertEqual(self.transport.sync_calls, [None, "T1"])
        self.assertEqual(self.handler.state, SyncState.POLLING)

    def test_resumes_from_checkpoint(self) -> None:
        self.cursor_store.save(SyncCursor(current_token="T1"))
        self.transport.sync_responses.append(
            make_sync_response("T2", {ROOM_ID: [make_event("$e3")]})
        )

        self.start()

        self.assertEqual(self.transport.sync_calls, ["T1", "T2"])
        self.assertEqual(len(self.received), 1)
        self.assertEqual(
            self.cursor_store.load(),
            SyncCursor(current_token="T2", previous_token="T1"),
        )

    def test_duplicate_response_is_skipped(self) -> None:
        self.cursor_store.save(SyncCursor(current_token="T2", previous_token="T1"))
        self.transport.sync_responses.append(
            make_sync_response("T2", {ROOM_ID: [make_event("$e1")]})
        )

        self.start()

        self.assertEqual(self.received, [])
        self.assertEqual(
            self.cursor_store.load(),
            SyncCursor(current_token="T2", previous_token="T1"),
        )
        # ... but the crypto engine still saw it.
        self.assertEqual(len(self.crypto_engine.sync_changes), 1)

    def test_retries_after_failure(self) -> None:
        self.transport.sync_responses.extend(
            [
                RequestSendFailed(ConnectionError()),
                make_sync_response("T1", {ROOM_ID: [make_event("$e1")]}),
            ]
        )

        self.start()
        self.assertEqual(self.transport.sync_calls, [None])
        self.assertEqual(self.received, [])

        # The retry happens after the retry interval.
        self.pump(0.5)
        self.assertEqual(self.transport.sync_calls, [None])
        self.pump(0.5)
        self.assertEqual(self.transport.sync_calls, [None, None, "T1"])
        self.assertEqual(len(self.received), 1)

    def test_response_without_next_batch_is_retried(self) -> None:
        self.transport.sync_responses.extend(
            [{"rooms": {}}, make_sync_response("T1")]
        )

        self.start()
        self.assertEqual(self.transport.sync_calls, [None])
        self.pump(1)
        self.assertEqual(self.transport.sync_calls, [None, None, "T1"])

    def test_decrypts_events(self) -> None:
        self.engine_plaintext("$e1", "secret")
        self.transport.sync_responses.append(
            make_sync_response("T1", {ROOM_ID: [make_encrypted_event("$e1")]})
        )

        self.start()

        [(room_id, event)] = self.received
        self.assertEqual(room_id, ROOM_ID)
        self.assertEqual(event["type"], "m.room.message")
        self.assertEqual(event["content"]["body"], "secret")

    def test_sends_crypto_requests_after_each_response(self) -> None:
        self.transport.sync_responses.append(
            {
                **make_sync_response("T1"),
                "device_lists": {"changed": ["@a:test"]},
            }
        )

        self.start()

        [changes] = self.crypto_engine.sync_changes
        self.assertEqual(changes[1], ["@a:test"])

    def test_checkpoint_failure_stops_the_stream(self) -> None:
        self.transport.sync_responses.append(
            make_sync_response("T1", {ROOM_ID: [make_event("$e1")]})
        )

        with mock.patch.object(
            self.cursor_store,
            "save",
            side_effect=PersistenceError("bot.json", OSError("disk full")),
        ):
            d = defer.ensureDeferred(self.handler.run(self._on_event))

        self.failureResultOf(d, PersistenceError)
        self.assertEqual(self.handler.state, SyncState.STOPPED)
        # The event was handed on before the checkpoint failed, and will be
        # again after a restart.
        self.assertEqual(len(self.received), 1)
        self.assertEqual(self.transport.sync_calls, [None])

    def test_stop(self) -> None:
        self.transport.sync_responses.append(RequestSendFailed(ConnectionError()))

        d = self.start()
        self.handler.stop()
        self.assertNoResult(d)

        # The loop notices once the retry wait is over.
        self.pump(1)
        self.successResultOf(d)
        self.assertEqual(self.transport.sync_calls, [None])
        self.assertEqual(self.handler.state, SyncState.STOPPED)

    def engine_plaintext(self, event_id: str, body: str) -> None:
        self.crypto_engine.plaintexts[event_id] = {
            "type": "m.room.message",
            "content": {"msgtype": "m.text", "body": body},
        }
