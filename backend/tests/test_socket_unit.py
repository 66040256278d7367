"""
Unit tests for socket_manager.Connection outbound delivery.
"""
import sys
import os
import asyncio

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import config
from socket_manager import Connection


class StalledWebSocket:
    """A client that never reads: every send blocks forever."""

    def __init__(self):
        self.close_code = None
        self._never = asyncio.Event()

    async def send_json(self, message):
        await self._never.wait()

    async def close(self, code=1000):
        self.close_code = code


def state(revision):
    return {"type": "STATE", "state": {"revision": revision}}


def drain(conn):
    items = []
    while not conn.outbox.empty():
        items.append(conn.outbox.get_nowait())
    return items


@pytest.fixture
def small_outbox(monkeypatch):
    monkeypatch.setattr(config, "MAX_OUTBOX_SIZE", 8)


class TestOutbox:
    @pytest.mark.asyncio
    async def test_stalled_client_queue_stays_bounded(self, small_outbox):
        ws = StalledWebSocket()
        conn = Connection("c1", ws)
        conn.start()
        await asyncio.sleep(0)
        for i in range(500):
            conn.send(state(i))
            assert conn.outbox.qsize() <= 8
        assert conn.closed is False
        conn.close()
        queued = drain(conn)
        assert queued[-1] == state(499)

    @pytest.mark.asyncio
    async def test_newest_state_survives_compaction_before_error(self, small_outbox):
        conn = Connection("c1", StalledWebSocket())
        for i in range(8):
            conn.send(state(i))
        conn.send({"type": "ERROR", "error": "conflict", "message": "Buzz already locked."})
        queued = drain(conn)
        assert queued == [
            state(7),
            {"type": "ERROR", "error": "conflict", "message": "Buzz already locked."},
        ]

    @pytest.mark.asyncio
    async def test_full_of_non_state_drops_connection(self, small_outbox):
        ws = StalledWebSocket()
        conn = Connection("c1", ws)
        for _ in range(8):
            conn.send({"type": "ERROR", "error": "conflict", "message": "Too many messages"})
        conn.send({"type": "ERROR", "error": "conflict", "message": "Too many messages"})
        assert conn.closed is True
        await asyncio.sleep(0)
        assert ws.close_code == 1013
        conn.send(state(1))
        assert conn.outbox.qsize() == 8

    @pytest.mark.asyncio
    async def test_reading_client_gets_messages_in_order(self):
        sent = []

        class RecordingWebSocket:
            async def send_json(self, message):
                sent.append(message)

        conn = Connection("c1", RecordingWebSocket())
        conn.start()
        for i in range(5):
            conn.send(state(i))
        await asyncio.sleep(0.05)
        assert sent == [state(i) for i in range(5)]
        conn.close()
