# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for WebServer message handling and HTTP routes.
"""

import asyncio
import threading
import time
from typing import Any

from aiohttp import test_utils

from voicecue.server import WebServer
from voicecue.threaded_tracker import ThreadedTracker, TrackingResult
from voicecue.tracker import TrackerStatus, TrackingSettings

SCRIPT = "The quick brown fox jumps over the lazy dog"


class FakeWebSocket:
    """Records messages sent to a client."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, data: dict[str, Any]) -> None:
        self.sent.append(data)


def make_server(script: str = SCRIPT) -> WebServer:
    tracker = ThreadedTracker(script, settings=TrackingSettings(debounce_ms=20))
    return WebServer(tracker)


def wait_for(tracker: ThreadedTracker, predicate, timeout: float = 2.0) -> TrackingResult:
    deadline = time.time() + timeout
    while time.time() < deadline:
        result = tracker.get_latest_result(timeout=0.1)
        if result is not None and predicate(result.snapshot):
            return result
    raise AssertionError("Timed out waiting for tracking result")


def test_transcript_message_reaches_tracker():
    """Start and transcript messages drive the tracking session."""
    server = make_server()
    ws = FakeWebSocket()
    try:
        async def run() -> None:
            await server._handle_ws_message(ws, {"type": "start"})
            await server._handle_ws_message(ws, {
                "type": "transcript",
                "payload": {"message_type": "FinalTranscript", "text": "the quick brown"},
            })

        asyncio.run(run())
        result = wait_for(server.tracker, lambda s: s.last_matched_word_index == 2)

        assert result.snapshot.status is TrackerStatus.TRACKING
        assert ws.sent == []
    finally:
        server.tracker.shutdown()


def test_inline_transcript_payload():
    """The provider payload may be the message itself."""
    server = make_server()
    ws = FakeWebSocket()
    try:
        async def run() -> None:
            await server._handle_ws_message(ws, {"type": "start"})
            await server._handle_ws_message(ws, {
                "type": "transcript", "text": "the quick", "is_final": True,
            })

        asyncio.run(run())
        wait_for(server.tracker, lambda s: s.last_matched_word_index == 1)
    finally:
        server.tracker.shutdown()


def test_malformed_transcript_sends_error_and_stops():
    """A bad payload is reported to the client and ends the session."""
    server = make_server()
    ws = FakeWebSocket()
    try:
        async def run() -> None:
            await server._handle_ws_message(ws, {"type": "start"})
            await server._handle_ws_message(ws, {"type": "transcript", "payload": "garbage"})

        asyncio.run(run())

        assert ws.sent[-1]["type"] == "error"
        wait_for(server.tracker,
                 lambda s: s.status is TrackerStatus.IDLE and s.generation > 0)
    finally:
        server.tracker.shutdown()


def test_send_position_broadcasts_snapshot():
    """Snapshots are broadcast as position messages to every client."""
    server = make_server()
    clients = [FakeWebSocket(), FakeWebSocket()]
    server.websockets.update(clients)  # type: ignore[arg-type]
    try:
        server.tracker.start()
        server.tracker.submit_transcription("the quick")
        result = wait_for(server.tracker, lambda s: s.last_matched_word_index == 1)

        asyncio.run(server.send_position(result.snapshot))

        for client in clients:
            message = client.sent[-1]
            assert message["type"] == "position"
            assert message["lastMatchedWordIndex"] == 1
            assert message["spokenWordIndices"] == [0, 1]
        assert server.latest_snapshot == result.snapshot
    finally:
        server.tracker.shutdown()


def test_reset_broadcasts():
    """Reset is forwarded to the tracker and announced to clients."""
    server = make_server()
    client = FakeWebSocket()
    server.websockets.add(client)  # type: ignore[arg-type]
    try:
        asyncio.run(server._handle_ws_message(client, {"type": "reset"}))
        assert client.sent == [{"type": "reset"}]
    finally:
        server.tracker.shutdown()


def test_tracker_calls_run_off_event_loop():
    """Queue puts that can block never run on the event loop thread."""
    server = make_server()
    ws = FakeWebSocket()
    calls: dict[str, int] = {}

    def recording(name, func):
        def wrapper(*args):
            calls[name] = threading.get_ident()
            return func(*args)
        return wrapper

    for name in ("start", "stop", "reset", "load_script", "submit_message"):
        setattr(server.tracker, name, recording(name, getattr(server.tracker, name)))

    try:
        async def run() -> int:
            await server._handle_ws_message(ws, {"type": "script", "text": SCRIPT})
            await server._handle_ws_message(ws, {"type": "start"})
            await server._handle_ws_message(ws, {
                "type": "transcript", "text": "the quick", "is_final": True,
            })
            await server._handle_ws_message(ws, {"type": "stop"})
            await server._handle_ws_message(ws, {"type": "reset"})
            return threading.get_ident()

        loop_thread = asyncio.run(run())

        assert set(calls) == {"start", "stop", "reset", "load_script", "submit_message"}
        assert loop_thread not in calls.values()
    finally:
        server.tracker.shutdown()


def test_unknown_message_ignored():
    """Unknown message types are logged, not answered."""
    server = make_server()
    ws = FakeWebSocket()
    try:
        asyncio.run(server._handle_ws_message(ws, {"type": "dance"}))
        asyncio.run(server._handle_ws_message(ws, {"no": "type"}))
        assert ws.sent == []
    finally:
        server.tracker.shutdown()


def test_http_routes():
    """Script upload and state routes."""
    server = make_server("")
    try:
        async def run() -> None:
            async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
                resp = await client.get("/state")
                assert resp.status == 200
                state = await resp.json()
                assert state == {"type": "state", "script": "", "position": None}

                resp = await client.post("/script", json={"text": "Hello there world."})
                assert resp.status == 200
                assert (await resp.json()) == {"status": "ok"}

                resp = await client.get("/state")
                assert (await resp.json())["script"] == "Hello there world."

                resp = await client.post("/script", data="not json")
                assert resp.status == 400

                resp = await client.post("/script", json={"text": 5})
                assert resp.status == 400

        asyncio.run(run())
        wait_for(server.tracker, lambda s: s.total_words == 3)
    finally:
        server.tracker.shutdown()


def test_websocket_session():
    """A client receives the state on connect and errors for bad input."""
    server = make_server()
    try:
        async def run() -> None:
            async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
                ws = await client.ws_connect("/ws")

                state = await ws.receive_json()
                assert state["type"] == "state"
                assert state["script"] == SCRIPT

                await ws.send_str("{not json")
                error = await ws.receive_json()
                assert error["type"] == "error"

                await ws.send_json(["a", "list"])
                error = await ws.receive_json()
                assert error["type"] == "error"

                await ws.send_json({"type": "transcript", "payload": 42})
                error = await ws.receive_json()
                assert error["type"] == "error"

                await ws.close()

        asyncio.run(run())
    finally:
        server.tracker.shutdown()
