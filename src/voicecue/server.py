# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Web server for voicecue.
Accepts transcript events over a WebSocket and broadcasts position updates.
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from .events import TranscriptEventError
from .threaded_tracker import ThreadedTracker
from .tracker import TrackerSnapshot

logger = logging.getLogger(__name__)

MessageHandler = Callable[[web.WebSocketResponse, dict[str, Any]], Awaitable[None]]


class WebServer:
    """
    Routes transcript events into a tracking session and manages WebSocket
    connections.

    The server never aligns anything itself: events are handed to the
    ThreadedTracker, whose results are broadcast by send_position().
    """

    def __init__(
        self,
        tracker: ThreadedTracker,
        host: str = "127.0.0.1",
        port: int = 8000
    ) -> None:
        self.host: str = host
        self.port: int = port
        self.tracker: ThreadedTracker = tracker
        self.app: web.Application = web.Application()
        self.websockets: set[web.WebSocketResponse] = set()
        self.runner: web.AppRunner | None = None

        # Current state
        self.script_text: str = tracker.script_text
        self.latest_snapshot: TrackerSnapshot | None = None

        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up HTTP routes."""
        self.app.router.add_get('/ws', self._handle_websocket)
        self.app.router.add_post('/script', self._handle_script_upload)
        self.app.router.add_get('/state', self._handle_get_state)

    def _state_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {
            "type": "state",
            "script": self.script_text,
        }
        if self.latest_snapshot is not None:
            message["position"] = self.latest_snapshot.to_dict()
        else:
            message["position"] = None
        return message

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle WebSocket connections for real-time updates."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        self.websockets.add(ws)
        logger.info("WebSocket connected. Total: %d", len(self.websockets))

        try:
            # Send current state
            await ws.send_json(self._state_message())

            async for msg in ws:
                if msg.type == web.WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError as e:
                        await self._send_error(ws, f"Invalid JSON: {e}")
                        continue
                    if isinstance(data, dict):
                        await self._handle_ws_message(ws, data)
                    else:
                        await self._send_error(ws, "Expected a JSON object")
                elif msg.type == web.WSMsgType.ERROR:
                    logger.warning("WebSocket error: %s", ws.exception())
        finally:
            self.websockets.discard(ws)
            logger.info("WebSocket disconnected. Total: %d", len(self.websockets))

        return ws

    async def _run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a tracker call that may block on a full queue off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def _handle_ws_message(self, ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        """Handle incoming WebSocket messages using dispatch pattern."""
        msg_type: object | None = data.get("type")
        if not msg_type:
            return

        # Message type to handler dispatch
        handlers: dict[str, MessageHandler] = {
            "script": self._on_script_message,
            "start": self._on_start_message,
            "stop": self._on_stop_message,
            "reset": self._on_reset_message,
            "transcript": self._on_transcript_message,
        }

        handler: MessageHandler | None = handlers.get(str(msg_type))
        if handler:
            await handler(ws, data)
        else:
            logger.warning("Unhandled WebSocket message: %s", msg_type)

    async def _on_script_message(self, _ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        """Handle script update message."""
        await self._load_script(str(data.get("text", "")))

    async def _on_start_message(self, _ws: web.WebSocketResponse, _data: dict[str, Any]) -> None:
        """Handle start session message."""
        await self._run_blocking(self.tracker.start)
        logger.info("Session start requested")

    async def _on_stop_message(self, _ws: web.WebSocketResponse, _data: dict[str, Any]) -> None:
        """Handle stop session message."""
        await self._run_blocking(self.tracker.stop)
        logger.info("Session stop requested")

    async def _on_reset_message(self, _ws: web.WebSocketResponse, _data: dict[str, Any]) -> None:
        """Handle reset message."""
        await self._run_blocking(self.tracker.reset)
        await self.broadcast({"type": "reset"})

    async def _on_transcript_message(
        self,
        ws: web.WebSocketResponse,
        data: dict[str, Any]
    ) -> None:
        """Handle a transcript message.

        The provider payload is either nested under "payload" or is the
        message itself.
        """
        payload: Any = data.get("payload", data)
        if payload is data:
            payload = {k: v for k, v in data.items() if k != "type"}
        try:
            await self._run_blocking(self.tracker.submit_message, payload)
        except TranscriptEventError as e:
            # The session runner has already been stopped
            await self._send_error(ws, str(e))

    async def _send_error(self, ws: web.WebSocketResponse, message: str) -> None:
        logger.warning("Rejected client message: %s", message)
        await ws.send_json({"type": "error", "message": message})

    async def _load_script(self, text: str) -> None:
        self.script_text = text
        await self._run_blocking(self.tracker.load_script, text)
        await self.broadcast({
            "type": "script_updated",
            "script": self.script_text,
        })

    async def _handle_script_upload(self, request: web.Request) -> web.Response:
        """Handle script upload via POST."""
        try:
            data: Any = await request.json()
        except json.JSONDecodeError:
            return web.json_response(
                {"status": "error", "message": "Invalid JSON"}, status=400)
        if not isinstance(data, dict) or not isinstance(data.get("text", ""), str):
            return web.json_response(
                {"status": "error", "message": "Expected {\"text\": string}"},
                status=400)
        await self._load_script(data.get("text", ""))
        return web.json_response({"status": "ok"})

    async def _handle_get_state(self, request: web.Request) -> web.Response:
        """Get the script and last broadcast position."""
        return web.json_response(self._state_message())

    async def broadcast(self, message: dict[str, object]) -> None:
        """Send a message to all connected WebSocket clients."""
        if not self.websockets:
            return

        dead: set[web.WebSocketResponse] = set()
        for ws in self.websockets:
            try:
                await ws.send_json(message)
            except (ConnectionError, ConnectionResetError, RuntimeError) as e:
                logger.warning("Error sending to WebSocket: %s", e)
                dead.add(ws)

        self.websockets -= dead

    async def send_position(self, snapshot: TrackerSnapshot) -> None:
        """Send position update to all clients."""
        self.latest_snapshot = snapshot
        message: dict[str, object] = {"type": "position"}
        message.update(snapshot.to_dict())
        await self.broadcast(message)

    async def start(self) -> None:
        """Start the web server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site: web.TCPSite = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info("Web server running at http://%s:%d", self.host, self.port)

        # Give event loop a moment to start accepting connections
        await asyncio.sleep(0.1)

    async def stop(self) -> None:
        """Stop the web server."""
        # Close all WebSocket connections
        for ws in list(self.websockets):
            with contextlib.suppress(Exception):
                await ws.close()
        self.websockets.clear()

        if self.runner:
            await self.runner.cleanup()
