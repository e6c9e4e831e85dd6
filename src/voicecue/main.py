"""
Main voicecue application.
Orchestrates the tracking session and the web server.
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

from .aligner import AlignmentSettings
from .config import (
    Config,
    get_alignment_settings,
    get_config_path,
    get_tracking_settings,
    load_config,
    save_config,
)
from .server import WebServer
from .threaded_tracker import ThreadedTracker
from .tracker import TrackingSettings

logger = logging.getLogger(__name__)


class VoicecueApp:
    """
    Main voicecue application that coordinates all components.
    """

    def __init__(
        self,
        script_text: str = "",
        host: str = "127.0.0.1",
        port: int = 8000,
        tracking_settings: TrackingSettings | None = None,
        alignment_settings: AlignmentSettings | None = None
    ) -> None:
        self.script_text: str = script_text
        self.host: str = host
        self.port: int = port
        self.tracking_settings: TrackingSettings = tracking_settings or TrackingSettings()
        self.alignment_settings: AlignmentSettings = alignment_settings or AlignmentSettings()

        self.tracker: ThreadedTracker | None = None
        self.server: WebServer | None = None

        self.running: bool = False

    async def start(self) -> None:
        """Start the voicecue application."""
        logger.info("Starting voicecue...")

        self.tracker = ThreadedTracker(
            self.script_text,
            settings=self.tracking_settings,
            alignment_settings=self.alignment_settings,
        )
        self.server = WebServer(self.tracker, host=self.host, port=self.port)
        await self.server.start()

        self.running = True

        print("\n✓ voicecue ready!")
        print(f"  WebSocket endpoint: ws://{self.host}:{self.port}/ws")
        print("  Press Ctrl+C to stop\n")

        # Main processing loop - run as background task to keep event loop responsive
        process_task = asyncio.create_task(self._process_loop())

        # Wait for the process task to complete (only happens on shutdown)
        try:
            await process_task
        except asyncio.CancelledError:
            logger.debug("Process task cancelled")

    async def _process_loop(self) -> None:
        """Forward tracking results to connected clients."""
        assert self.server is not None, "Server must be initialized"
        assert self.tracker is not None, "Tracker must be initialized"
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()

        while self.running:
            result = await loop.run_in_executor(
                None, self.tracker.get_latest_result, 0.05
            )
            if result is not None:
                logger.debug("Result %d processed in %.1fms",
                             result.request_id, result.processing_time * 1000)
                await self.server.send_position(result.snapshot)

    async def stop(self) -> None:
        """Stop the voicecue application."""
        logger.info("Stopping voicecue...")
        self.running = False

        if self.server:
            await self.server.stop()

        if self.tracker:
            self.tracker.shutdown()

        print("voicecue stopped.")


def main() -> None:
    """Main entry point."""
    # Load config first to use as defaults
    config: Config = load_config()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="voicecue - Follow a live transcript through a reference script"
    )

    parser.add_argument(
        "--host",
        default=config.get("host", "127.0.0.1"),
        help="Web server host (default: from config or 127.0.0.1)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=config.get("port", 8000),
        help="Web server port (default: from config or 8000)"
    )

    parser.add_argument(
        "--script", "-s",
        type=Path,
        default=None,
        help="Script file to load at startup"
    )

    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level (default: WARNING)"
    )

    parser.add_argument(
        "--save-config",
        action="store_true",
        help="Save current CLI options to config file and exit"
    )

    args: argparse.Namespace = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )

    if args.save_config:
        config["host"] = args.host
        config["port"] = args.port
        if save_config(config):
            print(f"Configuration saved to {get_config_path()}")
        return

    try:
        tracking_settings = get_tracking_settings(config)
        alignment_settings = get_alignment_settings(config)
    except (TypeError, ValueError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    script_text: str = ""
    if args.script is not None:
        try:
            script_text = args.script.read_text(encoding="utf-8")
        except OSError as e:
            print(f"Error loading script: {e}", file=sys.stderr)
            sys.exit(1)

    # Create and run the app
    app: VoicecueApp = VoicecueApp(
        script_text=script_text,
        host=args.host,
        port=args.port,
        tracking_settings=tracking_settings,
        alignment_settings=alignment_settings,
    )

    # Handle shutdown gracefully
    loop: asyncio.AbstractEventLoop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def shutdown(sig: int, frame: object) -> None:
        """Handle shutdown signals (SIGINT, SIGTERM) gracefully."""
        print("\nReceived shutdown signal...")
        # Set the running flag to false to stop the main loop
        app.running = False

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        app.running = False
    finally:
        # Ensure clean shutdown
        with contextlib.suppress(Exception):
            loop.run_until_complete(app.stop())
        # Cancel any remaining tasks
        pending: set[asyncio.Task[object]] = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        # Allow cancelled tasks to complete
        if pending:
            loop.run_until_complete(asyncio.gather(
                *pending, return_exceptions=True))
        loop.close()


if __name__ == "__main__":
    main()
