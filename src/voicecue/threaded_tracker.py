# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Threaded wrapper for ScriptTracker that runs a session off the caller's thread.

Transcript events and control commands are queued and processed in arrival
order by a single worker thread, so at most one alignment is ever in flight.
The worker waits on the queue only until the next debounced partial is due.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any

from .aligner import AlignmentSettings
from .events import TranscriptEvent, TranscriptEventError, parse_message
from .tracker import ScriptTracker, TrackerSnapshot, TrackingSettings

logger = logging.getLogger(__name__)

# Longest the worker blocks on the queue before re-checking shutdown
_IDLE_WAIT: float = 0.1


@dataclass
class TrackingRequest:
    """A transcript event waiting to be processed."""
    event: TranscriptEvent
    request_id: int


@dataclass
class TrackingResult:
    """Result from a tracking update."""
    snapshot: TrackerSnapshot
    request_id: int
    processing_time: float


@dataclass
class ControlCommand:
    """Control command for the worker thread."""
    command: str  # 'start', 'stop', 'reset', 'load_script', 'shutdown'
    param: Any = None


class ThreadedTracker:
    """
    Thread-safe wrapper around ScriptTracker for non-blocking operation.

    Features:
    - Non-blocking submission of transcript events
    - Final events are never dropped or reordered
    - Partials are dropped under backpressure (a newer one supersedes them anyway)
    - Cached latest result for immediate access

    Usage:
        tracker = ThreadedTracker(script_text)
        tracker.start()

        tracker.submit_event(TranscriptEvent.partial("the quick"))

        result = tracker.get_latest_result(timeout=1.0)
        if result:
            send_to_ui(result.snapshot)
    """

    def __init__(
        self,
        script_text: str,
        settings: TrackingSettings | None = None,
        alignment_settings: AlignmentSettings | None = None,
        max_queue_size: int = 64
    ):
        """
        Initialize the threaded tracker.

        Args:
            script_text: The script text to track
            settings: Tracker settings (thresholds, debounce delay)
            alignment_settings: Alignment engine settings
            max_queue_size: Maximum queued events before partials are dropped
        """
        if max_queue_size < 1:
            raise ValueError(f"max_queue_size must be at least 1, got {max_queue_size}")

        self.script_text = script_text
        self.settings = settings or TrackingSettings()
        self.alignment_settings = alignment_settings or AlignmentSettings()
        self.max_queue_size = max_queue_size

        # Queues for communication
        self.request_queue: queue.Queue[TrackingRequest | ControlCommand] = queue.Queue(
            maxsize=max_queue_size
        )
        self.result_queue: queue.Queue[TrackingResult] = queue.Queue()

        # Thread control
        self.worker_thread: threading.Thread | None = None
        self.shutdown_flag = threading.Event()
        self.started = threading.Event()

        # Cached state (thread-safe with lock)
        self.state_lock = threading.Lock()
        self.latest_result: TrackingResult | None = None
        self.request_counter = 0
        self._last_request_id = 0

        self._start_worker()

        self.started.wait(timeout=5.0)
        if not self.started.is_set():
            raise RuntimeError("Worker thread failed to start")

    def _start_worker(self) -> None:
        """Start the worker thread."""
        self.worker_thread = threading.Thread(
            target=self._worker_loop,
            name="TrackerWorker",
            daemon=True
        )
        self.worker_thread.start()

    def _worker_loop(self) -> None:
        """Main loop for the worker thread."""
        try:
            # The tracker lives on the worker thread only
            tracker = ScriptTracker(
                self.script_text,
                settings=self.settings,
                alignment_settings=self.alignment_settings,
            )

            logger.info("ThreadedTracker worker started")
            self.started.set()

            while not self.shutdown_flag.is_set():
                due = tracker.time_until_due()
                wait = _IDLE_WAIT if due is None else min(_IDLE_WAIT, due)
                try:
                    item = self.request_queue.get(timeout=wait) if wait > 0 \
                        else self.request_queue.get_nowait()
                except queue.Empty:
                    item = None

                try:
                    if isinstance(item, ControlCommand):
                        self._handle_control_command(tracker, item)
                    elif isinstance(item, TrackingRequest):
                        self._handle_tracking_request(tracker, item)

                    start_time = time.time()
                    snapshot = tracker.poll()
                    if snapshot is not None:
                        self._publish(snapshot, self._last_request_id, start_time)
                except Exception as e:  # pylint: disable=broad-exception-caught
                    logger.error("Error in worker loop: %s", e, exc_info=True)

        finally:
            logger.info("ThreadedTracker worker stopped")

    def _handle_control_command(self, tracker: ScriptTracker, cmd: ControlCommand) -> None:
        """Handle control commands."""
        start_time = time.time()
        snapshot: TrackerSnapshot | None = None

        if cmd.command == 'start':
            snapshot = tracker.start()
        elif cmd.command == 'stop':
            snapshot = tracker.stop()
        elif cmd.command == 'reset':
            snapshot = tracker.reset()
            logger.debug("Tracker reset")
        elif cmd.command == 'load_script':
            self.script_text = cmd.param
            snapshot = tracker.load_script(cmd.param)
        elif cmd.command == 'shutdown':
            self.shutdown_flag.set()

        if snapshot is not None:
            self._publish(snapshot, self._last_request_id, start_time)

    def _handle_tracking_request(self, tracker: ScriptTracker, req: TrackingRequest) -> None:
        """Handle a transcript event."""
        start_time = time.time()
        self._last_request_id = req.request_id
        snapshot = tracker.submit(req.event)
        if snapshot is not None:
            self._publish(snapshot, req.request_id, start_time)

    def _publish(self, snapshot: TrackerSnapshot, request_id: int, start_time: float) -> None:
        result = TrackingResult(
            snapshot=snapshot,
            request_id=request_id,
            processing_time=time.time() - start_time
        )
        with self.state_lock:
            self.latest_result = result
        self.result_queue.put_nowait(result)

    def _queue_command(self, cmd: ControlCommand) -> None:
        # Commands are ordered with finals, so they block rather than drop
        self.request_queue.put(cmd)

    def submit_event(self, event: TranscriptEvent) -> bool:
        """
        Submit a transcript event for tracking.

        Finals block until there is room in the queue; partials are dropped
        when the queue is full.

        Args:
            event: The transcript event

        Returns:
            True if the event was queued, False if it was dropped
        """
        with self.state_lock:
            self.request_counter += 1
            request_id = self.request_counter

        request = TrackingRequest(event=event, request_id=request_id)

        if event.is_final:
            self.request_queue.put(request)
            return True

        try:
            self.request_queue.put_nowait(request)
            return True
        except queue.Full:
            logger.warning("Backpressure: dropping partial transcript")
            return False

    def submit_transcription(self, transcription: str, is_partial: bool = False) -> bool:
        """Submit transcript text (convenience wrapper around submit_event)."""
        if is_partial:
            return self.submit_event(TranscriptEvent.partial(transcription))
        return self.submit_event(TranscriptEvent.final(transcription))

    def submit_message(self, payload: Any) -> bool:
        """
        Submit a raw provider message.

        A malformed message ends the session: the tracker is stopped and the
        error is re-raised for the session owner to decide on reconnection.

        Returns:
            True if an event was queued, False if the message carried no
            transcript or the event was dropped.
        """
        try:
            event = parse_message(payload)
        except TranscriptEventError:
            logger.warning("Malformed transcript message, stopping session")
            self.stop()
            raise
        if event is None:
            return False
        return self.submit_event(event)

    def get_latest_result(self, timeout: float = 0) -> TrackingResult | None:
        """
        Get the next tracking result.

        Args:
            timeout: How long to wait for a result (0 = don't wait)

        Returns:
            Next result or None if no result available
        """
        try:
            if timeout > 0:
                return self.result_queue.get(timeout=timeout)
            return self.result_queue.get_nowait()
        except queue.Empty:
            return None

    def get_cached_result(self) -> TrackingResult | None:
        """
        Get the cached latest result without consuming from queue.

        Returns:
            Latest cached result or None
        """
        with self.state_lock:
            return self.latest_result

    def start(self) -> None:
        """Arm the tracker for a session."""
        self._queue_command(ControlCommand(command='start'))

    def stop(self) -> None:
        """Stop the session, keeping progress."""
        self._queue_command(ControlCommand(command='stop'))

    def reset(self) -> None:
        """Reset tracker to the beginning."""
        self._queue_command(ControlCommand(command='reset'))

    def load_script(self, script_text: str) -> None:
        """Replace the script being tracked."""
        self._queue_command(ControlCommand(command='load_script', param=script_text))

    def shutdown(self) -> None:
        """Shutdown the worker thread."""
        try:
            self.request_queue.put(ControlCommand(command='shutdown'), timeout=1.0)
        except queue.Full:
            pass

        self.shutdown_flag.set()

        if self.worker_thread and self.worker_thread.is_alive():
            self.worker_thread.join(timeout=2.0)

    def __del__(self) -> None:
        """Cleanup on deletion."""
        if getattr(self, "worker_thread", None) is not None:
            self.shutdown()
