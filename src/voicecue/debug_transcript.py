# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Debug tool for replaying a transcript through the tracker.

This CLI tool takes a recorded event file and a script file, replays the
partial and final events against a simulated clock, and outputs detailed
tracking information to help debug tracking issues.

Event files are either JSON lines (one provider message per line, with an
optional "at" offset in seconds) or plain text, where each line is a final
and a line starting with "~" is a partial.
"""

import argparse
import json
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal, TextIO

from .events import TranscriptEvent, TranscriptEventError, parse_message
from .tracker import ScriptTracker, TrackerSnapshot, TrackingSettings

# Gap between events that carry no timestamp, longer than the default debounce
DEFAULT_INTERVAL: float = 0.2

EventType = Literal["advance", "no_change", "current", "superseded", "ignored"]


@dataclass
class ReplayEvent:
    """A transcript event with its offset from the start of the recording."""
    event: TranscriptEvent
    at: float


@dataclass
class TrackingEvent:
    """A single tracking outcome during transcript replay."""
    line: int
    text: str
    is_final: bool
    position_before: int
    position_after: int
    current_word_index: int | None
    event_type: EventType


def _parse_line(line: str, line_num: int, default_at: float) -> ReplayEvent | None:
    if line.startswith('{'):
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as e:
            raise TranscriptEventError(f"Line {line_num}: invalid JSON: {e}") from e
        at = payload.pop("at", default_at) if isinstance(payload, dict) else default_at
        event = parse_message(payload)
        if event is None:
            return None
        try:
            return ReplayEvent(event=event, at=float(at))
        except (TypeError, ValueError) as e:
            raise TranscriptEventError(f"Line {line_num}: bad 'at' offset: {at!r}") from e

    if line.startswith('~'):
        return ReplayEvent(event=TranscriptEvent.partial(line[1:].strip()), at=default_at)
    return ReplayEvent(event=TranscriptEvent.final(line), at=default_at)


def load_events(path: Path, interval: float = DEFAULT_INTERVAL) -> list[ReplayEvent]:
    """Load an event file.

    Skips metadata lines (starting with '===') and blank lines. Events
    without an explicit offset are spaced `interval` seconds apart.

    Raises:
        TranscriptEventError: If a JSON line is not a valid provider message.
    """
    events: list[ReplayEvent] = []
    with open(path, encoding='utf-8') as f:
        for line_num, line in enumerate(f, start=1):
            stripped_line: str = line.strip()
            if stripped_line.startswith('===') or not stripped_line:
                continue
            default_at = events[-1].at + interval if events else 0.0
            replay_event = _parse_line(stripped_line, line_num, default_at)
            if replay_event is not None:
                events.append(replay_event)
    return events


def load_script(path: Path) -> str:
    """Load script file content."""
    with open(path, encoding='utf-8') as f:
        return f.read()


def expand_word_by_word(events: list[ReplayEvent],
                        interval: float = DEFAULT_INTERVAL) -> list[ReplayEvent]:
    """Precede each final with its growing partial hypotheses.

    Simulates a provider that streams partials word by word before
    committing the utterance.
    """
    expanded: list[ReplayEvent] = []
    offset: float = 0.0
    for replay_event in events:
        words = replay_event.event.text.split()
        if replay_event.event.is_final and len(words) > 1:
            for i in range(1, len(words)):
                expanded.append(ReplayEvent(
                    event=TranscriptEvent.partial(" ".join(words[:i])),
                    at=replay_event.at + offset))
                offset += interval
        expanded.append(ReplayEvent(event=replay_event.event,
                                    at=replay_event.at + offset))
    return expanded


def _word_at(tracker: ScriptTracker, index: int | None) -> str:
    if index is None or index < 0:
        return "<START>"
    words = tracker.words
    return words[index] if index < len(words) else "<END>"


def _classify(snapshot: TrackerSnapshot, before: int) -> EventType:
    if snapshot.last_matched_word_index > before:
        return "advance"
    if not snapshot.is_final and snapshot.matched:
        return "current"
    return "no_change"


def replay_events(
    events: list[ReplayEvent],
    script_text: str,
    output: TextIO,
    verbose: bool = False,
    settings: TrackingSettings | None = None
) -> list[TrackingEvent]:
    """Replay events through a tracker and log the outcome of each.

    Args:
        events: Events to replay, in arrival order
        script_text: The script content
        output: File handle to write log output
        verbose: If True, log every event. If False, only log advances.
        settings: Tracker settings (defaults if None)

    Returns:
        List of all tracking events
    """
    tracker: ScriptTracker = ScriptTracker(script_text, settings=settings)
    tracker.start()
    results: list[TrackingEvent] = []

    # Write header
    output.write("=" * 80 + "\n")
    output.write("TRANSCRIPT DEBUG LOG\n")
    output.write(f"Generated: {datetime.now().isoformat()}\n")
    output.write(f"Script words: {len(tracker.words)}\n")
    output.write(f"Transcript events: {len(events)}\n")
    output.write("=" * 80 + "\n\n")

    # Write script words reference
    output.write("SCRIPT WORDS:\n")
    output.write("-" * 40 + "\n")
    for i, word in enumerate(tracker.words):
        output.write(f"  [{i:4d}] {word}\n")
    output.write("\n" + "=" * 80 + "\n\n")

    output.write("TRACKING LOG:\n")
    output.write("-" * 40 + "\n")

    pending_line: int = 0

    def record(line: int, text: str, is_final: bool, before: int,
               snapshot: TrackerSnapshot | None, event_type: EventType | None = None) -> None:
        after = tracker.last_matched_word_index
        current = tracker.current_word_index
        if event_type is None:
            event_type = "ignored" if snapshot is None else _classify(snapshot, before)
        results.append(TrackingEvent(
            line=line, text=text, is_final=is_final,
            position_before=before, position_after=after,
            current_word_index=current, event_type=event_type))

        if event_type == "advance":
            output.write(
                f"  * [{after:4d}] \"{_word_at(tracker, after)}\" "
                f"<- \"{text}\" (pos: {before} -> {after})\n")
        elif verbose:
            kind = "final" if is_final else "partial"
            output.write(
                f"    [{line:4d}] {kind} \"{text}\" ({event_type}, "
                f"current: {_word_at(tracker, current) if current is not None else '-'})\n")

    def run_due(now: float) -> None:
        pending = tracker.pending
        before = tracker.last_matched_word_index
        snapshot = tracker.poll(now=now)
        if pending is not None and snapshot is not None:
            record(pending_line, pending.payload.text, False, before, snapshot)

    for line_num, replay_event in enumerate(events, start=1):
        event = replay_event.event
        run_due(replay_event.at)

        if tracker.pending is not None:
            superseded = tracker.pending.payload
            record(pending_line, superseded.text, False,
                   tracker.last_matched_word_index, None, "superseded")

        before: int = tracker.last_matched_word_index
        snapshot = tracker.submit(event, now=replay_event.at)
        if event.is_final:
            record(line_num, event.text, True, before, snapshot)
        else:
            pending_line = line_num

    # Let the last partial run
    if tracker.pending is not None:
        run_due(tracker.pending.due)

    # Write summary
    output.write("\n" + "=" * 80 + "\n")
    output.write("SUMMARY:\n")
    output.write("-" * 40 + "\n")

    advances = [e for e in results if e.event_type == "advance"]
    superseded_events = [e for e in results if e.event_type == "superseded"]
    finals = [e for e in results if e.is_final]

    output.write(f"Total events processed: {len(events)}\n")
    output.write(f"Finals: {len(finals)}\n")
    output.write(
        f"Final position: {tracker.last_matched_word_index} / {len(tracker.words)}\n")
    output.write(f"Progress: {tracker.snapshot().progress:.0%}\n")
    output.write(f"Advances: {len(advances)}\n")
    output.write(f"Superseded partials: {len(superseded_events)}\n")

    return results


def main() -> None:
    """CLI entry point for debug transcript tool."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Debug transcript tracking by replaying recorded events through the tracker"
    )

    parser.add_argument(
        "transcript",
        type=Path,
        help="Path to event file (JSON lines or plain text)"
    )

    parser.add_argument(
        "script",
        type=Path,
        help="Path to script file"
    )

    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output log file path (default: stdout)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log every event, not just advances"
    )

    parser.add_argument(
        "-w", "--word-by-word",
        action="store_true",
        help="Stream each final as growing partials first"
    )

    args: argparse.Namespace = parser.parse_args()

    # Validate inputs
    if not args.transcript.exists():
        print(
            f"Error: Transcript file not found: {args.transcript}", file=sys.stderr)
        sys.exit(1)

    if not args.script.exists():
        print(f"Error: Script file not found: {args.script}", file=sys.stderr)
        sys.exit(1)

    # Load files
    try:
        events: list[ReplayEvent] = load_events(args.transcript)
        script_text: str = load_script(args.script)
    except (OSError, TranscriptEventError) as e:
        print(f"Error loading files: {e}", file=sys.stderr)
        sys.exit(1)

    if not events:
        print("Error: No transcript events found", file=sys.stderr)
        sys.exit(1)

    if args.word_by_word:
        events = expand_word_by_word(events)

    # Run replay
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            replay_events(events, script_text, f, args.verbose)
        print(f"Debug log written to: {args.output}")
    else:
        replay_events(events, script_text, sys.stdout, args.verbose)


if __name__ == "__main__":
    main()
