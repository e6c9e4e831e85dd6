"""
Script tracking module that follows a speaker through the script.

Consumes a stream of partial and final transcript events. Finals are
authoritative and advance the committed position word by word; partials only
move the "current word" marker and are debounced so that a burst of partial
hypotheses costs at most one alignment per interval.
"""

import dataclasses
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from . import fuzz
from .aligner import NO_POSITION, AlignmentEngine, AlignmentSettings, MatchResult
from .debounce import Debouncer, DebounceHandle
from .events import TranscriptEvent
from .script_parser import ParsedScript, normalize_word, parse_script, split_words

logger = logging.getLogger(__name__)

SnapshotListener = Callable[['TrackerSnapshot'], None]


class TrackerStatus(str, Enum):
    """Lifecycle of a tracking session."""
    IDLE = "idle"  # No session
    ARMED = "armed"  # Session started, waiting for the first transcript
    TRACKING = "tracking"  # Actively advancing


@dataclass(frozen=True)
class TrackingSettings:
    """Tunable constants for the incremental tracker."""
    search_window: int = 8  # Script words searched past the last match
    final_threshold: float = 60.0  # Minimum similarity (0-100) for final words
    partial_threshold: float = 50.0  # More lenient minimum for partial words
    debounce_ms: float = 150.0  # Partial alignment delay
    skip_filler_words: bool = True

    def __post_init__(self) -> None:
        if self.search_window < 1:
            raise ValueError(
                f"search_window must be at least 1, got {self.search_window}")
        for name in ("final_threshold", "partial_threshold"):
            value: float = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100, got {value}")
        if self.debounce_ms < 0:
            raise ValueError(
                f"debounce_ms must not be negative, got {self.debounce_ms}")


@dataclass
class ScriptWord:
    """Per-word tracking state."""
    id: int  # Position in the script's word list
    word: str  # As written
    normalized_form: str
    is_spoken: bool = False
    is_current: bool = False


@dataclass
class TrackerState:
    """Mutable state of one session, owned by the tracker."""
    status: TrackerStatus = TrackerStatus.IDLE
    last_matched_word_index: int = NO_POSITION
    current_word_index: int | None = None
    # Bumped on stop/reset/script change so stale deferred work is dropped
    generation: int = 0


@dataclass(frozen=True)
class TrackerSnapshot:
    """Immutable view of the tracker, handed to renderers."""
    status: TrackerStatus
    generation: int
    last_matched_word_index: int
    spoken_word_indices: tuple[int, ...]
    current_word_index: int | None
    total_words: int
    transcript: str = ""
    is_final: bool = False
    matched: bool = False

    @property
    def progress(self) -> float:
        """Fraction of the script spoken (0.0 to 1.0)."""
        if self.total_words == 0:
            return 0.0
        return (self.last_matched_word_index + 1) / self.total_words

    def to_dict(self) -> dict[str, Any]:
        """JSON friendly form."""
        return {
            "status": self.status.value,
            "generation": self.generation,
            "lastMatchedWordIndex": self.last_matched_word_index,
            "spokenWordIndices": list(self.spoken_word_indices),
            "currentWordIndex": self.current_word_index,
            "totalWords": self.total_words,
            "progress": self.progress,
            "transcript": self.transcript,
            "isFinal": self.is_final,
            "matched": self.matched,
        }


class ScriptTracker:
    """
    Tracks position in a script based on transcript events.

    All indices are script word indices. The tracker is not thread safe:
    a session must be driven from a single sequential path (see
    ThreadedTracker for a worker-thread driver).
    """

    # Common filler words skipped in finals unless the script says them
    FILLER_WORDS: frozenset[str] = frozenset([
        'um', 'uh', 'ah', 'er', 'eh', 'hm', 'hmm', 'mm', 'mhm', 'umm', 'ahh',
        'err', 'ehh', 'uhh', 'mmm', 'huh',
    ])

    settings: TrackingSettings
    alignment_settings: AlignmentSettings
    parsed_script: ParsedScript
    engine: AlignmentEngine
    state: TrackerState

    _script_words: list[ScriptWord]
    _debouncer: Debouncer[TranscriptEvent]
    _listeners: list[SnapshotListener]

    def __init__(
        self,
        script_text: str,
        settings: TrackingSettings | None = None,
        alignment_settings: AlignmentSettings | None = None,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        """
        Initialize the script tracker.

        Args:
            script_text: The full script text
            settings: Tracker thresholds and debounce delay
            alignment_settings: Constants for the alignment engine
            clock: Monotonic clock in seconds, used for debouncing
        """
        self.settings = settings or TrackingSettings()
        self.alignment_settings = alignment_settings or AlignmentSettings()
        self.state = TrackerState()
        self._debouncer = Debouncer(self.settings.debounce_ms, clock=clock)
        self._listeners = []
        self._index_script(script_text)

    def _index_script(self, script_text: str) -> None:
        self.parsed_script = parse_script(script_text)
        self.engine = AlignmentEngine(self.parsed_script, self.alignment_settings)
        self._script_words = [
            ScriptWord(id=i, word=word, normalized_form=norm)
            for i, (word, norm) in enumerate(
                zip(self.parsed_script.words, self.parsed_script.normalized_words))
        ]

    # ------------------------------------------------------------------
    # Accessors

    @property
    def words(self) -> list[str]:
        """Script words as written."""
        return list(self.parsed_script.words)

    @property
    def script_words(self) -> tuple[ScriptWord, ...]:
        """Copies of the per-word state."""
        return tuple(dataclasses.replace(w) for w in self._script_words)

    @property
    def status(self) -> TrackerStatus:
        """Current lifecycle state."""
        return self.state.status

    @property
    def last_matched_word_index(self) -> int:
        """Last committed word index (-1 before the first match)."""
        return self.state.last_matched_word_index

    @property
    def current_word_index(self) -> int | None:
        """Word currently being spoken according to partials."""
        return self.state.current_word_index

    @property
    def pending(self) -> DebounceHandle[TranscriptEvent] | None:
        """Outstanding debounced partial, if any."""
        return self._debouncer.pending

    def time_until_due(self, now: float | None = None) -> float | None:
        """Seconds until the pending partial should run, or None."""
        return self._debouncer.time_until_due(now)

    def snapshot(self, transcript: str = "", is_final: bool = False,
                 matched: bool = False) -> TrackerSnapshot:
        """Build an immutable view of the current state."""
        return TrackerSnapshot(
            status=self.state.status,
            generation=self.state.generation,
            last_matched_word_index=self.state.last_matched_word_index,
            spoken_word_indices=tuple(w.id for w in self._script_words if w.is_spoken),
            current_word_index=self.state.current_word_index,
            total_words=len(self._script_words),
            transcript=transcript,
            is_final=is_final,
            matched=matched,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a listener for every emitted snapshot.

        Returns a function that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _emit(self, snapshot: TrackerSnapshot) -> TrackerSnapshot:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Snapshot listener failed: %s", e, exc_info=True)
        return snapshot

    # ------------------------------------------------------------------
    # Session lifecycle

    def start(self) -> TrackerSnapshot:
        """Arm the tracker for a new session (no-op if already running)."""
        if self.state.status is TrackerStatus.IDLE:
            self.state.status = TrackerStatus.ARMED
            logger.info("Tracking session armed (generation %d)", self.state.generation)
        return self._emit(self.snapshot())

    def stop(self) -> TrackerSnapshot:
        """End the session, keeping the progress made so far."""
        self._invalidate_pending()
        self.state.status = TrackerStatus.IDLE
        logger.info("Tracking session stopped at word %d",
                    self.state.last_matched_word_index)
        return self._emit(self.snapshot())

    def reset(self) -> TrackerSnapshot:
        """Clear all progress and return to Idle."""
        self._invalidate_pending()
        for word in self._script_words:
            word.is_spoken = False
            word.is_current = False
        self.state.last_matched_word_index = NO_POSITION
        self.state.current_word_index = None
        self.state.status = TrackerStatus.IDLE
        logger.info("Tracker reset")
        return self._emit(self.snapshot())

    def load_script(self, script_text: str) -> TrackerSnapshot:
        """Replace the script. Progress is cleared; a running session is
        re-armed for the new script."""
        self._invalidate_pending()
        self._index_script(script_text)
        self.state.last_matched_word_index = NO_POSITION
        self.state.current_word_index = None
        if self.state.status is TrackerStatus.TRACKING:
            self.state.status = TrackerStatus.ARMED
        logger.info("Script loaded: %d words, %d sentences",
                    self.parsed_script.word_count, len(self.parsed_script.sentences))
        return self._emit(self.snapshot())

    def _invalidate_pending(self) -> None:
        self._debouncer.cancel()
        self.state.generation += 1

    # ------------------------------------------------------------------
    # Event processing

    def submit(self, event: TranscriptEvent,
               now: float | None = None) -> TrackerSnapshot | None:
        """
        Feed one transcript event into the session.

        Finals are processed immediately and cancel any pending partial.
        Partials are deferred by the debounce delay, superseding any partial
        that is still pending; call poll() to run them once due.

        Args:
            event: The transcript event
            now: Clock time of arrival (defaults to the tracker's clock)

        Returns:
            The new snapshot for a final, None for a deferred partial or an
            event received while Idle.
        """
        if self.state.status is TrackerStatus.IDLE:
            logger.debug("Ignoring %r while idle", event)
            return None
        if not event.text.strip():
            return None

        if event.is_final:
            if self._debouncer.cancel():
                logger.debug("Final transcript superseded pending partial")
            return self.handle_final(event.text)

        self._debouncer.schedule(event, self.state.generation, now=now)
        return None

    def poll(self, now: float | None = None) -> TrackerSnapshot | None:
        """Run the pending partial if its delay has elapsed."""
        handle = self._debouncer.pop_due(now)
        if handle is None:
            return None
        if handle.generation != self.state.generation:
            logger.debug("Discarding stale partial from generation %d",
                         handle.generation)
            return None
        return self.handle_partial(handle.payload.text)

    def flush(self) -> TrackerSnapshot | None:
        """Run the pending partial now, regardless of its delay."""
        handle = self._debouncer.pending
        if handle is None:
            return None
        return self.poll(now=handle.due)

    def _search_range(self, last_index: int) -> tuple[int, int] | None:
        start: int = last_index + 1
        total: int = len(self._script_words)
        if start >= total:
            return None
        return start, min(total, start + self.settings.search_window)

    def _resolve_token_index(self, token: str, match: MatchResult) -> int:
        """Pick the word inside the matched window that the token is."""
        best_index: int = match.index
        best_score: int = -1
        for i in match.spoken_word_indices:
            score: int = fuzz.ratio(token, self._script_words[i].normalized_form)
            if score > best_score:
                best_score = score
                best_index = i
        return best_index

    def _is_skippable_filler(self, token: str, search: tuple[int, int]) -> bool:
        if not self.settings.skip_filler_words or token not in self.FILLER_WORDS:
            return False
        return all(self._script_words[i].normalized_form != token
                   for i in range(*search))

    def _mark_active(self) -> bool:
        if self.state.status is TrackerStatus.IDLE:
            logger.debug("Tracker is idle; transcript ignored")
            return False
        self.state.status = TrackerStatus.TRACKING
        return True

    def handle_partial(self, transcript: str) -> TrackerSnapshot:
        """
        Move the current-word marker from a partial transcript.

        Only the last token is matched (the word being spoken right now), and
        only within the search window after the last committed word. Never
        changes the committed position or spoken flags.
        """
        if not self._mark_active():
            return self.snapshot(transcript)

        tokens: list[str] = split_words(transcript)
        token: str = normalize_word(tokens[-1]) if tokens else ""
        search = self._search_range(self.state.last_matched_word_index)
        if not token or search is None:
            return self._emit(self.snapshot(transcript))

        match = self.engine.find_best_match(
            token,
            self.state.last_matched_word_index,
            search_range=search,
            score_cutoff=self.settings.partial_threshold,
            sentence_cutoff=min(self.alignment_settings.sentence_cutoff,
                                self.settings.partial_threshold),
        )
        if match is None:
            return self._emit(self.snapshot(transcript))

        index: int = self._resolve_token_index(token, match)
        previous: int | None = self.state.current_word_index
        if previous is not None and previous != index:
            self._script_words[previous].is_current = False
        self._script_words[index].is_current = True
        self.state.current_word_index = index
        logger.debug("Partial '%s' -> current word %d", token, index)
        return self._emit(self.snapshot(transcript, matched=True))

    def handle_final(self, transcript: str) -> TrackerSnapshot:
        """
        Commit a final transcript.

        Each token is aligned in order just past the last committed word. A
        hit marks every word up to and including it as spoken, so words that
        were missed earlier are not left behind.
        """
        if not self._mark_active():
            return self.snapshot(transcript, is_final=True)

        last: int = self.state.last_matched_word_index
        matched: bool = False
        for raw_token in split_words(transcript):
            token: str = normalize_word(raw_token)
            search = self._search_range(last)
            if search is None:
                break
            if not token or self._is_skippable_filler(token, search):
                continue

            match = self.engine.find_best_match(
                token, last,
                search_range=search,
                score_cutoff=self.settings.final_threshold,
            )
            if match is None:
                logger.debug("Final token '%s' not found after word %d", token, last)
                continue

            index: int = self._resolve_token_index(token, match)
            self._mark_spoken_through(index)
            last = index
            matched = True

        if last > self.state.last_matched_word_index:
            logger.debug("Committed position %d -> %d",
                         self.state.last_matched_word_index, last)
            self.state.last_matched_word_index = last
        return self._emit(self.snapshot(transcript, is_final=True, matched=matched))

    def _mark_spoken_through(self, index: int) -> None:
        for word in self._script_words[:index + 1]:
            word.is_spoken = True
            word.is_current = False
        current = self.state.current_word_index
        if current is not None and current <= index:
            self.state.current_word_index = None
