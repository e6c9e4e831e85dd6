"""
Alignment of a transcript fragment against the script.

Two-stage search: the fragment is first scored against every sentence to
find a few candidate sentences, then windows of consecutive words inside
those sentences are scored to pin down the word index. Scores are biased
towards forward, nearby continuation of the last known position, and large
jumps are only accepted when the match is very confident.
"""

import logging
from dataclasses import dataclass

from . import fuzz, process
from .script_parser import ParsedScript, normalize_word, split_words

logger = logging.getLogger(__name__)

# Sentinel for "no known position yet"
NO_POSITION: int = -1


@dataclass(frozen=True)
class AlignmentSettings:
    """Tunable constants for the alignment engine."""
    top_sentences: int = 3  # Candidate sentences kept from the coarse stage
    sentence_cutoff: float = 60.0  # Minimum sentence score (0-100)
    window_cutoff: float = 40.0  # Minimum window score (0-100)
    forward_bonus: float = 0.1  # Added when the window starts at/after the prior position
    proximity_bonus: float = 0.1  # Maximum bonus for being close to the prior position
    proximity_decay: float = 0.01  # Proximity bonus lost per word of distance
    max_jump: int = 20  # Largest move (in words) accepted without high confidence
    high_confidence: float = 0.8  # Combined score needed to exceed max_jump

    def __post_init__(self) -> None:
        if self.top_sentences < 1:
            raise ValueError(
                f"top_sentences must be at least 1, got {self.top_sentences}")
        for name in ("sentence_cutoff", "window_cutoff"):
            value: float = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100, got {value}")
        for name in ("forward_bonus", "proximity_bonus", "proximity_decay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.max_jump < 0:
            raise ValueError(f"max_jump must not be negative, got {self.max_jump}")
        if self.high_confidence <= 0:
            raise ValueError(
                f"high_confidence must be positive, got {self.high_confidence}")


@dataclass(frozen=True)
class MatchResult:
    """Outcome of aligning one fragment."""
    index: int  # Script word index where the match starts
    score: float  # Similarity (0-1) plus positional bonuses
    similarity: float  # Similarity (0-1) before bonuses
    spoken_word_indices: tuple[int, ...]  # Contiguous words covered
    next_word_index: int | None  # Word after the match, None at script end
    matched_text: str

    @property
    def end_index(self) -> int:
        """Last word index covered by the match."""
        return self.spoken_word_indices[-1] if self.spoken_word_indices else self.index


def window_sizes(fragment_length: int) -> list[int]:
    """Window lengths tried for a fragment of the given word count."""
    return [
        fragment_length,
        max(1, fragment_length - 1),
        fragment_length + 1,
        fragment_length + 2,
    ]


class AlignmentEngine:
    """
    Finds where in the script a transcript fragment was spoken.

    The script tables are read-only after construction, so one engine can be
    shared by concurrent readers.
    """

    script: ParsedScript
    settings: AlignmentSettings

    def __init__(self, script: ParsedScript,
                 settings: AlignmentSettings | None = None) -> None:
        self.script = script
        self.settings = settings or AlignmentSettings()

    @property
    def word_count(self) -> int:
        """Get total word count."""
        return self.script.word_count

    @property
    def words(self) -> list[str]:
        """Copy of the script's words."""
        return list(self.script.words)

    def get_word_at(self, index: int) -> str | None:
        """Get the word at a specific index."""
        return self.script.get_word(index)

    def bias(self, word_index: int, current_position: int) -> float:
        """Positional bonus for a candidate starting at ``word_index``."""
        if current_position == NO_POSITION:
            return 0.0
        s = self.settings
        forward: float = s.forward_bonus if word_index >= current_position else 0.0
        distance: int = abs(word_index - current_position)
        proximity: float = max(0.0, s.proximity_bonus - distance * s.proximity_decay)
        return forward + proximity

    def find_best_match(
        self,
        transcript: str,
        current_position: int = NO_POSITION,
        search_range: tuple[int, int] | None = None,
        score_cutoff: float | None = None,
        sentence_cutoff: float | None = None
    ) -> MatchResult | None:
        """
        Find the best match for a transcript fragment.

        Args:
            transcript: Fragment of transcript text.
            current_position: Last known word index, or NO_POSITION.
            search_range: Optional ``[start, end)`` word range the match
                must lie in.
            score_cutoff: Minimum window similarity (0-100); defaults to
                the engine's window cutoff.
            sentence_cutoff: Minimum sentence similarity (0-100); defaults
                to the engine's sentence cutoff.

        Returns:
            The best MatchResult, or None when nothing matched or the match
            was rejected by the jump guard.
        """
        if not transcript or not transcript.strip() or not self.script.words:
            return None

        fragment_words: list[str] = [
            w for w in (normalize_word(t) for t in split_words(transcript)) if w]
        if not fragment_words:
            return None

        if score_cutoff is None:
            score_cutoff = self.settings.window_cutoff
        if sentence_cutoff is None:
            sentence_cutoff = self.settings.sentence_cutoff
        fragment: str = " ".join(fragment_words)

        best: MatchResult | None = None
        for sentence_index in self._candidate_sentences(
                fragment, search_range, sentence_cutoff):
            match = self._match_in_sentence(
                sentence_index, fragment, len(fragment_words),
                current_position, search_range, score_cutoff)
            if match is not None and (best is None or match.score > best.score):
                best = match

        if best is None:
            return None

        if current_position != NO_POSITION:
            jump: int = abs(best.index - current_position)
            if jump > self.settings.max_jump and best.score < self.settings.high_confidence:
                logger.debug(
                    "Rejected jump of %d words to %d (score %.2f)",
                    jump, best.index, best.score)
                return None

        logger.debug("Matched '%s' at %d (score %.2f)",
                     fragment, best.index, best.score)
        return best

    def _candidate_sentences(
        self,
        fragment: str,
        search_range: tuple[int, int] | None,
        sentence_cutoff: float
    ) -> list[int]:
        """Rank sentences against the fragment and keep the top few.

        With a search range only the in-range words of each sentence are
        scored, so the cost depends on the range and not on sentence length.
        """
        sentences: dict[int, str] = {}
        for i, sentence in enumerate(self.script.sentences):
            if search_range is not None:
                start, end = self.script.sentence_span(i)
                if end <= search_range[0] or start >= search_range[1]:
                    continue
                in_range = self.script.normalized_words[
                    max(start, search_range[0]):min(end, search_range[1])]
                sentence = " ".join(w for w in in_range if w)
            sentences[i] = sentence
        if not sentences:
            return []

        ranked = process.extract_bests(
            fragment,
            sentences,
            scorer=fuzz.WRatio,
            limit=self.settings.top_sentences,
            score_cutoff=sentence_cutoff,
        )
        return [key for _choice, _score, key in ranked]  # type: ignore[misc]

    def _match_in_sentence(
        self,
        sentence_index: int,
        fragment: str,
        fragment_length: int,
        current_position: int,
        search_range: tuple[int, int] | None,
        score_cutoff: float
    ) -> MatchResult | None:
        """Slide windows over one sentence and keep the best scoring one."""
        start, end = self.script.sentence_span(sentence_index)
        if search_range is not None:
            start = max(start, search_range[0])
            end = min(end, search_range[1])
        sentence_words: tuple[str, ...] = self.script.normalized_words[start:end]
        if not sentence_words:
            return None

        best: MatchResult | None = None
        for size in window_sizes(fragment_length):
            for i in range(len(sentence_words) - size + 1):
                window_text: str = " ".join(w for w in sentence_words[i:i + size] if w)
                similarity: int = fuzz.WRatio(fragment, window_text)
                if similarity < score_cutoff:
                    continue

                word_index: int = start + i
                score: float = similarity / 100 + self.bias(word_index, current_position)
                if best is None or score > best.score:
                    next_index: int = word_index + size
                    best = MatchResult(
                        index=word_index,
                        score=score,
                        similarity=similarity / 100,
                        spoken_word_indices=tuple(range(word_index, word_index + size)),
                        next_word_index=next_index if next_index < self.script.word_count else None,
                        matched_text=window_text,
                    )
        return best
