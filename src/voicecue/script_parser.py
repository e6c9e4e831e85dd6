"""
Script parsing module that indexes the reference script once per load.

Produces two views of the same text:
1. Words - whitespace separated tokens, kept as written for display, plus a
   normalized form (lowercase, punctuation stripped) used for matching
2. Sentences - text split on runs of sentence punctuation, each mapped to the
   range of words it covers so sentence-level hits can be translated back
   into word indices
"""

import bisect
import re
from dataclasses import dataclass

_WORD_SPLIT: re.Pattern[str] = re.compile(r'\S+')
_SENTENCE_SPLIT: re.Pattern[str] = re.compile(r'[^.!?]+')


def normalize_word(word: str) -> str:
    """Normalize a word for matching (lowercase, strip punctuation).

    This is used for comparing spoken words to script words.
    """
    return re.sub(r'[^\w\s]', '', word.lower()).strip()


def split_words(text: str) -> list[str]:
    """Split text into whitespace separated tokens, dropping empties."""
    return _WORD_SPLIT.findall(text)


@dataclass(frozen=True)
class ParsedScript:
    """Read-only index of a script.

    Invariants: ``sentence_word_offsets`` is non-decreasing, starts at 0 when
    there is at least one sentence, and every word belongs to exactly one
    sentence span.
    """
    raw_text: str
    words: tuple[str, ...]  # Tokens as written
    normalized_words: tuple[str, ...]  # Matching form of each token
    sentences: tuple[str, ...]  # Trimmed, non-empty sentences
    sentence_word_offsets: tuple[int, ...]  # First word index of each sentence

    @property
    def word_count(self) -> int:
        """Return the total number of words in the script."""
        return len(self.words)

    def get_word(self, index: int) -> str | None:
        """Get the word at an index, or None if out of range."""
        if 0 <= index < len(self.words):
            return self.words[index]
        return None

    def sentence_span(self, sentence_index: int) -> tuple[int, int]:
        """Word range ``[start, end)`` covered by a sentence."""
        start: int = self.sentence_word_offsets[sentence_index]
        if sentence_index + 1 < len(self.sentence_word_offsets):
            end: int = self.sentence_word_offsets[sentence_index + 1]
        else:
            end = len(self.words)
        return start, max(start, end)

    def sentence_for_word(self, word_index: int) -> int | None:
        """Index of the sentence containing a word, or None."""
        if not self.sentences or not 0 <= word_index < len(self.words):
            return None
        return bisect.bisect_right(self.sentence_word_offsets, word_index) - 1


def parse_script(script_text: str) -> ParsedScript:
    """
    Index a script into words and sentences.

    Each sentence's word offset is the index of the token holding its first
    character. Tokens that hold no sentence text (e.g. a lone "...") are
    folded into the sentence before them, and the first sentence always
    starts at word 0.

    Args:
        script_text: Full plain text of the script.

    Returns:
        ParsedScript with words, normalized words, sentences and offsets.
    """
    text: str = script_text or ""
    token_matches = list(_WORD_SPLIT.finditer(text))
    words: tuple[str, ...] = tuple(m.group() for m in token_matches)
    token_starts: list[int] = [m.start() for m in token_matches]

    sentences: list[str] = []
    offsets: list[int] = []
    for segment in _SENTENCE_SPLIT.finditer(text):
        sentence: str = segment.group().strip()
        if not sentence:
            continue
        first_char: int = segment.start() + (
            len(segment.group()) - len(segment.group().lstrip()))
        token_index: int = max(0, bisect.bisect_right(token_starts, first_char) - 1)
        if not offsets:
            token_index = 0
        elif token_index < offsets[-1]:
            token_index = offsets[-1]
        sentences.append(sentence)
        offsets.append(token_index)

    return ParsedScript(
        raw_text=text,
        words=words,
        normalized_words=tuple(normalize_word(w) for w in words),
        sentences=tuple(sentences),
        sentence_word_offsets=tuple(offsets),
    )
