"""
Lexical similarity scoring.

All scorers return an integer from 0 (nothing in common) to 100 (identical
after normalization) and treat a missing input as a score of 0, so callers on
the live tracking path never need to guard against malformed speech output.
"""

import functools
import math
import re
from collections.abc import Callable
from typing import Any

from rapidfuzz.distance import Levenshtein

Scorer = Callable[..., int]

_NON_ASCII: re.Pattern[str] = re.compile(r'[^\x00-\x7f]')
_NON_ALNUM: re.Pattern[str] = re.compile(r'[^a-z0-9\s]')
_WHITESPACE: re.Pattern[str] = re.compile(r'\s+')

# Scale applied to token based scores in WRatio
TOKEN_SCALE: float = 0.95
# Scale applied to partial scores when the lengths differ a lot
PARTIAL_SCALE: float = 0.9
# Length ratio above which WRatio also tries partial matching
PARTIAL_LENGTH_RATIO: float = 1.5


def full_process(s: str | None, force_ascii: bool = False) -> str:
    """Normalize a string for comparison.

    Lowercases, optionally drops non-ASCII characters, replaces anything that
    is not a lowercase letter, digit or whitespace with a space and collapses
    runs of whitespace.

    Args:
        s: String to process. ``None`` is treated as empty.
        force_ascii: Remove non-ASCII characters before processing.

    Returns:
        The processed string ("" for empty or missing input).
    """
    if s is None:
        return ""
    text: str = str(s)
    if force_ascii:
        text = _NON_ASCII.sub("", text)
    text = _NON_ALNUM.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def levenshtein(s1: str, s2: str) -> int:
    """Unit cost edit distance between two strings."""
    if s1 == s2:
        return 0
    return Levenshtein.distance(s1, s2)


def _round(value: float) -> int:
    """Round half up (scores are never negative)."""
    return int(math.floor(value + 0.5))


def _handle_nulls(scorer: Callable[..., int]) -> Scorer:
    """Make a scorer total: missing inputs score 0 instead of raising."""
    @functools.wraps(scorer)
    def wrapper(s1: Any, s2: Any, **kwargs: Any) -> int:
        if s1 is None or s2 is None:
            return 0
        return scorer(str(s1), str(s2), **kwargs)
    return wrapper


def _process_pair(s1: str, s2: str, force_ascii: bool,
                  do_process: bool) -> tuple[str, str]:
    if not do_process:
        return s1, s2
    return (full_process(s1, force_ascii=force_ascii),
            full_process(s2, force_ascii=force_ascii))


def _sort_tokens(s: str) -> str:
    if not s:
        return ""
    return " ".join(sorted(t for t in s.split(" ") if t))


@_handle_nulls
def ratio(s1: str, s2: str) -> int:
    """Similarity from the edit distance relative to the combined length."""
    len1: int = len(s1)
    len2: int = len(s2)
    if len1 == 0 and len2 == 0:
        return 100
    if len1 == 0 or len2 == 0:
        return 0
    total: int = len1 + len2
    return _round((total - levenshtein(s1, s2)) / total * 100)


@_handle_nulls
def partial_ratio(s1: str, s2: str) -> int:
    """Best ratio of the shorter string against every same-length window
    of the longer one."""
    if not s1 or not s2:
        return 0
    shorter, longer = (s1, s2) if len(s1) < len(s2) else (s2, s1)

    best: int = 0
    width: int = len(shorter)
    for i in range(len(longer) - width + 1):
        score: int = ratio(shorter, longer[i:i + width])
        if score > best:
            best = score
            if best == 100:
                break
    return best


@_handle_nulls
def token_sort_ratio(s1: str, s2: str, force_ascii: bool = True,
                     full_process: bool = True) -> int:
    """Order insensitive ratio: tokens are sorted before comparing."""
    p1, p2 = _process_pair(s1, s2, force_ascii, full_process)
    return ratio(_sort_tokens(p1), _sort_tokens(p2))


@_handle_nulls
def partial_token_sort_ratio(s1: str, s2: str, force_ascii: bool = True,
                             full_process: bool = True) -> int:
    """partial_ratio over the sorted tokens of both strings."""
    p1, p2 = _process_pair(s1, s2, force_ascii, full_process)
    return partial_ratio(_sort_tokens(p1), _sort_tokens(p2))


@_handle_nulls
def token_set_ratio(s1: str, s2: str, force_ascii: bool = True,
                    full_process: bool = True, legacy_diff: bool = False) -> int:
    """
    Compare the shared tokens of two strings against each side's extras.

    Builds the sorted intersection, and the intersection followed by each
    side's sorted leftover tokens, then returns the best ratio among the
    three pairings. Strings with no token in common score 0.

    Args:
        s1: First string.
        s2: Second string.
        force_ascii: Drop non-ASCII characters while processing.
        full_process: Normalize both strings first.
        legacy_diff: Reproduce the older behaviour where the second side's
            leftover tokens were always empty.

    Returns:
        Score from 0 to 100.
    """
    p1, p2 = _process_pair(s1, s2, force_ascii, full_process)

    tokens1: set[str] = {t for t in p1.split(" ") if t}
    tokens2: set[str] = {t for t in p2.split(" ") if t}

    if not tokens1 and not tokens2:
        return 100
    if not tokens1 or not tokens2:
        return 0

    intersection: set[str] = tokens1 & tokens2
    if not intersection:
        return 0

    diff1: set[str] = tokens1 - tokens2
    diff2: set[str] = set() if legacy_diff else tokens2 - tokens1

    sorted_sect: str = " ".join(sorted(intersection))
    combined1: str = f"{sorted_sect} {' '.join(sorted(diff1))}".strip()
    combined2: str = f"{sorted_sect} {' '.join(sorted(diff2))}".strip()

    return max(
        ratio(sorted_sect, combined1),
        ratio(sorted_sect, combined2),
        ratio(combined1, combined2),
    )


# Token sets have no notion of position, so the partial variant is the same
partial_token_set_ratio = token_set_ratio


@_handle_nulls
def QRatio(s1: str, s2: str, force_ascii: bool = True,  # pylint: disable=invalid-name
           full_process: bool = True) -> int:
    """Quick ratio: ratio of the processed strings."""
    p1, p2 = _process_pair(s1, s2, force_ascii, full_process)
    return ratio(p1, p2)


@_handle_nulls
def WRatio(s1: str, s2: str, force_ascii: bool = True,  # pylint: disable=invalid-name
           full_process: bool = True) -> int:
    """
    Weighted composite of the other scorers, the general purpose default.

    Always considers the plain, token sort and token set ratios. When one
    string is more than 1.5 times longer than the other, the partial
    variants are tried as well, scaled down since a partial match between
    very different lengths is less reliable.
    """
    p1, p2 = _process_pair(s1, s2, force_ascii, full_process)
    if not p1 or not p2:
        return 0

    len_ratio: float = max(len(p1), len(p2)) / min(len(p1), len(p2))

    scores: list[float] = [
        ratio(p1, p2),
        token_sort_ratio(p1, p2, full_process=False) * TOKEN_SCALE,
        token_set_ratio(p1, p2, full_process=False) * TOKEN_SCALE,
    ]

    if len_ratio > PARTIAL_LENGTH_RATIO:
        scores.append(partial_ratio(p1, p2) * PARTIAL_SCALE)
        scores.append(partial_token_sort_ratio(p1, p2, full_process=False)
                      * TOKEN_SCALE * PARTIAL_SCALE)
        scores.append(partial_token_set_ratio(p1, p2, full_process=False)
                      * TOKEN_SCALE * PARTIAL_SCALE)

    return _round(max(scores))


def UWRatio(s1: str | None, s2: str | None,  # pylint: disable=invalid-name
            full_process: bool = True) -> int:
    """WRatio without ASCII folding."""
    return WRatio(s1, s2, force_ascii=False, full_process=full_process)


def UQRatio(s1: str | None, s2: str | None,  # pylint: disable=invalid-name
            full_process: bool = True) -> int:
    """QRatio without ASCII folding."""
    return QRatio(s1, s2, force_ascii=False, full_process=full_process)
