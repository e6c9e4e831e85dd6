"""
Batch matching: rank a collection of candidate strings against a query and
cluster near-duplicate strings.
"""

import functools
import inspect
import logging
from collections.abc import Callable, Hashable, Mapping, Sequence
from typing import Union

from . import fuzz
from .fuzz import Scorer, full_process

logger = logging.getLogger(__name__)

Processor = Callable[[str], str]
Choices = Union[Sequence[str | None], Mapping[Hashable, str | None]]
# (choice, score) for sequences, (choice, score, key) for mappings
Result = Union[tuple[str, int], tuple[str, int, Hashable]]


def _check_score(name: str, value: float) -> None:
    if not 0 <= value <= 100:
        raise ValueError(f"{name} must be between 0 and 100, got {value}")


@functools.lru_cache(maxsize=64)
def _accepts_full_process(scorer: Scorer) -> bool:
    """Check whether a scorer takes the ``full_process`` option."""
    try:
        params = inspect.signature(scorer).parameters
    except (TypeError, ValueError):
        return False
    return "full_process" in params or any(
        p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values())


def extract_bests(
    query: str | None,
    choices: Choices,
    processor: Processor = full_process,
    scorer: Scorer = fuzz.WRatio,
    limit: int | None = 5,
    score_cutoff: float = 0
) -> list[Result]:
    """
    Find the best matches for a query in a collection of choices.

    The query is processed once; each choice is processed and scored with
    the scorer's own processing turned off. Results below ``score_cutoff``
    are dropped and the rest are sorted by descending score, keeping input
    order for equal scores.

    Args:
        query: String to match.
        choices: List of strings, or a mapping whose values are strings.
            ``None`` choices are skipped.
        processor: Normalization applied to the query and every choice.
        scorer: Scoring function returning 0-100.
        limit: Maximum number of results, or None for all of them.
        score_cutoff: Minimum score to keep (0-100).

    Returns:
        ``(choice, score)`` tuples, or ``(choice, score, key)`` for mappings.

    Raises:
        ValueError: If ``score_cutoff`` or ``limit`` is out of range.
    """
    _check_score("score_cutoff", score_cutoff)
    if limit is not None and limit < 1:
        raise ValueError(f"limit must be at least 1, got {limit}")

    processed_query: str = processor(query)
    if not processed_query:
        logger.warning(
            "Applied processor reduces input query to empty string, "
            "all comparisons will have score 0. [Query: '%s']", query)

    is_mapping: bool = isinstance(choices, Mapping)
    items = choices.items() if is_mapping else enumerate(choices)
    pass_option: bool = _accepts_full_process(scorer)

    results: list[Result] = []
    for key, choice in items:
        if choice is None:
            continue
        processed_choice: str = processor(str(choice))
        if pass_option:
            score: int = scorer(processed_query, processed_choice, full_process=False)
        else:
            score = scorer(processed_query, processed_choice)

        if score >= score_cutoff:
            results.append((choice, score, key) if is_mapping else (choice, score))

    # sort() is stable, so ties keep their input order
    results.sort(key=lambda r: r[1], reverse=True)
    return results if limit is None else results[:limit]


def extract(
    query: str | None,
    choices: Choices,
    processor: Processor = full_process,
    scorer: Scorer = fuzz.WRatio,
    limit: int | None = 5,
    score_cutoff: float = 0
) -> list[Result]:
    """Alias of extract_bests."""
    return extract_bests(query, choices, processor=processor, scorer=scorer,
                         limit=limit, score_cutoff=score_cutoff)


def extract_one(
    query: str | None,
    choices: Choices,
    processor: Processor = full_process,
    scorer: Scorer = fuzz.WRatio,
    score_cutoff: float = 0
) -> Result | None:
    """Return the single best match, or None if nothing reaches the cutoff."""
    results = extract_bests(query, choices, processor=processor, scorer=scorer,
                            limit=1, score_cutoff=score_cutoff)
    return results[0] if results else None


def dedupe(
    contains_dupes: list[str],
    threshold: float = 70,
    scorer: Scorer = fuzz.token_set_ratio
) -> list[str]:
    """
    Collapse fuzzy duplicates into one representative each.

    For every string not yet claimed by a cluster, all strings scoring at
    least ``threshold`` against it form its cluster. The longest member
    (lexicographically first on ties) represents the cluster.

    Args:
        contains_dupes: Strings that may contain near duplicates.
        threshold: Minimum score for two strings to be duplicates (0-100).
        scorer: Scoring function used for the comparison.

    Returns:
        Canonical strings in first-seen order. If nothing was merged the
        input list itself is returned.
    """
    _check_score("threshold", threshold)
    if not contains_dupes:
        return []

    canonical: dict[str, None] = {}
    processed: set[str] = set()

    for item in contains_dupes:
        if item in processed:
            continue

        matches = extract_bests(item, contains_dupes, scorer=scorer,
                                score_cutoff=threshold, limit=None)
        if not matches:
            continue

        members: list[str] = sorted((m[0] for m in matches),
                                    key=lambda s: (-len(s), s))
        processed.update(members)
        canonical.setdefault(members[0], None)

    deduped: list[str] = list(canonical)
    if len(deduped) == len(contains_dupes):
        return contains_dupes
    return deduped
