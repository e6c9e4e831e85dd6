# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for batch matching and deduplication.
"""

import logging

import pytest

from voicecue import fuzz, process


class TestExtractBests:
    """Tests for ranking choices against a query."""

    def test_ranks_close_spellings_first(self) -> None:
        results = process.extract_bests("apple", ["aple", "banana", "appl"], limit=2)

        assert len(results) == 2
        assert {r[0] for r in results} == {"aple", "appl"}
        assert results[0][1] >= results[1][1]

    def test_scores_descend(self) -> None:
        results = process.extract_bests("apple", ["banana", "aple", "apple", "appl"])
        scores = [r[1] for r in results]

        assert scores == sorted(scores, reverse=True)
        assert results[0] == ("apple", 100)

    def test_ties_keep_input_order(self) -> None:
        results = process.extract_bests("apple", ["appl", "aple"], limit=None)
        assert [r[0] for r in results] == ["appl", "aple"]

    def test_mapping_returns_keys(self) -> None:
        choices = {"first": "the fox", "second": "a cat"}
        results = process.extract_bests("fox", choices, limit=1)

        assert len(results) == 1
        choice, score, key = results[0]
        assert choice == "the fox"
        assert key == "first"
        assert score > 50

    def test_score_cutoff_filters(self) -> None:
        results = process.extract_bests("apple", ["aple", "zzzz"], score_cutoff=50)
        assert [r[0] for r in results] == ["aple"]

    def test_none_choices_skipped(self) -> None:
        results = process.extract_bests("apple", [None, "apple"])
        assert results == [("apple", 100)]

    def test_empty_choices(self) -> None:
        assert process.extract_bests("apple", []) == []

    def test_empty_query_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="voicecue.process"):
            results = process.extract_bests("!!!", ["apple"])

        assert results == [("apple", 0)]
        assert "empty string" in caplog.text

    def test_limit_none_returns_everything(self) -> None:
        choices = [f"item {i}" for i in range(10)]
        assert len(process.extract_bests("item", choices, limit=None)) == 10

    def test_scorer_without_processing_option(self) -> None:
        results = process.extract_bests("apple", ["apple", "aple"], scorer=fuzz.ratio)
        assert results[0] == ("apple", 100)

    @pytest.mark.parametrize("cutoff", [-1, 101])
    def test_invalid_cutoff_raises(self, cutoff: float) -> None:
        with pytest.raises(ValueError):
            process.extract_bests("apple", ["aple"], score_cutoff=cutoff)

    def test_invalid_limit_raises(self) -> None:
        with pytest.raises(ValueError):
            process.extract_bests("apple", ["aple"], limit=0)


class TestExtractOne:
    """Tests for single best match lookup."""

    def test_best_match(self) -> None:
        assert process.extract_one("apple", ["banana", "aple"]) == ("aple", 89)

    def test_none_below_cutoff(self) -> None:
        assert process.extract_one("xyz", ["abc"], score_cutoff=50) is None

    def test_extract_alias(self) -> None:
        assert process.extract("apple", ["aple"]) == process.extract_bests("apple", ["aple"])


class TestDedupe:
    """Tests for fuzzy duplicate removal."""

    def test_merges_duplicates_keeping_longest(self) -> None:
        result = process.dedupe(["apple pie", "apple pie!", "banana"])
        assert result == ["apple pie!", "banana"]

    def test_idempotent(self) -> None:
        once = process.dedupe(["apple pie", "apple pie!", "banana", "Banana"])
        twice = process.dedupe(once)
        assert set(twice) == set(once)

    def test_no_duplicates_returns_input(self) -> None:
        items = ["apple", "banana", "cherry"]
        assert process.dedupe(items) is items

    def test_empty(self) -> None:
        assert process.dedupe([]) == []

    def test_invalid_threshold_raises(self) -> None:
        with pytest.raises(ValueError):
            process.dedupe(["a"], threshold=150)
