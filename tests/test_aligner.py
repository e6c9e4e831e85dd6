# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for the two-stage alignment engine.
"""

import pytest

from voicecue.aligner import (
    NO_POSITION,
    AlignmentEngine,
    AlignmentSettings,
    MatchResult,
    window_sizes,
)
from voicecue.script_parser import parse_script

PANGRAM = "the quick brown fox jumps over the lazy dog"


def make_engine(text: str, **settings) -> AlignmentEngine:
    return AlignmentEngine(parse_script(text), AlignmentSettings(**settings))


def far_script() -> str:
    """A script whose last sentence starts 33 words in."""
    filler = " ".join(f"filler{i}" for i in range(30))
    return f"Alpha beta gamma. {filler}. Delta epsilon zeta."


class TestFindBestMatch:
    """Tests for locating a fragment in the script."""

    def test_exact_echo(self) -> None:
        engine = make_engine("the quick brown fox")
        match = engine.find_best_match("the quick brown fox")

        assert match is not None
        assert match.index == 0
        assert match.spoken_word_indices == (0, 1, 2, 3)
        assert match.next_word_index is None
        assert match.similarity == 1.0

    def test_noisy_continuation_prefers_forward_position(self) -> None:
        """The repeated "the" earlier in the script must not win."""
        engine = make_engine(PANGRAM)
        match = engine.find_best_match("jumps over the lazy dog", current_position=3)

        assert match is not None
        assert match.index == 4
        assert match.end_index == 8

    def test_next_word_index(self) -> None:
        engine = make_engine(PANGRAM)
        match = engine.find_best_match("the quick")

        assert match is not None
        assert match.index == 0
        assert match.spoken_word_indices == (0, 1)
        assert match.next_word_index == 2
        assert match.matched_text == "the quick"

    def test_punctuation_in_fragment_ignored(self) -> None:
        engine = make_engine("Hello, world! How are you today?")
        match = engine.find_best_match("how are YOU")

        assert match is not None
        assert match.index == 2

    def test_search_range_restricts_match(self) -> None:
        engine = make_engine("The cat sat. The cat sat.")
        match = engine.find_best_match("the cat", search_range=(3, 6))

        assert match is not None
        assert match.index == 3

    def test_search_range_inside_long_sentence(self) -> None:
        """Only the in-range part of a long sentence is ranked."""
        engine = make_engine(" ".join([PANGRAM] * 100))
        match = engine.find_best_match(
            "lazy", current_position=800, search_range=(801, 809))

        assert match is not None
        assert match.index == 808

    def test_sentence_cutoff_override(self) -> None:
        """A word scoring 58 is below the default sentence cutoff of 60."""
        engine = make_engine("abcdef")
        assert engine.find_best_match("axyzwv", score_cutoff=50) is None

        match = engine.find_best_match("axyzwv", score_cutoff=50, sentence_cutoff=50)
        assert match is not None
        assert match.index == 0
        assert match.similarity == pytest.approx(0.58)

    def test_no_match_below_cutoff(self) -> None:
        engine = make_engine(PANGRAM)
        assert engine.find_best_match("xylophone zebra quartz") is None

    def test_score_includes_bias(self) -> None:
        engine = make_engine(PANGRAM)
        match = engine.find_best_match("jumps", current_position=3)

        assert match is not None
        assert match.index == 4
        assert match.score == pytest.approx(1.0 + 0.1 + 0.09)
        assert match.similarity == 1.0


class TestDegenerateInput:
    """Degenerate input returns no match instead of raising."""

    @pytest.mark.parametrize("transcript", ["", "   ", "!!! ...", None])
    def test_empty_transcript(self, transcript) -> None:
        engine = make_engine(PANGRAM)
        assert engine.find_best_match(transcript) is None

    def test_empty_script(self) -> None:
        engine = make_engine("")
        assert engine.find_best_match("hello") is None

    def test_empty_search_range(self) -> None:
        engine = make_engine(PANGRAM)
        assert engine.find_best_match("dog", search_range=(9, 9)) is None


class TestJumpGuard:
    """Tests for rejecting large, uncertain jumps."""

    def test_confident_far_jump_accepted(self) -> None:
        engine = make_engine(far_script())
        match = engine.find_best_match("delta epsilon zeta", current_position=0)

        assert match is not None
        assert match.index == 33

    def test_uncertain_far_jump_rejected(self) -> None:
        """A jump past max_jump needs the high-confidence score."""
        engine = make_engine(far_script(), high_confidence=2.0)
        assert engine.find_best_match("delta epsilon zeta", current_position=0) is None

    def test_jump_within_limit_accepted(self) -> None:
        engine = make_engine(far_script(), high_confidence=2.0, max_jump=40)
        match = engine.find_best_match("delta epsilon zeta", current_position=0)

        assert match is not None
        assert match.index == 33

    def test_no_guard_without_prior_position(self) -> None:
        engine = make_engine(far_script(), high_confidence=2.0)
        match = engine.find_best_match("delta epsilon zeta", current_position=NO_POSITION)

        assert match is not None
        assert match.index == 33


class TestBias:
    """Tests for positional bonuses."""

    def test_no_bias_without_position(self) -> None:
        engine = make_engine(PANGRAM)
        assert engine.bias(5, NO_POSITION) == 0.0

    def test_forward_and_proximity(self) -> None:
        engine = make_engine(PANGRAM)
        assert engine.bias(5, 3) == pytest.approx(0.1 + 0.08)

    def test_backward_has_no_forward_bonus(self) -> None:
        engine = make_engine(PANGRAM)
        assert engine.bias(2, 3) == pytest.approx(0.09)

    def test_proximity_never_negative(self) -> None:
        engine = make_engine(PANGRAM)
        assert engine.bias(0, 50) == 0.0


class TestSettingsAndHelpers:
    """Tests for configuration validation and helpers."""

    def test_window_sizes(self) -> None:
        assert window_sizes(1) == [1, 1, 2, 3]
        assert window_sizes(4) == [4, 3, 5, 6]

    @pytest.mark.parametrize("kwargs", [
        {"top_sentences": 0},
        {"sentence_cutoff": 101},
        {"window_cutoff": -1},
        {"forward_bonus": -0.1},
        {"max_jump": -1},
        {"high_confidence": 0},
    ])
    def test_invalid_settings_raise(self, kwargs) -> None:
        with pytest.raises(ValueError):
            AlignmentSettings(**kwargs)

    def test_word_accessors(self) -> None:
        engine = make_engine("one two three")

        assert engine.word_count == 3
        assert engine.words == ["one", "two", "three"]
        assert engine.get_word_at(1) == "two"
        assert engine.get_word_at(3) is None

    def test_match_result_end_index(self) -> None:
        match = MatchResult(index=2, score=1.0, similarity=1.0,
                            spoken_word_indices=(2, 3, 4), next_word_index=5,
                            matched_text="a b c")
        assert match.end_index == 4
