# Copyright Rand Arete @ Ananke 2025
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================
"""Unit tests for the stopping heuristics."""

import pytest

from dynagram.core.params import StopConfig
from dynagram.stopping.heuristics import (
    StoppingHeuristic,
    StopReason,
    ends_with_marker,
    ends_with_repeated_substring,
    is_whitespace_runaway,
)


class TestRepeatedSubstring:
    """Tests for ends_with_repeated_substring."""

    def test_five_repeats(self):
        assert ends_with_repeated_substring("abcabcabcabcabc", 30, 5) is True

    def test_three_repeats(self):
        assert ends_with_repeated_substring("abcabcabc", 30, 5) is False

    def test_prefix_does_not_matter(self):
        assert ends_with_repeated_substring("def main():\n" + "xy" * 5, 30, 5) is True

    def test_substring_longer_than_max(self):
        unit = "abcdefgh"
        assert ends_with_repeated_substring(unit * 5, 7, 5) is False
        assert ends_with_repeated_substring(unit * 5, 8, 5) is True

    def test_blank_substrings_skipped(self):
        """Short blank runs are not repetition."""
        assert ends_with_repeated_substring("x" + " " * 10, 30, 5) is False

    def test_whitespace_runaway_included(self):
        assert ends_with_repeated_substring(" " * 40, 30, 5) is True
        assert ends_with_repeated_substring(" " * 39, 30, 5) is False

    def test_empty_text(self):
        assert ends_with_repeated_substring("", 30, 5) is False


class TestWhitespaceRunaway:
    """Tests for is_whitespace_runaway."""

    def test_spaces_and_tabs(self):
        assert is_whitespace_runaway("code" + " \t" * 20) is True

    def test_newline_breaks_run(self):
        assert is_whitespace_runaway(" " * 39 + "\n") is False

    def test_short_text(self):
        assert is_whitespace_runaway(" " * 10) is False


class TestMarker:
    """Tests for ends_with_marker."""

    def test_marker_suffix(self):
        assert ends_with_marker("let x = 1 in\n\n", "in\n\n") is True

    def test_marker_absent(self):
        assert ends_with_marker("in\n", "in\n\n") is False

    def test_disabled_marker(self):
        assert ends_with_marker("in\n\n", None) is False


class TestStoppingHeuristic:
    """Rule ordering and configuration."""

    def test_no_stop(self):
        assert StoppingHeuristic().evaluate("let x = 1", "= 1") is None

    def test_marker_first(self):
        reason = StoppingHeuristic().evaluate(" " * 40, "in\n\n")
        assert reason == StopReason.STOP_MARKER

    def test_whitespace_before_repetition(self):
        reason = StoppingHeuristic().evaluate("x" + " " * 40, "   ")
        assert reason == StopReason.WHITESPACE_RUNAWAY

    def test_repetition(self):
        reason = StoppingHeuristic().evaluate("ab" * 5, "bab")
        assert reason == StopReason.REPEATED_SUBSTRING

    def test_custom_marker(self):
        heuristic = StoppingHeuristic(StopConfig(stop_marker="<END>"))
        assert heuristic.evaluate("text", "x<END>") == StopReason.STOP_MARKER
        assert heuristic.evaluate("text", "in\n\n") is None

    @pytest.mark.parametrize("reason", list(StopReason))
    def test_reason_values_are_strings(self, reason):
        assert isinstance(reason.value, str)
