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
"""Heuristics that detect degenerate or finished output from raw text.

Three rules are checked once per sampling call:

1. Stop marker: the text of the last few decoded tokens ends with a
   configured marker
2. Whitespace runaway: the transcript ends in a long run of spaces/tabs
3. Repeated substring: the transcript ends with a short substring repeated
   many times in a row

A triggered rule yields a StopReason; the session turns it into a
StopRequested outcome instead of aborting the process.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from ..core.params import StopConfig

_BLANK = frozenset(" \t")


class StopReason(Enum):
    """Why a stopping heuristic fired."""

    STOP_MARKER = "stop_marker"
    WHITESPACE_RUNAWAY = "whitespace_runaway"
    REPEATED_SUBSTRING = "repeated_substring"


def _is_blank(s: str) -> bool:
    return all(c in _BLANK for c in s)


def is_whitespace_runaway(text: str, run_length: int = 40) -> bool:
    """True if the last run_length characters are all spaces or tabs."""
    if len(text) < run_length:
        return False
    return _is_blank(text[len(text) - run_length :])


def _ends_with_repetition(text: str, max_length: int, min_repetitions: int) -> bool:
    n = len(text)
    for length in range(1, max_length + 1):
        if n < min_repetitions * length:
            continue

        last_sub = text[n - length :]
        # Blank runs are covered by the whitespace rule
        if _is_blank(last_sub):
            continue

        is_repeating = True
        for rep in range(1, min_repetitions):
            start = n - (rep + 1) * length
            if text[start : start + length] != last_sub:
                is_repeating = False
                break

        if is_repeating:
            return True
    return False


def ends_with_repeated_substring(
    text: str,
    max_length: int = 30,
    min_repetitions: int = 5,
    whitespace_run_length: int = 40,
) -> bool:
    """Check whether text ends with a looping pattern.

    Also reports a trailing whitespace runaway, so a transcript ending in
    whitespace_run_length spaces counts as repeated.

    Args:
        text: Transcript text to inspect
        max_length: Longest substring length to try
        min_repetitions: Consecutive exact repeats required
        whitespace_run_length: Trailing blank run that counts on its own

    Returns:
        True if either rule matches

    Example:
        >>> ends_with_repeated_substring("abcabcabcabcabc", 30, 5)
        True
        >>> ends_with_repeated_substring("abcabcabc", 30, 5)
        False
    """
    if is_whitespace_runaway(text, whitespace_run_length):
        return True
    return _ends_with_repetition(text, max_length, min_repetitions)


def ends_with_marker(recent_text: str, marker: Optional[str]) -> bool:
    if not marker:
        return False
    return recent_text.endswith(marker)


class StoppingHeuristic:
    """Evaluates all stop rules for one sampling call.

    Attributes:
        config: Thresholds and marker
    """

    def __init__(self, config: Optional[StopConfig] = None):
        self.config = config or StopConfig()

    def evaluate(self, transcript: str, recent_text: str) -> Optional[StopReason]:
        """Return the first triggered rule, or None.

        Args:
            transcript: Content-only transcript text
            recent_text: Concatenated text of the last marker_window tokens
        """
        cfg = self.config
        if ends_with_marker(recent_text, cfg.stop_marker):
            return StopReason.STOP_MARKER
        if is_whitespace_runaway(transcript, cfg.whitespace_run_length):
            return StopReason.WHITESPACE_RUNAWAY
        if _ends_with_repetition(transcript, cfg.max_repeat_length, cfg.min_repetitions):
            return StopReason.REPEATED_SUBSTRING
        return None
