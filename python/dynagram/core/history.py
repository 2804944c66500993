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
"""Token history for a sampling session.

HistoryStore keeps two views of the accepted tokens:

1. prev: a fixed-capacity FIFO window of the n_prev most recent tokens,
   pre-filled with a sentinel so it is never empty and never changes length
2. prev_all: the unbounded transcript of every accepted token

The prelude length marks how many leading transcript tokens belong to a
non-content prefix (system prompt, context). Content-only views skip them.
"""

from __future__ import annotations

from typing import List

from .interfaces import TokenCodec

SENTINEL_TOKEN = 0


class HistoryStore:
    """Recent-token window plus full transcript.

    Thread Safety:
        Not thread-safe. Branches must work on copies.
    """

    def __init__(self, n_prev: int):
        if n_prev < 1:
            raise ValueError(f"n_prev must be >= 1, got {n_prev}")
        self._capacity = n_prev
        self.prev: List[int] = [SENTINEL_TOKEN] * n_prev
        self.prev_all: List[int] = []
        self.prelude_len = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, token: int) -> None:
        """Record an accepted token, evicting the oldest window entry."""
        self.prev_all.append(token)
        del self.prev[0]
        self.prev.append(token)

    def last(self) -> int:
        """Most recent window entry (the sentinel before any append)."""
        return self.prev[-1]

    def window(self, n: int) -> List[int]:
        """The n most recent window entries, oldest first."""
        n = max(0, min(n, self._capacity))
        return self.prev[self._capacity - n :] if n else []

    def set_prelude_length(self, n: int) -> None:
        if n < 0:
            raise ValueError(f"prelude length must be >= 0, got {n}")
        self.prelude_len = n

    def render_range(self, codec: TokenCodec, start_skip: int, end_skip: int) -> str:
        """Decode the transcript without its first start_skip and last end_skip tokens."""
        end = len(self.prev_all) - max(0, end_skip)
        start = max(0, start_skip)
        if end <= start:
            return ""
        return "".join(codec.token_to_piece(t) for t in self.prev_all[start:end])

    def render_content(self, codec: TokenCodec, end_skip: int = 0) -> str:
        """Transcript text with the prelude excluded."""
        return self.render_range(codec, self.prelude_len, end_skip)

    def recent_text(self, codec: TokenCodec, n: int) -> str:
        """Text of the last n window entries."""
        return "".join(codec.token_to_piece(t) for t in self.window(n))

    def tail_text(self, codec: TokenCodec, n: int) -> str:
        """Text of the last n transcript tokens (fewer if the transcript is short)."""
        if n <= 0 or not self.prev_all:
            return ""
        return "".join(codec.token_to_piece(t) for t in self.prev_all[-n:])

    def reset(self) -> None:
        self.prev = [SENTINEL_TOKEN] * self._capacity
        self.prev_all = []
        self.prelude_len = 0

    def copy(self) -> HistoryStore:
        clone = HistoryStore(self._capacity)
        clone.prev = list(self.prev)
        clone.prev_all = list(self.prev_all)
        clone.prelude_len = self.prelude_len
        return clone

    def __len__(self) -> int:
        return len(self.prev_all)
