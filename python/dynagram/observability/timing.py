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
"""Grammar timing diagnostics owned by a sampling session.

Each constrained step records the automaton's stack depth and the time
elapsed since the previous constrained step. Records can also be appended to
a "depth,elapsed_ns" text file.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GrammarTiming:
    stack_depth: int
    elapsed_ns: int


@dataclass
class GrammarTimingContext:
    """Step timing for one session; reset together with the session.

    Attributes:
        path: Optional file receiving one "depth,elapsed_ns" line per step
        clock: Monotonic nanosecond clock
        records: Recorded steps, oldest first
    """

    path: Optional[Union[str, Path]] = None
    clock: Callable[[], int] = time.perf_counter_ns
    records: List[GrammarTiming] = field(default_factory=list)
    _previous_ns: Optional[int] = None

    def record(self, stack_depth: int) -> GrammarTiming:
        now = self.clock()
        elapsed = 0 if self._previous_ns is None else now - self._previous_ns
        self._previous_ns = now

        timing = GrammarTiming(stack_depth=stack_depth, elapsed_ns=elapsed)
        self.records.append(timing)
        if self.path is not None:
            self._write(timing)
        return timing

    def _write(self, timing: GrammarTiming) -> None:
        try:
            with Path(self.path).open("a", encoding="utf-8") as f:
                f.write(f"{timing.stack_depth},{timing.elapsed_ns}\n")
        except OSError as e:
            logger.error(f"Unable to write grammar timing log {self.path}: {e}")

    def reset(self) -> None:
        self.records = []
        self._previous_ns = None

    def copy(self) -> GrammarTimingContext:
        return GrammarTimingContext(
            path=self.path,
            clock=self.clock,
            records=list(self.records),
            _previous_ns=self._previous_ns,
        )
