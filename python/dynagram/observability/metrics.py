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
"""Per-session sampling metrics.

Tracks how restrictive grammar masks are (popcount), how long grammar
regeneration takes, and how often steps degrade or stop early.
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class MaskMetrics:
    """Distribution of allowed-token counts across mask applications.

    Attributes:
        popcounts: Allowed-token count per application
        vocab_size: Vocabulary size for selectivity
    """

    popcounts: List[int] = field(default_factory=list)
    vocab_size: int = 0

    def record(self, popcount: int) -> None:
        self.popcounts.append(popcount)

    @property
    def count(self) -> int:
        return len(self.popcounts)

    @property
    def mean(self) -> float:
        return statistics.mean(self.popcounts) if self.popcounts else 0.0

    @property
    def min(self) -> int:
        return min(self.popcounts) if self.popcounts else 0

    @property
    def max(self) -> int:
        return max(self.popcounts) if self.popcounts else 0

    @property
    def mean_selectivity(self) -> float:
        """Mean fraction of the vocabulary blocked."""
        if not self.popcounts or self.vocab_size == 0:
            return 0.0
        return 1.0 - (self.mean / self.vocab_size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "mean": round(self.mean, 2),
            "min": self.min,
            "max": self.max,
            "mean_selectivity": round(self.mean_selectivity, 4),
        }


@dataclass
class LatencyMetrics:
    """Latency observations in milliseconds."""

    name: str
    latencies_ms: List[float] = field(default_factory=list)

    def record(self, latency_ms: float) -> None:
        self.latencies_ms.append(latency_ms)

    @property
    def count(self) -> int:
        return len(self.latencies_ms)

    @property
    def mean_ms(self) -> float:
        return statistics.mean(self.latencies_ms) if self.latencies_ms else 0.0

    @property
    def max_ms(self) -> float:
        return max(self.latencies_ms) if self.latencies_ms else 0.0

    def percentile(self, p: float) -> float:
        """Interpolated percentile (0-100)."""
        if not self.latencies_ms:
            return 0.0
        sorted_vals = sorted(self.latencies_ms)
        k = (len(sorted_vals) - 1) * (p / 100.0)
        f = int(k)
        c = f + 1 if f + 1 < len(sorted_vals) else f
        return sorted_vals[f] + (sorted_vals[c] - sorted_vals[f]) * (k - f)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "count": self.count,
            "mean_ms": round(self.mean_ms, 3),
            "p50_ms": round(self.percentile(50), 3),
            "p99_ms": round(self.percentile(99), 3),
            "max_ms": round(self.max_ms, 3),
        }


@dataclass
class SessionMetrics:
    """Counters and distributions for one sampling session.

    Attributes:
        steps: Sampling calls that returned a token
        stops: Stop outcomes keyed by reason value
        regenerations: Successful dynamic grammar compiles
        degraded_steps: Steps run without a usable grammar
        masks: Popcount distribution of grammar masks
        synthesis: Synthesizer call latency
    """

    steps: int = 0
    stops: Dict[str, int] = field(default_factory=dict)
    regenerations: int = 0
    degraded_steps: int = 0
    masks: MaskMetrics = field(default_factory=MaskMetrics)
    synthesis: LatencyMetrics = field(default_factory=lambda: LatencyMetrics("synthesis"))

    def record_stop(self, reason: str) -> None:
        self.stops[reason] = self.stops.get(reason, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": self.steps,
            "stops": dict(self.stops),
            "regenerations": self.regenerations,
            "degraded_steps": self.degraded_steps,
            "masks": self.masks.to_dict(),
            "synthesis": self.synthesis.to_dict(),
        }
