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
"""Token selection strategies.

Selection depends on temperature and the mirostat setting:

    temp < 0            softmax, then the most probable candidate
    temp == 0           arg-max of the raw scores
    temp > 0, mirostat  temperature, then the mirostat v1/v2 controller
    temp > 0            ordered truncation queue, then a weighted draw

Mirostat keeps a running target-surprisal value mu that lives in the session
(MirostatState) so it can be copied and reset along with the rest of it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict

from ..core.candidates import TokenCandidates
from ..core.params import SAMPLER_NAMES, SamplingParams
from .ops import SamplingOps

logger = logging.getLogger(__name__)


class SelectionMode(Enum):
    """How a token is chosen for the current parameters."""

    GREEDY_WITH_PROBS = auto()
    GREEDY = auto()
    MIROSTAT = auto()
    MIROSTAT_V2 = auto()
    SAMPLER_QUEUE = auto()


@dataclass
class MirostatState:
    """Feedback controller state for mirostat.

    Attributes:
        mu: Current maximum-surprisal estimate (starts at 2 * tau)
    """

    mu: float

    @classmethod
    def initial(cls, tau: float) -> MirostatState:
        return cls(mu=2.0 * tau)

    def copy(self) -> MirostatState:
        return MirostatState(mu=self.mu)


def selection_mode(params: SamplingParams) -> SelectionMode:
    if params.temp < 0.0:
        return SelectionMode.GREEDY_WITH_PROBS
    if params.temp == 0.0:
        return SelectionMode.GREEDY
    if params.mirostat == 1:
        return SelectionMode.MIROSTAT
    if params.mirostat == 2:
        return SelectionMode.MIROSTAT_V2
    return SelectionMode.SAMPLER_QUEUE


def run_sampler_queue(
    candidates: TokenCandidates,
    params: SamplingParams,
    n_vocab: int,
    ops: SamplingOps,
    min_keep: int,
) -> None:
    """Apply the truncation filters named by params.samplers_sequence, in order.

    Unknown selector characters are skipped.
    """
    top_k = n_vocab if params.top_k <= 0 else params.top_k

    steps: Dict[str, Callable[[], None]] = {
        "k": lambda: ops.top_k(candidates, top_k, min_keep),
        "f": lambda: ops.tail_free(candidates, params.tfs_z, min_keep),
        "y": lambda: ops.typical(candidates, params.typical_p, min_keep),
        "p": lambda: ops.top_p(candidates, params.top_p, min_keep),
        "m": lambda: ops.min_p(candidates, params.min_p, min_keep),
        "t": lambda: ops.temperature(candidates, params.temp),
    }

    for s in params.samplers_sequence:
        step = steps.get(s)
        if step is None:
            continue
        step()
        logger.debug(f"{SAMPLER_NAMES[s]}: {len(candidates)} candidates remain")


class SelectionStrategy:
    """Chooses one token from the final candidate array.

    Attributes:
        params: Sampling parameters
        ops: Numeric primitives
    """

    def __init__(self, params: SamplingParams, ops: SamplingOps):
        self.params = params
        self.ops = ops
        self.mode = selection_mode(params)

    def select(
        self,
        candidates: TokenCandidates,
        mirostat: MirostatState,
        n_vocab: int,
    ) -> int:
        """Pick a token, updating mirostat.mu when a mirostat mode is active."""
        params = self.params

        if self.mode == SelectionMode.GREEDY_WITH_PROBS:
            self.ops.softmax(candidates)
            return int(candidates.ids[0])

        if self.mode == SelectionMode.GREEDY:
            return self.ops.greedy(candidates)

        if self.mode == SelectionMode.MIROSTAT:
            self.ops.temperature(candidates, params.temp)
            token, mirostat.mu = self.ops.mirostat(
                candidates,
                params.mirostat_tau,
                params.mirostat_eta,
                params.mirostat_m,
                mirostat.mu,
                n_vocab,
            )
            return token

        if self.mode == SelectionMode.MIROSTAT_V2:
            self.ops.temperature(candidates, params.temp)
            token, mirostat.mu = self.ops.mirostat_v2(
                candidates,
                params.mirostat_tau,
                params.mirostat_eta,
                mirostat.mu,
            )
            return token

        run_sampler_queue(candidates, params, n_vocab, self.ops, params.min_keep)
        token = self.ops.sample(candidates)
        logger.debug(f"sampled token: {token}")
        return token
