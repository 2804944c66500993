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
"""Score adjustments applied before constraints and selection.

Order within one sampling call:
    1. logit bias (raw scores)
    2. classifier-free guidance blend
    3. repetition / frequency / presence penalties over the recent window

None of these keep hidden state: identical inputs give identical outputs.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

import torch

from ..core.candidates import TokenCandidates
from ..core.params import SamplingParams
from .ops import SamplingOps

logger = logging.getLogger(__name__)


def apply_logit_bias(logits: torch.Tensor, logit_bias: Mapping[int, float]) -> torch.Tensor:
    """Return a copy of logits with per-token additive biases applied.

    Token ids outside the vocabulary are ignored with a debug record.
    """
    if not logit_bias:
        return logits
    biased = logits.clone()
    n_vocab = biased.numel()
    for token, bias in logit_bias.items():
        if 0 <= token < n_vocab:
            biased[token] += bias
        else:
            logger.debug(f"Ignoring logit bias for out-of-vocabulary token {token}")
    return biased


def apply_guidance(
    candidates: TokenCandidates,
    guidance_logits: Optional[torch.Tensor],
    scale: float,
    ops: SamplingOps,
) -> None:
    """Blend a guidance score vector into the candidates (no-op without one)."""
    if guidance_logits is None:
        return
    ops.classifier_free_guidance(candidates, guidance_logits, scale)


def apply_penalties(
    candidates: TokenCandidates,
    window: Sequence[int],
    params: SamplingParams,
    newline_token: Optional[int],
    ops: SamplingOps,
) -> None:
    """Run the combined penalty pass over tokens in the recent window.

    Args:
        candidates: Candidate array, modified in place
        window: Recent tokens, oldest first; only the last
            params.penalty_window entries are considered
        params: Penalty weights and the penalize_nl flag
        newline_token: Designated newline token, restored afterwards when
            params.penalize_nl is False
        ops: Numeric primitives
    """
    if not window:
        return

    n = params.penalty_window
    last_tokens = list(window[len(window) - n :]) if n > 0 else []

    nl_logit = None
    if not params.penalize_nl and newline_token is not None:
        nl_logit = candidates.logit_of(newline_token)

    ops.repetition_penalties(
        candidates,
        last_tokens,
        params.penalty_repeat,
        params.penalty_freq,
        params.penalty_present,
    )

    if nl_logit is not None:
        candidates.set_logit(newline_token, nl_logit)
