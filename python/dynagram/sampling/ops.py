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
"""Numeric sampling primitives.

SamplingOps is the interface the pipeline uses for every piece of distribution
math: softmax, truncation filters, temperature, penalties, guidance, and the
final pick. TorchSamplingOps is the reference implementation on torch tensors.

All filters operate in place on a TokenCandidates array and honour a
min_keep floor. Filters that need probabilities sort the array by score and
compute them first.

References:
    - Holtzman et al., "The Curious Case of Neural Text Degeneration" (top-p)
    - Meister et al., "Locally Typical Sampling" (typical-p)
    - Basu et al., "Mirostat: A Neural Text Decoding Algorithm" (mirostat)
    - Sanchez et al., "Stay on topic with Classifier-Free Guidance" (CFG)
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Optional, Protocol, Sequence, Tuple, runtime_checkable

import torch

from ..core.candidates import TokenCandidates


@runtime_checkable
class SamplingOps(Protocol):
    def softmax(self, candidates: TokenCandidates) -> None: ...

    def top_k(self, candidates: TokenCandidates, k: int, min_keep: int) -> None: ...

    def top_p(self, candidates: TokenCandidates, p: float, min_keep: int) -> None: ...

    def min_p(self, candidates: TokenCandidates, p: float, min_keep: int) -> None: ...

    def tail_free(self, candidates: TokenCandidates, z: float, min_keep: int) -> None: ...

    def typical(self, candidates: TokenCandidates, p: float, min_keep: int) -> None: ...

    def temperature(self, candidates: TokenCandidates, temp: float) -> None: ...

    def repetition_penalties(
        self,
        candidates: TokenCandidates,
        last_tokens: Sequence[int],
        penalty_repeat: float,
        penalty_freq: float,
        penalty_present: float,
    ) -> None: ...

    def classifier_free_guidance(
        self,
        candidates: TokenCandidates,
        guidance_logits: torch.Tensor,
        scale: float,
    ) -> None: ...

    def greedy(self, candidates: TokenCandidates) -> int: ...

    def sample(self, candidates: TokenCandidates) -> int: ...

    def mirostat(
        self,
        candidates: TokenCandidates,
        tau: float,
        eta: float,
        m: int,
        mu: float,
        n_vocab: int,
    ) -> Tuple[int, float]: ...

    def mirostat_v2(
        self,
        candidates: TokenCandidates,
        tau: float,
        eta: float,
        mu: float,
    ) -> Tuple[int, float]: ...


def _sort_by_logit(candidates: TokenCandidates) -> None:
    if candidates.sorted:
        return
    _, order = torch.sort(candidates.logits, descending=True, stable=True)
    candidates.select(order)
    candidates.sorted = True


def _first_true(cond: torch.Tensor) -> Optional[int]:
    hits = cond.nonzero(as_tuple=True)[0]
    if hits.numel() == 0:
        return None
    return int(hits[0])


class TorchSamplingOps:
    """Reference SamplingOps on CPU or GPU tensors.

    The weighted draw uses a private torch.Generator so that two sessions
    seeded alike produce the same sequence, and a copied session continues
    from the same RNG state without sharing it.

    Attributes:
        seed: Seed the generator was created with (None for nondeterministic)
    """

    def __init__(self, seed: Optional[int] = None, device: str = "cpu"):
        self.seed = seed
        self.device = device
        self._generator = torch.Generator(device=device)
        if seed is None:
            self._generator.seed()
        else:
            self._generator.manual_seed(seed)

    def copy(self) -> TorchSamplingOps:
        clone = TorchSamplingOps(seed=self.seed, device=self.device)
        clone._generator.set_state(self._generator.get_state())
        return clone

    def reseed(self) -> None:
        """Return the generator to its initial state."""
        if self.seed is None:
            self._generator.seed()
        else:
            self._generator.manual_seed(self.seed)

    # -------------------------------------------------------------------------
    # Distribution
    # -------------------------------------------------------------------------

    def softmax(self, candidates: TokenCandidates) -> None:
        """Sort by descending score and compute probabilities."""
        _sort_by_logit(candidates)
        if len(candidates) == 0:
            candidates.probs = candidates.logits.clone()
            return
        candidates.probs = torch.softmax(candidates.logits, dim=0)

    def temperature(self, candidates: TokenCandidates, temp: float) -> None:
        candidates.logits = candidates.logits / temp
        candidates.probs = None

    # -------------------------------------------------------------------------
    # Truncation filters
    # -------------------------------------------------------------------------

    def top_k(self, candidates: TokenCandidates, k: int, min_keep: int) -> None:
        if k <= 0:
            k = len(candidates)
        k = max(k, min_keep)
        k = min(k, len(candidates))
        _sort_by_logit(candidates)
        candidates.truncate(k)

    def top_p(self, candidates: TokenCandidates, p: float, min_keep: int) -> None:
        if p >= 1.0:
            return
        self.softmax(candidates)
        cum = torch.cumsum(candidates.probs, dim=0)
        rank = torch.arange(1, len(candidates) + 1, device=cum.device)
        first = _first_true((cum >= p) & (rank >= min_keep))
        last_idx = len(candidates) if first is None else first + 1
        candidates.truncate(last_idx)

    def min_p(self, candidates: TokenCandidates, p: float, min_keep: int) -> None:
        if p <= 0.0 or len(candidates) == 0:
            return
        self.softmax(candidates)
        p_min = candidates.probs[0] * p
        rank = torch.arange(len(candidates), device=candidates.probs.device)
        cond = (candidates.probs < p_min) & (rank >= min_keep) & (rank >= 1)
        first = _first_true(cond)
        candidates.truncate(len(candidates) if first is None else first)

    def tail_free(self, candidates: TokenCandidates, z: float, min_keep: int) -> None:
        if z >= 1.0 or len(candidates) <= 2:
            return
        self.softmax(candidates)
        probs = candidates.probs
        first_derivatives = probs[:-1] - probs[1:]
        second_derivatives = torch.abs(first_derivatives[:-1] - first_derivatives[1:])
        total = float(second_derivatives.sum())
        if total > 1e-6:
            second_derivatives = second_derivatives / total
        cum = torch.cumsum(second_derivatives, dim=0)
        rank = torch.arange(cum.numel(), device=cum.device)
        first = _first_true((cum > z) & (rank >= min_keep))
        candidates.truncate(len(candidates) if first is None else first)

    def typical(self, candidates: TokenCandidates, p: float, min_keep: int) -> None:
        if p >= 1.0:
            return
        self.softmax(candidates)
        probs = candidates.probs
        log_probs = torch.log(probs)
        entropy = -float(torch.where(probs > 0, probs * log_probs, torch.zeros_like(probs)).sum())
        shifted = torch.abs(-log_probs - entropy)
        _, order = torch.sort(shifted, stable=True)
        cum = torch.cumsum(probs[order], dim=0)
        rank = torch.arange(cum.numel(), device=cum.device)
        first = _first_true((cum > p) & (rank >= min_keep - 1))
        last_idx = cum.numel() if first is None else first + 1
        candidates.select(order[:last_idx])
        candidates.sorted = False

    # -------------------------------------------------------------------------
    # Score transforms
    # -------------------------------------------------------------------------

    def repetition_penalties(
        self,
        candidates: TokenCandidates,
        last_tokens: Sequence[int],
        penalty_repeat: float,
        penalty_freq: float,
        penalty_present: float,
    ) -> None:
        """Penalize tokens that occur in last_tokens.

        Positive scores are divided by penalty_repeat, negative ones multiplied,
        then count * penalty_freq + penalty_present is subtracted.
        """
        if not last_tokens:
            return
        if penalty_repeat == 1.0 and penalty_freq == 0.0 and penalty_present == 0.0:
            return

        token_counts = Counter(last_tokens)
        device = candidates.ids.device
        tokens = torch.tensor(list(token_counts.keys()), dtype=torch.long, device=device)
        counts = torch.tensor(list(token_counts.values()), dtype=torch.float32, device=device)

        matches = candidates.ids.unsqueeze(1) == tokens.unsqueeze(0)
        per_candidate = (matches.to(torch.float32) * counts.unsqueeze(0)).sum(dim=1)
        hit = per_candidate > 0

        logits = candidates.logits
        penalized = torch.where(logits <= 0, logits * penalty_repeat, logits / penalty_repeat)
        penalized = penalized - per_candidate * penalty_freq - hit.to(torch.float32) * penalty_present
        candidates.logits = torch.where(hit, penalized, logits)
        candidates.probs = None
        candidates.sorted = False

    def classifier_free_guidance(
        self,
        candidates: TokenCandidates,
        guidance_logits: torch.Tensor,
        scale: float,
    ) -> None:
        """Blend the guidance distribution into the candidate scores.

        Both vectors are log-softmaxed first; the result is
        guidance + scale * (base - guidance).
        """
        base = torch.log_softmax(candidates.logits, dim=0)
        guidance = torch.log_softmax(
            guidance_logits.detach().reshape(-1).to(torch.float32), dim=0
        ).to(base.device)[candidates.ids]
        candidates.logits = guidance + scale * (base - guidance)
        candidates.probs = None

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def greedy(self, candidates: TokenCandidates) -> int:
        return int(candidates.ids[int(torch.argmax(candidates.logits))])

    def sample(self, candidates: TokenCandidates) -> int:
        self.softmax(candidates)
        probs = candidates.probs
        if probs.device.type != self._generator.device.type:
            probs = probs.to(self._generator.device)
        idx = int(torch.multinomial(probs, 1, generator=self._generator)[0])
        return int(candidates.ids[idx])

    def mirostat(
        self,
        candidates: TokenCandidates,
        tau: float,
        eta: float,
        m: int,
        mu: float,
        n_vocab: int,
    ) -> Tuple[int, float]:
        """Mirostat v1: estimate the Zipf exponent, derive k from mu, sample.

        Returns:
            Tuple of (token, updated mu)
        """
        self.softmax(candidates)

        m = min(m, len(candidates))
        k = len(candidates)
        if m >= 2:
            probs = candidates.probs[:m].clamp_min(torch.finfo(torch.float32).tiny)
            i = torch.arange(m - 1, dtype=torch.float32, device=probs.device)
            t_i = torch.log((i + 2) / (i + 1))
            b_i = torch.log(probs[:-1] / probs[1:])
            s_hat = float((t_i * b_i).sum() / (t_i * t_i).sum())
            epsilon_hat = s_hat - 1.0
            try:
                k_float = math.pow(
                    (epsilon_hat * math.pow(2.0, mu)) / (1.0 - math.pow(n_vocab, -epsilon_hat)),
                    1.0 / s_hat,
                )
            except (OverflowError, ValueError, ZeroDivisionError):
                k_float = float(len(candidates))
            if math.isfinite(k_float):
                k = int(k_float)

        self.top_k(candidates, k, 1)
        token = self.sample(candidates)
        return token, self._update_mu(candidates, token, tau, eta, mu)

    def mirostat_v2(
        self,
        candidates: TokenCandidates,
        tau: float,
        eta: float,
        mu: float,
    ) -> Tuple[int, float]:
        """Mirostat v2: drop candidates whose surprisal exceeds mu, sample.

        Returns:
            Tuple of (token, updated mu)
        """
        self.softmax(candidates)
        surprise = -torch.log2(candidates.probs)
        first = _first_true(surprise > mu)
        keep = len(candidates) if first is None else max(first, 1)
        candidates.truncate(keep)
        token = self.sample(candidates)
        return token, self._update_mu(candidates, token, tau, eta, mu)

    @staticmethod
    def _update_mu(
        candidates: TokenCandidates,
        token: int,
        tau: float,
        eta: float,
        mu: float,
    ) -> float:
        pos = candidates.position_of(token)
        observed_surprise = -math.log2(float(candidates.probs[pos]))
        return mu - eta * (observed_surprise - tau)
