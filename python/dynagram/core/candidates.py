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
"""Candidate token array passed through the sampling pipeline.

TokenCandidates holds parallel tensors of token ids, scores and (after a
softmax) probabilities. Filters shrink or reorder the array in place; grammar
masking only rewrites scores so the array keeps its length and order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import torch


@dataclass
class TokenCandidates:
    """Mutable candidate array for one sampling call.

    Attributes:
        ids: Token ids, int64, shape (n,)
        logits: Scores aligned with ids, float32, shape (n,)
        probs: Probabilities aligned with ids, or None before softmax
        sorted: True when entries are ordered by descending score
    """

    ids: torch.Tensor
    logits: torch.Tensor
    probs: Optional[torch.Tensor] = None
    sorted: bool = False

    @classmethod
    def from_logits(cls, logits: torch.Tensor) -> TokenCandidates:
        """Build a full-vocabulary array in token id order.

        The input tensor is copied, so later in-place edits never reach the
        engine's buffer.
        """
        scores = logits.detach().reshape(-1).to(torch.float32).clone()
        ids = torch.arange(scores.numel(), dtype=torch.long, device=scores.device)
        return cls(ids=ids, logits=scores)

    def __len__(self) -> int:
        return int(self.ids.numel())

    @property
    def size(self) -> int:
        return len(self)

    def position_of(self, token: int) -> Optional[int]:
        """Index of a token within the array, or None if it was filtered out."""
        hits = (self.ids == token).nonzero(as_tuple=True)[0]
        if hits.numel() == 0:
            return None
        return int(hits[0])

    def logit_of(self, token: int) -> Optional[float]:
        pos = self.position_of(token)
        if pos is None:
            return None
        return float(self.logits[pos])

    def set_logit(self, token: int, value: float) -> bool:
        """Overwrite one token's score. Returns False if the token is absent."""
        pos = self.position_of(token)
        if pos is None:
            return False
        self.logits[pos] = value
        return True

    def select(self, index: torch.Tensor) -> None:
        """Keep only the entries at index (positions or boolean mask), in that order."""
        self.ids = self.ids[index]
        self.logits = self.logits[index]
        if self.probs is not None:
            self.probs = self.probs[index]

    def truncate(self, n: int) -> None:
        """Keep the first n entries."""
        n = max(0, min(n, len(self)))
        self.ids = self.ids[:n]
        self.logits = self.logits[:n]
        if self.probs is not None:
            self.probs = self.probs[:n]

    def top(self, n: int) -> List[Tuple[int, float]]:
        """First n (token, probability) pairs, for reporting.

        Falls back to scores when no probabilities were computed.
        """
        values = self.probs if self.probs is not None else self.logits
        n = min(n, len(self))
        return [(int(self.ids[i]), float(values[i])) for i in range(n)]

    def clone(self) -> TokenCandidates:
        return TokenCandidates(
            ids=self.ids.clone(),
            logits=self.logits.clone(),
            probs=None if self.probs is None else self.probs.clone(),
            sorted=self.sorted,
        )
