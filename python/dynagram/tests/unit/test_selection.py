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
"""Unit tests for token selection and the truncation queue."""

import pytest
import torch

from dynagram.core.candidates import TokenCandidates
from dynagram.core.params import SamplingParams
from dynagram.sampling.ops import TorchSamplingOps
from dynagram.sampling.selection import (
    MirostatState,
    SelectionMode,
    SelectionStrategy,
    run_sampler_queue,
    selection_mode,
)


def make_candidates(scores):
    return TokenCandidates.from_logits(torch.tensor(scores, dtype=torch.float32))


@pytest.fixture
def ops():
    return TorchSamplingOps(seed=42)


class TestSelectionMode:
    """Mode dispatch from temperature and mirostat."""

    @pytest.mark.parametrize(
        "kwargs,mode",
        [
            ({"temp": -1.0}, SelectionMode.GREEDY_WITH_PROBS),
            ({"temp": 0.0}, SelectionMode.GREEDY),
            ({"temp": 0.0, "mirostat": 2}, SelectionMode.GREEDY),
            ({"temp": 0.8, "mirostat": 1}, SelectionMode.MIROSTAT),
            ({"temp": 0.8, "mirostat": 2}, SelectionMode.MIROSTAT_V2),
            ({"temp": 0.8}, SelectionMode.SAMPLER_QUEUE),
        ],
    )
    def test_mode(self, kwargs, mode):
        assert selection_mode(SamplingParams(**kwargs)) == mode


class TestMirostatState:
    """Tests for MirostatState."""

    def test_initial_is_twice_tau(self):
        assert MirostatState.initial(5.0).mu == 10.0

    def test_copy_is_independent(self):
        state = MirostatState.initial(3.0)
        clone = state.copy()
        clone.mu = 1.0
        assert state.mu == 6.0


class TestSamplerQueue:
    """Ordered truncation queue."""

    def test_order_changes_filtered_set(self, ops):
        """Top-p before temperature keeps more than top-p after sharpening."""
        scores = [2.0, 1.0, 0.0, -1.0]

        top_p_first = make_candidates(scores)
        params = SamplingParams(top_p=0.8, temp=0.5, samplers_sequence="pt")
        run_sampler_queue(top_p_first, params, 4, ops, min_keep=1)

        temp_first = make_candidates(scores)
        params = SamplingParams(top_p=0.8, temp=0.5, samplers_sequence="tp")
        run_sampler_queue(temp_first, params, 4, ops, min_keep=1)

        assert top_p_first.ids.tolist() == [0, 1]
        assert temp_first.ids.tolist() == [0]

    def test_unknown_selectors_ignored(self, ops):
        cands = make_candidates([2.0, 1.0, 0.0])
        params = SamplingParams(temp=0.5, samplers_sequence="x?t")
        run_sampler_queue(cands, params, 3, ops, min_keep=1)
        assert cands.logits.tolist() == [4.0, 2.0, 0.0]

    def test_non_positive_top_k_means_vocab(self, ops):
        cands = make_candidates([2.0, 1.0, 0.0])
        params = SamplingParams(top_k=0, samplers_sequence="k")
        run_sampler_queue(cands, params, 3, ops, min_keep=1)
        assert len(cands) == 3

    def test_min_keep_floor(self, ops):
        cands = make_candidates([10.0, 0.0, 0.0, 0.0])
        params = SamplingParams(top_k=1, samplers_sequence="k")
        run_sampler_queue(cands, params, 4, ops, min_keep=3)
        assert len(cands) == 3


class TestSelectionStrategy:
    """End-to-end selection per mode."""

    def test_greedy(self, ops):
        strategy = SelectionStrategy(SamplingParams(temp=0.0), ops)
        state = MirostatState.initial(5.0)
        assert strategy.select(make_candidates([0.0, 3.0, 1.0]), state, 3) == 1
        assert state.mu == 10.0

    def test_greedy_with_probs(self, ops):
        strategy = SelectionStrategy(SamplingParams(temp=-1.0), ops)
        cands = make_candidates([0.0, 3.0, 1.0])
        token = strategy.select(cands, MirostatState.initial(5.0), 3)
        assert token == 1
        assert cands.probs is not None
        assert float(cands.probs[0]) > float(cands.probs[1])

    def test_queue_draws_allowed_token(self, ops):
        strategy = SelectionStrategy(SamplingParams(top_k=2, temp=1.0), ops)
        for _ in range(10):
            token = strategy.select(
                make_candidates([5.0, 4.9, -10.0, -10.0]), MirostatState.initial(5.0), 4
            )
            assert token in (0, 1)

    def test_mirostat_v2_updates_mu(self, ops):
        params = SamplingParams(temp=1.0, mirostat=2, mirostat_tau=1.0, mirostat_eta=0.5)
        strategy = SelectionStrategy(params, ops)
        state = MirostatState.initial(params.mirostat_tau)
        token = strategy.select(make_candidates([10.0, 0.0, 0.0]), state, 3)
        assert token == 0
        assert state.mu == pytest.approx(2.5)
