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
"""Integration tests for SamplingSession against in-memory collaborators."""

import pytest

from dynagram.core.errors import GrammarParseError, SynthesisTimeout
from dynagram.core.params import SamplingParams, StopConfig
from dynagram.grammar.constraint import GrammarMode, GrammarStepState
from dynagram.session import SamplingSession, StopRequested, TokenSampled
from dynagram.stopping.heuristics import StopReason
from dynagram.synthesis.client import CallableSynthesizer
from dynagram.synthesis.log import GrammarRegenerationLog

from conftest import FakeCodec, FakeEngine, ScriptedSynthesizer, peaked_scores, synthesizer_output

N_VOCAB = 10


@pytest.fixture
def engine():
    return FakeEngine([peaked_scores(N_VOCAB, 7)])


class TestEndToEnd:
    """Full sample/accept cycles."""

    def test_greedy_window(self, codec, engine, synthesis_config):
        """n_prev=4, greedy, token 7 always best: window fills with 7."""
        session = SamplingSession(SamplingParams(n_prev=4, temp=0.0, synthesis=synthesis_config), codec)

        for _ in range(4):
            outcome = session.sample(engine)
            assert outcome == TokenSampled(token=7)
            session.accept(outcome.token)

        assert session.prev == [7, 7, 7, 7]
        assert len(session.prev_all) == 4
        assert session.last() == 7
        assert session.metrics.steps == 4

    def test_logit_bias_applied(self, codec, engine, greedy_params):
        params = SamplingParams.from_dict({**greedy_params.to_dict(), "logit_bias": {2: 100.0}})
        session = SamplingSession(params, codec)
        assert session.sample(engine) == TokenSampled(token=2)

    def test_guidance_engine(self, codec, engine, greedy_params):
        """cfg_scale 0 selects purely by the guidance distribution."""
        params = SamplingParams.from_dict({**greedy_params.to_dict(), "cfg_scale": 0.0})
        session = SamplingSession(params, codec)
        guidance = FakeEngine([peaked_scores(N_VOCAB, 3)])
        assert session.sample(engine, guidance_engine=guidance) == TokenSampled(token=3)

    def test_top_probs(self, codec, engine, synthesis_config):
        session = SamplingSession(SamplingParams(temp=-1.0, synthesis=synthesis_config), codec)
        session.sample(engine)
        top = session.top_probs(2)
        assert top[0][0] == 7
        assert top[0][1] > top[1][1]

    def test_prev_str_helpers(self, codec, greedy_params):
        session = SamplingSession(greedy_params, codec)
        for token in [0, 1, 2, 3]:
            session.accept(token)
        session.set_prelude_len(1)
        assert session.prev_str(2) == "cd"
        assert session.prev_all_str(1, 1) == "bc"
        assert session.prelude_len == 1


class TestStaticGrammar:
    """Sessions with a static grammar."""

    def test_grammar_overrides_scores(self, codec, compiler, factory, engine, greedy_params):
        params = SamplingParams.from_dict({**greedy_params.to_dict(), "grammar": "root ::= 4 | 5"})
        session = SamplingSession(params, codec, compiler, factory)
        outcome = session.sample(engine)
        assert outcome.token in (4, 5)
        session.accept(outcome.token)
        assert session.automaton.accepted == [outcome.token]

    def test_prompt_tokens_skip_grammar(self, codec, compiler, factory, greedy_params):
        params = SamplingParams.from_dict({**greedy_params.to_dict(), "grammar": "root ::= 4"})
        session = SamplingSession(params, codec, compiler, factory)
        session.accept(9, apply_grammar=False)
        assert session.automaton.accepted == []
        assert session.prev_all == [9]

    def test_mask_selectivity_reported(self, codec, compiler, factory, engine, greedy_params):
        """One allowed token out of ten blocks nine tenths of the vocabulary."""
        params = SamplingParams.from_dict({**greedy_params.to_dict(), "grammar": "root ::= 4"})
        session = SamplingSession(params, codec, compiler, factory)
        assert session.sample(engine).token == 4

        assert session.metrics.masks.vocab_size == N_VOCAB
        masks = session.metrics.to_dict()["masks"]
        assert masks["mean_selectivity"] == pytest.approx(0.9)

    def test_bad_grammar_fails_construction(self, codec, compiler, factory, greedy_params):
        params = SamplingParams.from_dict({**greedy_params.to_dict(), "grammar": "start ::= 1"})
        with pytest.raises(GrammarParseError):
            SamplingSession(params, codec, compiler, factory)


class TestLifecycle:
    """reset and copy."""

    def test_reset(self, codec, compiler, factory, engine, greedy_params):
        params = SamplingParams.from_dict({**greedy_params.to_dict(), "grammar": "root ::= 7"})
        session = SamplingSession(params, codec, compiler, factory)
        session.accept(7)
        session.set_prelude_len(1)
        session.sample(engine)
        session.mirostat.mu = 1.0

        session.reset()

        assert session.prev == [0] * params.n_prev
        assert session.prev_all == []
        assert session.prelude_len == 0
        assert session.cur is None
        assert session.mu == 2 * params.mirostat_tau
        assert session.automaton.accepted == []
        assert session.timing.records == []

    def test_copy_is_independent(self, codec, compiler, factory, synthesis_config):
        """Advancing original and copy differently never cross-mutates."""
        params = SamplingParams(
            temp=1.0,
            mirostat=2,
            grammar="root ::= 7 | 8",
            seed=0,
            stop=StopConfig(stop_marker=None),
            synthesis=synthesis_config,
        )
        engine = FakeEngine([peaked_scores(N_VOCAB, 7)])
        session = SamplingSession(params, codec, compiler, factory)
        session.accept(7)

        clone = session.copy()
        assert session.sample(engine) == TokenSampled(token=7)
        session.accept(7)
        clone.accept(8)

        assert session.mu == pytest.approx(10.5)
        assert clone.mu == pytest.approx(10.0)
        assert session.prev_all == [7, 7]
        assert clone.prev_all == [7, 8]
        assert session.prev[-2:] == [7, 7]
        assert clone.prev[-2:] == [7, 8]
        assert session.automaton.accepted == [7, 7]
        assert clone.automaton.accepted == [7, 8]
        assert clone.metrics.steps == 0


class TestStopOutcomes:
    """Stop rules become StopRequested outcomes."""

    @pytest.fixture
    def stop_codec(self):
        return FakeCodec({1: "in", 2: "\n", 3: " ", 4: "ab", 7: "x"})

    def accept_all(self, session, tokens):
        for token in tokens:
            session.accept(token)

    def test_marker(self, stop_codec, engine, synthesis_config):
        session = SamplingSession(SamplingParams(synthesis=synthesis_config), stop_codec)
        self.accept_all(session, [1, 2, 2])
        outcome = session.sample(engine)
        assert isinstance(outcome, StopRequested)
        assert outcome.reason == StopReason.STOP_MARKER
        assert session.metrics.stops == {"stop_marker": 1}

    def test_whitespace_runaway(self, stop_codec, engine, synthesis_config):
        session = SamplingSession(SamplingParams(synthesis=synthesis_config), stop_codec)
        self.accept_all(session, [4] + [3] * 40)
        outcome = session.sample(engine)
        assert outcome == StopRequested(
            reason=StopReason.WHITESPACE_RUNAWAY, detail=outcome.detail
        )

    def test_repeated_substring(self, stop_codec, engine, synthesis_config):
        session = SamplingSession(SamplingParams(synthesis=synthesis_config), stop_codec)
        self.accept_all(session, [4] * 5)
        outcome = session.sample(engine)
        assert outcome.reason == StopReason.REPEATED_SUBSTRING
        assert outcome.detail.endswith("ab")

    def test_prelude_is_not_checked(self, stop_codec, engine, synthesis_config):
        session = SamplingSession(SamplingParams(synthesis=synthesis_config), stop_codec)
        self.accept_all(session, [3] * 40)
        session.set_prelude_len(40)
        assert isinstance(session.sample(engine), TokenSampled)


class TestDynamicGrammar:
    """Sessions regenerating their grammar every step."""

    def make_session(self, codec, compiler, factory, synthesizer, tmp_path, greedy_params):
        params = SamplingParams.from_dict({**greedy_params.to_dict(), "dynamic_grammar": "python"})
        return SamplingSession(
            params,
            codec,
            compiler,
            factory,
            synthesizer=synthesizer,
            regeneration_log=GrammarRegenerationLog(tmp_path / "regen.txt"),
        )

    def test_constrains_then_degrades(self, codec, compiler, factory, engine, tmp_path, greedy_params):
        synth = ScriptedSynthesizer([synthesizer_output("root ::= 2"), "LSP: nothing\n"])
        session = self.make_session(codec, compiler, factory, synth, tmp_path, greedy_params)
        assert session.grammar_mode == GrammarMode.DYNAMIC

        first = session.sample(engine)
        assert first == TokenSampled(token=2)
        session.accept(first.token)
        assert session.grammar_state == GrammarStepState.PENDING

        second = session.sample(engine)
        assert second == TokenSampled(token=7)
        assert session.grammar_state == GrammarStepState.DEGRADED
        assert synth.requests[1].new_token == "c"
        assert session.metrics.to_dict()["degraded_steps"] == 1

    def test_synthesis_error_propagates(self, codec, compiler, factory, engine, tmp_path, greedy_params):
        def slow(request):
            raise SynthesisTimeout("no answer", target=request.target, timeout=1.0)

        session = self.make_session(
            codec, compiler, factory, CallableSynthesizer(slow), tmp_path, greedy_params
        )
        with pytest.raises(SynthesisTimeout):
            session.sample(engine)
        assert (tmp_path / "regen.txt").exists()
