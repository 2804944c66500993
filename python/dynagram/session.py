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
"""Sampling session: the per-token orchestration root.

A session turns one raw score vector into one token decision:

    logit bias -> guidance blend -> penalties -> stop rules
        -> grammar constraint -> selection

and keeps the history that later steps need. The caller feeds every chosen
token back through accept(), which advances the history and the grammar
automaton together.

Stop rules never end the process. sample() returns a tagged outcome:

    TokenSampled(token)       a token was chosen
    StopRequested(reason)     a stop rule fired; the caller loop halts

Example:
    >>> session = SamplingSession(SamplingParams(temp=0.0), codec)
    >>> outcome = session.sample(engine)
    >>> if isinstance(outcome, TokenSampled):
    ...     session.accept(outcome.token)
"""

from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .core.candidates import TokenCandidates
from .core.history import HistoryStore
from .core.interfaces import (
    AutomatonFactory,
    GrammarAutomaton,
    GrammarCompiler,
    InferenceEngine,
    TokenCodec,
)
from .core.params import SamplingParams
from .grammar.constraint import GrammarConstraintStage, GrammarMode, GrammarStepState
from .observability.metrics import SessionMetrics
from .observability.timing import GrammarTimingContext
from .sampling.ops import SamplingOps, TorchSamplingOps
from .sampling.penalties import apply_guidance, apply_logit_bias, apply_penalties
from .sampling.selection import MirostatState, SelectionStrategy
from .stopping.heuristics import StoppingHeuristic, StopReason
from .synthesis.client import GrammarSynthesizer
from .synthesis.log import GrammarRegenerationLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSampled:
    token: int


@dataclass(frozen=True)
class StopRequested:
    """A stop rule fired before a token was chosen.

    Attributes:
        reason: Which rule fired
        detail: Tail of the text that triggered it, for logs
    """

    reason: StopReason
    detail: str = ""


SampleOutcome = Union[TokenSampled, StopRequested]


class SamplingSession:
    """Per-sequence sampling state and pipeline.

    Attributes:
        params: Immutable sampling parameters
        codec: Token -> text codec
        ops: Numeric sampling primitives
        history: Recent window and full transcript
        grammar: Grammar constraint stage (owns the automaton)
        metrics: Per-session counters
        timing: Grammar timing diagnostics
        cur: Candidate array of the most recent sample() call

    Thread Safety:
        Not thread-safe. Use copy() to branch.
    """

    def __init__(
        self,
        params: SamplingParams,
        codec: TokenCodec,
        compiler: Optional[GrammarCompiler] = None,
        factory: Optional[AutomatonFactory] = None,
        synthesizer: Optional[GrammarSynthesizer] = None,
        ops: Optional[SamplingOps] = None,
        regeneration_log: Optional[GrammarRegenerationLog] = None,
        timing_path: Optional[Union[str, Path]] = None,
    ):
        """Create a session, compiling the static grammar if one is set.

        Raises:
            GrammarParseError: The static grammar yields no rules or no root
            ConfigurationError: A grammar is set without compiler and factory
        """
        self.params = params
        self.codec = codec
        self.ops = ops if ops is not None else TorchSamplingOps(seed=params.seed)
        self.metrics = SessionMetrics()
        self.timing = GrammarTimingContext(path=timing_path)
        self.history = HistoryStore(params.n_prev)
        self.mirostat = MirostatState.initial(params.mirostat_tau)
        self.cur: Optional[TokenCandidates] = None

        self.grammar = GrammarConstraintStage(
            params,
            compiler=compiler,
            factory=factory,
            synthesizer=synthesizer,
            regeneration_log=regeneration_log,
            metrics=self.metrics,
            timing=self.timing,
        )
        self.stopping = StoppingHeuristic(params.stop)
        self.selection = SelectionStrategy(params, self.ops)

        logger.debug(f"Sampling session created: {params.sampler_order()}")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def prev(self) -> List[int]:
        return self.history.prev

    @property
    def prev_all(self) -> List[int]:
        return self.history.prev_all

    @property
    def prelude_len(self) -> int:
        return self.history.prelude_len

    @property
    def mu(self) -> float:
        return self.mirostat.mu

    @property
    def automaton(self) -> Optional[GrammarAutomaton]:
        return self.grammar.automaton

    @property
    def grammar_mode(self) -> GrammarMode:
        return self.grammar.mode

    @property
    def grammar_state(self) -> GrammarStepState:
        return self.grammar.state

    def last(self) -> int:
        """Most recently accepted token (sentinel 0 before any accept)."""
        return self.history.last()

    def prev_str(self, n: int) -> str:
        """Text of the last n tokens in the recent window."""
        return self.history.recent_text(self.codec, n)

    def prev_all_str(self, start_skip: int, end_skip: int) -> str:
        """Transcript text without its first start_skip and last end_skip tokens."""
        return self.history.render_range(self.codec, start_skip, end_skip)

    def set_prelude_len(self, n: int) -> None:
        self.history.set_prelude_length(n)

    def top_probs(self, n: Optional[int] = None) -> List[Tuple[int, float]]:
        """Leading (token, probability) pairs of the last candidate array."""
        if self.cur is None:
            return []
        return self.cur.top(self.params.n_probs if n is None else n)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Return to the freshly-constructed state, keeping the static grammar."""
        self.grammar.reset()
        self.history.reset()
        self.cur = None
        self.mirostat = MirostatState.initial(self.params.mirostat_tau)
        if isinstance(self.ops, TorchSamplingOps):
            self.ops.reseed()

    def copy(self) -> SamplingSession:
        """Independent session that continues from this one's state."""
        clone = object.__new__(SamplingSession)
        clone.params = self.params
        clone.codec = self.codec
        clone.ops = self.ops.copy() if isinstance(self.ops, TorchSamplingOps) else self.ops
        clone.metrics = deepcopy(self.metrics)
        clone.timing = self.timing.copy()
        clone.history = self.history.copy()
        clone.mirostat = self.mirostat.copy()
        clone.cur = None if self.cur is None else self.cur.clone()
        clone.grammar = self.grammar.copy(metrics=clone.metrics, timing=clone.timing)
        clone.stopping = self.stopping
        clone.selection = SelectionStrategy(self.params, clone.ops)
        return clone

    # -------------------------------------------------------------------------
    # Per-token pipeline
    # -------------------------------------------------------------------------

    def sample(
        self,
        engine: InferenceEngine,
        idx: int = 0,
        guidance_engine: Optional[InferenceEngine] = None,
    ) -> SampleOutcome:
        """Decide the next token at batch position idx.

        Args:
            engine: Source of the score vector
            idx: Batch position to read
            guidance_engine: Optional source of the guidance score vector,
                blended with params.cfg_scale

        Returns:
            TokenSampled, or StopRequested when a stop rule fires

        Raises:
            SynthesisError: The dynamic grammar synthesizer failed
        """
        params = self.params

        logits = apply_logit_bias(engine.get_logits(idx), params.logit_bias)
        candidates = TokenCandidates.from_logits(logits)
        self.cur = candidates

        if guidance_engine is not None:
            apply_guidance(candidates, guidance_engine.get_logits(idx), params.cfg_scale, self.ops)

        apply_penalties(candidates, self.history.prev, params, engine.token_nl(), self.ops)

        transcript = self.history.render_content(self.codec)
        reason = self.stopping.evaluate(
            transcript,
            self.history.tail_text(self.codec, params.stop.marker_window),
        )
        if reason is not None:
            self.metrics.record_stop(reason.value)
            logger.info(f"Stopping generation: {reason.value}")
            return StopRequested(reason=reason, detail=transcript[-80:])

        self.grammar.constrain(candidates, self.history, self.codec)

        token = self.selection.select(candidates, self.mirostat, engine.n_vocab)
        self.metrics.steps += 1
        return TokenSampled(token=token)

    def accept(self, token: int, apply_grammar: bool = True) -> None:
        """Record an accepted token and advance the grammar automaton.

        Prompt tokens are usually accepted with apply_grammar=False so the
        automaton only sees generated text.
        """
        self.history.append(token)
        if apply_grammar:
            self.grammar.accept(token)
