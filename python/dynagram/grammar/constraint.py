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
"""Grammar constraint stage of the sampling pipeline.

The stage owns at most one grammar automaton and masks candidate scores to
the tokens it allows. It runs in one of three modes:

    UNINITIALIZED  no grammar configured; candidates pass through
    STATIC         grammar text compiled once at construction
    DYNAMIC        grammar regenerated from a synthesizer before every step

Within DYNAMIC mode each step cycles PENDING -> COMPILED -> PENDING. Any
compile attempt that yields no usable grammar moves the step to DEGRADED:
the previous automaton is discarded and the step runs unconstrained.

Disallowed tokens get a score of -inf; nothing is removed from the candidate
array, so the relative order of allowed tokens is preserved.

The automaton must advance on every accepted token, in the same call that
appends the token to history, or it drifts from the generated text.
"""

from __future__ import annotations

import logging
import time
from enum import Enum, auto
from typing import Optional, Tuple

import torch

from ..core.candidates import TokenCandidates
from ..core.errors import ConfigurationError, GrammarParseError
from ..core.history import HistoryStore
from ..core.interfaces import (
    ROOT_SYMBOL,
    AutomatonFactory,
    GrammarAutomaton,
    GrammarCompiler,
    ParsedGrammar,
    TokenCodec,
)
from ..core.params import SamplingParams
from ..observability.metrics import SessionMetrics
from ..observability.timing import GrammarTimingContext
from ..synthesis.client import GrammarSynthesizer, SubprocessSynthesizer
from ..synthesis.log import GrammarRegenerationLog
from ..synthesis.protocol import SynthesisRequest, extract_grammar
from .normalize import normalize_grammar

logger = logging.getLogger(__name__)


class GrammarMode(Enum):
    UNINITIALIZED = auto()
    STATIC = auto()
    DYNAMIC = auto()


class GrammarStepState(Enum):
    """State of the current step's grammar.

    PENDING: waiting for regeneration (dynamic mode, or no grammar yet)
    COMPILED: an automaton is installed for this step
    DEGRADED: regeneration produced no usable grammar; step is unconstrained
    """

    PENDING = auto()
    COMPILED = auto()
    DEGRADED = auto()


class GrammarConstraintStage:
    """Masks candidates with a static or dynamically regenerated grammar.

    Attributes:
        params: Sampling parameters (grammar, dynamic_grammar, synthesis)
        mode: Static, dynamic or no grammar
        state: State of the current step
        parsed: Stored static rule-set, used to rebuild on reset
    """

    def __init__(
        self,
        params: SamplingParams,
        compiler: Optional[GrammarCompiler] = None,
        factory: Optional[AutomatonFactory] = None,
        synthesizer: Optional[GrammarSynthesizer] = None,
        regeneration_log: Optional[GrammarRegenerationLog] = None,
        metrics: Optional[SessionMetrics] = None,
        timing: Optional[GrammarTimingContext] = None,
    ):
        """Initialize the stage, compiling a static grammar if configured.

        Raises:
            ConfigurationError: A grammar is configured but no compiler or
                automaton factory was supplied
            GrammarParseError: The static grammar did not compile
        """
        self.params = params
        self._compiler = compiler
        self._factory = factory
        self._synthesizer = synthesizer
        self._log = regeneration_log or GrammarRegenerationLog(params.synthesis.log_path)
        self.metrics = metrics if metrics is not None else SessionMetrics()
        self.timing = timing if timing is not None else GrammarTimingContext()

        self.parsed: Optional[ParsedGrammar] = None
        self._automaton: Optional[GrammarAutomaton] = None
        self.state = GrammarStepState.PENDING

        if params.dynamic_grammar:
            self.mode = GrammarMode.DYNAMIC
            self._require_compiler()
            if self._synthesizer is None:
                self._synthesizer = SubprocessSynthesizer(params.synthesis)
        elif params.grammar:
            self.mode = GrammarMode.STATIC
            self._require_compiler()
            compiled = self._compile(params.grammar)
            if compiled is None:
                raise GrammarParseError("failed to parse grammar", grammar=params.grammar)
            self.parsed, self._automaton = compiled
            self.state = GrammarStepState.COMPILED
        else:
            self.mode = GrammarMode.UNINITIALIZED

    def _require_compiler(self) -> None:
        if self._compiler is None or self._factory is None:
            raise ConfigurationError(
                "grammar", "a grammar compiler and automaton factory are required"
            )

    @property
    def automaton(self) -> Optional[GrammarAutomaton]:
        return self._automaton

    @property
    def synthesizer(self) -> Optional[GrammarSynthesizer]:
        return self._synthesizer

    @property
    def regeneration_log(self) -> GrammarRegenerationLog:
        return self._log

    # -------------------------------------------------------------------------
    # Compilation
    # -------------------------------------------------------------------------

    def _compile(self, text: str) -> Optional[Tuple[ParsedGrammar, GrammarAutomaton]]:
        parsed = self._compiler.parse(text)
        if parsed.is_empty:
            return None
        if ROOT_SYMBOL not in parsed.symbol_ids:
            logger.warning(f"Grammar has no '{ROOT_SYMBOL}' rule")
            return None
        return parsed, self._factory.create(parsed, parsed.root_id)

    def _replace_automaton(self, automaton: Optional[GrammarAutomaton]) -> None:
        # The old automaton is dropped here; nothing else holds it
        self._automaton = automaton

    def _degrade(self) -> None:
        self._replace_automaton(None)
        self.state = GrammarStepState.DEGRADED
        self.metrics.degraded_steps += 1

    # -------------------------------------------------------------------------
    # Per-step operations
    # -------------------------------------------------------------------------

    def constrain(
        self,
        candidates: TokenCandidates,
        history: HistoryStore,
        codec: TokenCodec,
    ) -> bool:
        """Prepare the grammar for this step and mask the candidates.

        Returns:
            True if a grammar mask was applied

        Raises:
            SynthesisError: The dynamic synthesizer could not be used
        """
        if self.mode == GrammarMode.DYNAMIC:
            self.regenerate(history, codec)
        elif self._automaton is None and self.params.synthesis.log_unconstrained_steps:
            self._log.append(history.render_content(codec))

        return self.apply(candidates)

    def regenerate(self, history: HistoryStore, codec: TokenCodec) -> GrammarStepState:
        """Fetch, normalise and compile the grammar for the next token."""
        transcript = history.render_content(codec)
        request = SynthesisRequest.build(
            self.params.synthesis,
            target=self.params.dynamic_grammar,
            new_token=history.tail_text(codec, 1),
            transcript=history.render_content(codec, end_skip=1),
        )

        start = time.perf_counter()
        try:
            output = self._synthesizer.synthesize(request)
        except Exception as e:
            self._log.append(transcript, f"Synthesis failed: {e}")
            self._degrade()
            raise
        finally:
            self.metrics.synthesis.record((time.perf_counter() - start) * 1000)

        self._log.append(transcript, output)

        grammar_text = normalize_grammar(
            extract_grammar(output, self.params.synthesis.grammar_marker)
        )
        compiled = self._compile(grammar_text) if grammar_text else None

        if compiled is None:
            if grammar_text:
                logger.warning("failed to parse grammar")
            else:
                logger.warning("Synthesizer returned no grammar; sampling this step unconstrained")
            self._degrade()
            return self.state

        _, automaton = compiled
        self._replace_automaton(automaton)
        self.state = GrammarStepState.COMPILED
        self.metrics.regenerations += 1
        return self.state

    def apply(self, candidates: TokenCandidates) -> bool:
        """Set disallowed candidates to -inf. Returns False without an automaton."""
        if self._automaton is None:
            return False

        allowed = self._automaton.token_mask(candidates.ids).to(
            device=candidates.logits.device, dtype=torch.bool
        )
        candidates.logits = candidates.logits.masked_fill(~allowed, float("-inf"))
        candidates.probs = None

        popcount = int(allowed.sum())
        # Masking runs before truncation, so the array spans the vocabulary
        self.metrics.masks.vocab_size = len(candidates)
        self.metrics.masks.record(popcount)
        self.timing.record(self._automaton.stack_depth())
        if popcount == 0:
            logger.debug("Grammar mask allows no candidates")
        return True

    def accept(self, token: int) -> None:
        """Advance the automaton by an accepted token."""
        if self._automaton is not None:
            self._automaton.accept_token(token)
        if self.mode == GrammarMode.DYNAMIC:
            self.state = GrammarStepState.PENDING

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Rebuild the automaton from the stored rule-set, or clear it."""
        if self.parsed is not None:
            self._replace_automaton(self._factory.create(self.parsed, self.parsed.root_id))
            self.state = GrammarStepState.COMPILED
        else:
            self._replace_automaton(None)
            self.state = GrammarStepState.PENDING
        self.timing.reset()

    def copy(
        self,
        metrics: Optional[SessionMetrics] = None,
        timing: Optional[GrammarTimingContext] = None,
    ) -> GrammarConstraintStage:
        """Independent stage with a cloned automaton.

        Compiler, factory, synthesizer and log are stateless collaborators and
        are shared.
        """
        clone = object.__new__(GrammarConstraintStage)
        clone.params = self.params
        clone._compiler = self._compiler
        clone._factory = self._factory
        clone._synthesizer = self._synthesizer
        clone._log = self._log
        clone.metrics = metrics if metrics is not None else SessionMetrics()
        clone.timing = timing if timing is not None else self.timing.copy()
        clone.parsed = self.parsed
        clone._automaton = None if self._automaton is None else self._automaton.copy()
        clone.state = self.state
        clone.mode = self.mode
        return clone
