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
"""Dynagram: per-token sampling with static and dynamically synthesized grammars.

Dynagram turns one raw score vector from an inference engine into one token
decision. Between the engine and the decision sit logit bias, classifier-free
guidance, repetition penalties, stop rules and an optional grammar
constraint. In dynamic mode the grammar is regenerated before every token by
an external synthesizer that sees the transcript so far.

Key Components:
    - core: Parameters, history, candidate arrays, interfaces, errors
    - sampling: Numeric primitives, penalties and token selection
    - grammar: Constraint stage and synthesized-grammar fixups
    - synthesis: Grammar synthesizer clients and the regeneration log
    - stopping: Degenerate-output detection
    - observability: Session metrics and grammar timing
    - session: SamplingSession orchestration
    - generation: Reference caller loop
"""

# Submodules import torch; exports are resolved on first access


def __getattr__(name: str):
    """Lazy import of module attributes."""
    if name in ("SamplingSession", "SampleOutcome", "StopRequested", "TokenSampled"):
        from .session import SampleOutcome, SamplingSession, StopRequested, TokenSampled

        return locals()[name]

    if name in ("DecodingEngine", "GenerationResult", "generate", "ingest_prompt"):
        from .generation import DecodingEngine, GenerationResult, generate, ingest_prompt

        return locals()[name]

    if name in ("SamplingParams", "StopConfig", "SynthesisConfig"):
        from .core.params import SamplingParams, StopConfig, SynthesisConfig

        return locals()[name]

    if name in (
        "ConfigurationError",
        "DynagramError",
        "GrammarParseError",
        "SynthesisError",
        "SynthesisMalformed",
        "SynthesisTimeout",
        "SynthesisUnavailable",
    ):
        from .core.errors import (
            ConfigurationError,
            DynagramError,
            GrammarParseError,
            SynthesisError,
            SynthesisMalformed,
            SynthesisTimeout,
            SynthesisUnavailable,
        )

        return locals()[name]

    if name in ("StopReason",):
        from .stopping.heuristics import StopReason

        return locals()[name]

    if name in ("GrammarMode", "GrammarStepState"):
        from .grammar.constraint import GrammarMode, GrammarStepState

        return locals()[name]

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Session
    "SamplingSession",
    "SampleOutcome",
    "StopRequested",
    "TokenSampled",
    # Generation loop
    "DecodingEngine",
    "GenerationResult",
    "generate",
    "ingest_prompt",
    # Configuration
    "SamplingParams",
    "StopConfig",
    "SynthesisConfig",
    # Errors
    "ConfigurationError",
    "DynagramError",
    "GrammarParseError",
    "SynthesisError",
    "SynthesisMalformed",
    "SynthesisTimeout",
    "SynthesisUnavailable",
    # Enums
    "StopReason",
    "GrammarMode",
    "GrammarStepState",
]

__version__ = "0.1.0"
