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
"""Core types: parameters, history, candidates, collaborator interfaces, errors."""

from .candidates import TokenCandidates
from .errors import (
    ConfigurationError,
    DynagramError,
    GrammarParseError,
    SynthesisError,
    SynthesisMalformed,
    SynthesisTimeout,
    SynthesisUnavailable,
)
from .history import SENTINEL_TOKEN, HistoryStore
from .interfaces import (
    ROOT_SYMBOL,
    AutomatonFactory,
    GrammarAutomaton,
    GrammarCompiler,
    InferenceEngine,
    ParsedGrammar,
    TokenCodec,
)
from .params import (
    DEFAULT_SAMPLERS_SEQUENCE,
    SAMPLER_NAMES,
    SamplingParams,
    StopConfig,
    SynthesisConfig,
)

__all__ = [
    "TokenCandidates",
    "ConfigurationError",
    "DynagramError",
    "GrammarParseError",
    "SynthesisError",
    "SynthesisMalformed",
    "SynthesisTimeout",
    "SynthesisUnavailable",
    "SENTINEL_TOKEN",
    "HistoryStore",
    "ROOT_SYMBOL",
    "AutomatonFactory",
    "GrammarAutomaton",
    "GrammarCompiler",
    "InferenceEngine",
    "ParsedGrammar",
    "TokenCodec",
    "DEFAULT_SAMPLERS_SEQUENCE",
    "SAMPLER_NAMES",
    "SamplingParams",
    "StopConfig",
    "SynthesisConfig",
]
