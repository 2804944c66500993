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
"""Exception hierarchy for dynagram.

Errors fall into three groups:
    - ConfigurationError: invalid sampling parameters (raised at construction)
    - GrammarParseError: a static grammar could not be compiled (fatal to
      session construction)
    - SynthesisError: the dynamic grammar synthesizer could not produce output
      (Unavailable, Malformed, Timeout)

Degraded grammar steps and stopping heuristics are NOT errors: the former are
logged and counted, the latter are returned as StopRequested outcomes.
"""

from __future__ import annotations

from typing import Optional


class DynagramError(Exception):
    """Base class for all dynagram errors."""


class ConfigurationError(DynagramError, ValueError):
    """Invalid sampling configuration."""

    def __init__(self, field_name: str, message: str):
        super().__init__(f"{field_name}: {message}")
        self.field_name = field_name


class GrammarParseError(DynagramError):
    """A grammar could not be compiled into a usable rule-set.

    Attributes:
        grammar: The grammar text that failed to compile
    """

    def __init__(self, message: str, grammar: str = ""):
        super().__init__(message)
        self.grammar = grammar


class SynthesisError(DynagramError):
    """The grammar synthesizer failed to produce output.

    Attributes:
        target: Synthesis target the request was made for
        output: Any partial output captured before the failure
    """

    def __init__(self, message: str, target: str = "", output: Optional[str] = None):
        super().__init__(message)
        self.target = target
        self.output = output


class SynthesisUnavailable(SynthesisError):
    """The synthesizer could not be invoked at all."""


class SynthesisMalformed(SynthesisError):
    """The synthesizer ran but its output could not be used."""


class SynthesisTimeout(SynthesisError):
    """The synthesizer did not answer within the configured timeout."""

    def __init__(self, message: str, target: str = "", timeout: Optional[float] = None):
        super().__init__(message, target=target)
        self.timeout = timeout
