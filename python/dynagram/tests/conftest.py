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
"""Pytest configuration and in-memory collaborators for dynagram tests.

The fakes stand in for the engine, codec and grammar machinery so the
pipeline can be exercised without a model or an external synthesizer:

- FakeCodec: token id -> text piece from a lookup table
- FakeEngine: scripted score vectors, records decoded tokens
- TokenSetCompiler / TokenSetFactory: a toy grammar dialect where each rule
  lists token ids ("root ::= 1 | 2"); the automaton allows exactly those ids
"""

import re
import sys
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

import pytest
import torch

# Make the package importable when running from a source checkout
python_dir = Path(__file__).parent.parent.parent
if str(python_dir) not in sys.path:
    sys.path.insert(0, str(python_dir))

from dynagram.core.interfaces import ParsedGrammar  # noqa: E402
from dynagram.core.params import SamplingParams, StopConfig, SynthesisConfig  # noqa: E402
from dynagram.synthesis.client import CallableSynthesizer  # noqa: E402
from dynagram.synthesis.protocol import SynthesisRequest  # noqa: E402


# =============================================================================
# Codec and engine
# =============================================================================


class FakeCodec:
    """Maps token ids to pieces; unknown ids render as <id>."""

    def __init__(self, pieces: Optional[Dict[int, str]] = None):
        self.pieces = dict(pieces or {})

    def token_to_piece(self, token: int) -> str:
        return self.pieces.get(token, f"<{token}>")


class FakeEngine:
    """Engine returning scripted score vectors.

    With a callable script the vector for step i is script(i); with a list,
    the last vector repeats once the list is exhausted.
    """

    def __init__(
        self,
        script,
        n_vocab: Optional[int] = None,
        newline_token: int = 1,
    ):
        self._script = script
        if n_vocab is None:
            n_vocab = int(self._vector(0).numel())
        self._n_vocab = n_vocab
        self._newline = newline_token
        self.step = 0
        self.decoded: List[int] = []

    def _vector(self, step: int) -> torch.Tensor:
        if callable(self._script):
            return torch.as_tensor(self._script(step), dtype=torch.float32)
        rows = self._script
        return torch.as_tensor(rows[min(step, len(rows) - 1)], dtype=torch.float32)

    @property
    def n_vocab(self) -> int:
        return self._n_vocab

    def get_logits(self, idx: int) -> torch.Tensor:
        return self._vector(self.step)

    def token_nl(self) -> int:
        return self._newline

    def decode(self, token: int) -> None:
        self.decoded.append(token)
        self.step += 1


def peaked_scores(n_vocab: int, token: int, high: float = 10.0) -> List[float]:
    """Score vector with one clear maximum."""
    scores = [0.0] * n_vocab
    scores[token] = high
    return scores


# =============================================================================
# Toy grammar dialect
# =============================================================================

_RULE = re.compile(r"^\s*([A-Za-z][\w-]*)\s*::=\s*(.*)$")


class TokenSetCompiler:
    """Compiles "name ::= alt | alt" lines; integer alternatives are token ids.

    Text with no rule lines compiles to an empty ParsedGrammar.
    """

    def __init__(self):
        self.parsed_texts: List[str] = []

    def parse(self, text: str) -> ParsedGrammar:
        self.parsed_texts.append(text)
        rules = []
        symbol_ids: Dict[str, int] = {}
        for line in text.splitlines():
            match = _RULE.match(line)
            if match is None:
                continue
            name, body = match.groups()
            alternatives = [alt.strip() for alt in body.split("|") if alt.strip()]
            symbol_ids[name] = len(rules)
            rules.append((name, alternatives))
        return ParsedGrammar(rules=rules, symbol_ids=symbol_ids)


class TokenSetAutomaton:
    """Allows a fixed token set; records accepted tokens."""

    def __init__(self, allowed: Iterable[int], accepted: Optional[List[int]] = None):
        self.allowed: Set[int] = set(allowed)
        self.accepted: List[int] = list(accepted or [])

    def token_mask(self, token_ids: torch.Tensor) -> torch.Tensor:
        return torch.tensor(
            [int(t) in self.allowed for t in token_ids.tolist()], dtype=torch.bool
        )

    def accept_token(self, token: int) -> None:
        self.accepted.append(token)

    def copy(self) -> "TokenSetAutomaton":
        return TokenSetAutomaton(self.allowed, self.accepted)

    def stack_depth(self) -> int:
        return len(self.accepted) + 1


class TokenSetFactory:
    """Builds automata allowing the integer alternatives of the root rule."""

    def __init__(self):
        self.created: List[TokenSetAutomaton] = []

    def create(self, grammar: ParsedGrammar, root_id: int) -> TokenSetAutomaton:
        _, alternatives = grammar.rules[root_id]
        automaton = TokenSetAutomaton(int(a) for a in alternatives if a.isdigit())
        self.created.append(automaton)
        return automaton


class ScriptedSynthesizer(CallableSynthesizer):
    """Synthesizer returning queued outputs and recording requests."""

    def __init__(self, outputs: Sequence[str] = ()):
        self.outputs = list(outputs)
        self.requests: List[SynthesisRequest] = []
        super().__init__(self._next)

    def _next(self, request: SynthesisRequest) -> str:
        self.requests.append(request)
        if len(self.outputs) > 1:
            return self.outputs.pop(0)
        return self.outputs[0]


def synthesizer_output(grammar: str, preamble: str = "LSP: ready\n") -> str:
    """Output in the shape the language-server helper prints."""
    return f"{preamble}LSP: Grammar:\n{grammar}\n"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def codec() -> FakeCodec:
    return FakeCodec({i: chr(ord("a") + i) for i in range(26)})


@pytest.fixture
def compiler() -> TokenSetCompiler:
    return TokenSetCompiler()


@pytest.fixture
def factory() -> TokenSetFactory:
    return TokenSetFactory()


@pytest.fixture
def synthesis_config(tmp_path) -> SynthesisConfig:
    return SynthesisConfig(log_path=str(tmp_path / "log.txt"))


@pytest.fixture
def greedy_params(synthesis_config) -> SamplingParams:
    """Greedy, penalty-free parameters with the stop marker disabled."""
    return SamplingParams(
        temp=0.0,
        penalty_repeat=1.0,
        stop=StopConfig(stop_marker=None),
        synthesis=synthesis_config,
    )


@pytest.fixture
def make_engine() -> Callable[..., FakeEngine]:
    return FakeEngine
