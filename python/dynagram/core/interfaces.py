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
"""Collaborator interfaces consumed by the sampling pipeline.

The pipeline never loads models, parses grammar text or walks grammar stacks
itself. It talks to:

- TokenCodec: token id -> text piece
- InferenceEngine: per-position score vectors and vocabulary facts
- GrammarCompiler: grammar text -> ParsedGrammar (rules + symbol table)
- AutomatonFactory: ParsedGrammar -> GrammarAutomaton
- GrammarAutomaton: which tokens are allowed now, advanced per accepted token
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, runtime_checkable

import torch

ROOT_SYMBOL = "root"


@dataclass
class ParsedGrammar:
    """Compiled grammar rule-set.

    An empty rule list means the grammar failed to compile.

    Attributes:
        rules: Compiled rules, opaque to the pipeline
        symbol_ids: Nonterminal name -> symbol id
    """

    rules: List[Any] = field(default_factory=list)
    symbol_ids: Dict[str, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.rules

    @property
    def root_id(self) -> int:
        """Symbol id of the distinguished root rule.

        Raises:
            KeyError: If the grammar has no root rule
        """
        return self.symbol_ids[ROOT_SYMBOL]


@runtime_checkable
class TokenCodec(Protocol):
    def token_to_piece(self, token: int) -> str:
        """Return the text piece for a token id."""
        ...


@runtime_checkable
class InferenceEngine(Protocol):
    @property
    def n_vocab(self) -> int:
        """Vocabulary size."""
        ...

    def get_logits(self, idx: int) -> torch.Tensor:
        """Raw score vector for batch position idx, shape (n_vocab,)."""
        ...

    def token_nl(self) -> int:
        """Designated newline token id."""
        ...


@runtime_checkable
class GrammarAutomaton(Protocol):
    def token_mask(self, token_ids: torch.Tensor) -> torch.Tensor:
        """Boolean mask aligned with token_ids; True where the token is allowed."""
        ...

    def accept_token(self, token: int) -> None:
        """Advance the automaton by an accepted token."""
        ...

    def copy(self) -> "GrammarAutomaton":
        """Independent deep copy of the automaton state."""
        ...

    def stack_depth(self) -> int:
        """Number of live parse stacks, for diagnostics."""
        ...


@runtime_checkable
class GrammarCompiler(Protocol):
    def parse(self, text: str) -> ParsedGrammar:
        """Compile grammar text; returns an empty ParsedGrammar on error."""
        ...


@runtime_checkable
class AutomatonFactory(Protocol):
    def create(self, grammar: ParsedGrammar, root_id: int) -> GrammarAutomaton:
        """Instantiate a fresh automaton positioned at the root symbol."""
        ...
