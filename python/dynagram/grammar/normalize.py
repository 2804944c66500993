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
"""Textual fixups for synthesized grammars.

Synthesized grammars use a few forms the grammar compiler rejects or that
over-constrain generation. The rewrites below run in order:

1. whitespace ::= [ \\n]+          ->  whitespace ::= [ \\n]*
2. X ::= "whitespace"              ->  X ::= whitespace
3. new_tokens                      ->  new-tokens
4. new-tokens ::= whitespace | Y   ->  new-tokens ::= whitespace (Y)
"""

from __future__ import annotations

import re
from typing import Callable, List, Tuple, Union

_Replacement = Union[str, Callable[["re.Match[str]"], str]]

GRAMMAR_FIXUPS: List[Tuple["re.Pattern[str]", _Replacement]] = [
    (re.compile(r"whitespace ::= \[ \\n\]\+"), lambda m: "whitespace ::= [ \\n]*"),
    (re.compile(r'::= "whitespace"'), "::= whitespace"),
    (re.compile(r"new_tokens"), "new-tokens"),
    (re.compile(r"new-tokens ::= whitespace \| ([^\r\n]+)"), r"new-tokens ::= whitespace (\1)"),
]


def normalize_grammar(grammar: str) -> str:
    """Apply every fixup, in order, to synthesized grammar text."""
    output = grammar
    for pattern, replacement in GRAMMAR_FIXUPS:
        output = pattern.sub(replacement, output)
    return output
