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
"""Dynamic grammar synthesis.

Example:
    >>> from dynagram.synthesis import SubprocessSynthesizer, SynthesisRequest
    >>> synth = SubprocessSynthesizer()
    >>> request = SynthesisRequest(
    ...     target="python", prelude_path="ctx.prelude", debug=False,
    ...     new_token="x", transcript="def f(",
    ... )
    >>> output = synth.synthesize(request)  # doctest: +SKIP
"""

from .client import CallableSynthesizer, GrammarSynthesizer, SubprocessSynthesizer
from .log import ENTRY_DELIMITER, GrammarRegenerationLog
from .protocol import (
    DEFAULT_GRAMMAR_MARKER,
    SynthesisRequest,
    escape_argument,
    extract_grammar,
)

__all__ = [
    "CallableSynthesizer",
    "GrammarSynthesizer",
    "SubprocessSynthesizer",
    "ENTRY_DELIMITER",
    "GrammarRegenerationLog",
    "DEFAULT_GRAMMAR_MARKER",
    "SynthesisRequest",
    "escape_argument",
    "extract_grammar",
]
