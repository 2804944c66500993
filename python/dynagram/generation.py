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
"""Reference generation loop around a SamplingSession.

The loop is where stop outcomes end generation: sample() reports a stop,
generate() returns with the reason instead of exiting the process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from .core.interfaces import InferenceEngine
from .session import SamplingSession, StopRequested

logger = logging.getLogger(__name__)

FINISH_LENGTH = "length"
FINISH_EOS = "eos"


@runtime_checkable
class DecodingEngine(InferenceEngine, Protocol):
    def decode(self, token: int) -> None:
        """Evaluate an accepted token so the next score vector is ready."""
        ...


@dataclass
class GenerationResult:
    """Tokens produced by one generate() call.

    Attributes:
        tokens: Accepted generated tokens, in order
        text: Decoded text of tokens
        finish_reason: "length", "eos", or the value of the StopReason
    """

    tokens: List[int] = field(default_factory=list)
    text: str = ""
    finish_reason: str = FINISH_LENGTH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokens": list(self.tokens),
            "text": self.text,
            "finish_reason": self.finish_reason,
        }


def ingest_prompt(
    session: SamplingSession,
    tokens: Sequence[int],
    as_prelude: bool = True,
) -> None:
    """Accept prompt tokens without advancing the grammar.

    With as_prelude the prompt is excluded from content-only transcripts,
    which is what stop rules and grammar synthesis see.
    """
    for token in tokens:
        session.accept(token, apply_grammar=False)
    if as_prelude:
        session.set_prelude_len(len(session.prev_all))


def generate(
    session: SamplingSession,
    engine: DecodingEngine,
    max_new_tokens: int,
    eos_token: Optional[int] = None,
    guidance_engine: Optional[DecodingEngine] = None,
    on_token: Optional[Callable[[int, str], None]] = None,
) -> GenerationResult:
    """Sample, accept and decode until a stop rule, EOS, or the token limit.

    Args:
        session: Session to drive; its history must already hold the prompt
        engine: Engine providing scores and consuming accepted tokens
        max_new_tokens: Upper bound on generated tokens
        eos_token: Token that ends generation once accepted
        guidance_engine: Optional classifier-free guidance engine, fed the
            same accepted tokens
        on_token: Callback receiving each accepted token and its text piece

    Raises:
        SynthesisError: The dynamic grammar synthesizer failed
    """
    result = GenerationResult()
    pieces: List[str] = []

    for _ in range(max_new_tokens):
        outcome = session.sample(engine, guidance_engine=guidance_engine)
        if isinstance(outcome, StopRequested):
            result.finish_reason = outcome.reason.value
            break

        token = outcome.token
        session.accept(token)
        piece = session.codec.token_to_piece(token)
        result.tokens.append(token)
        pieces.append(piece)
        if on_token is not None:
            on_token(token, piece)

        if eos_token is not None and token == eos_token:
            result.finish_reason = FINISH_EOS
            break

        engine.decode(token)
        if guidance_engine is not None:
            guidance_engine.decode(token)

    result.text = "".join(pieces)
    logger.debug(
        f"Generated {len(result.tokens)} tokens, finish_reason={result.finish_reason}"
    )
    return result
