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
"""Grammar synthesis request and response types.

A request carries everything the synthesizer needs to produce the grammar
for the next token: the target, the auxiliary prelude artifact, the debug
flag, the text of the token just decoded, and the content-only transcript
(prelude and in-progress token excluded).

The response is free-form text. The grammar is whatever follows the marker
line (by default "LSP: Grammar:"), with leading whitespace trimmed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from ..core.params import SynthesisConfig

DEFAULT_GRAMMAR_MARKER = "LSP: Grammar:\n"


def escape_argument(text: str) -> str:
    """Backslash-escape backslashes and double quotes for a quoted argument."""
    return text.replace("\\", "\\\\").replace('"', '\\"')


@dataclass(frozen=True)
class SynthesisRequest:
    """One grammar regeneration request.

    Attributes:
        target: Synthesis target identifier
        prelude_path: Auxiliary context artifact path
        debug: Whether the synthesizer should emit debug output
        new_token: Text of the most recently decoded token
        transcript: Content-only transcript without the in-progress token
        mode: Synthesizer sub-command
    """

    target: str
    prelude_path: str
    debug: bool
    new_token: str
    transcript: str
    mode: str = "COMPLETIONS"

    @classmethod
    def build(
        cls,
        config: SynthesisConfig,
        target: str,
        new_token: str,
        transcript: str,
    ) -> SynthesisRequest:
        return cls(
            target=target,
            prelude_path=config.prelude_path,
            debug=config.debug,
            new_token=new_token,
            transcript=transcript,
            mode=config.mode,
        )

    def arguments(self) -> List[str]:
        """Positional and flag arguments, unescaped, for argv-style invocation."""
        args = [self.mode, self.target, "--prelude", self.prelude_path]
        if self.debug:
            args.append("--debug")
        args.extend(["--new-token", self.new_token, self.transcript])
        return args

    def command_line(self, command: Sequence[str]) -> str:
        """Render the invocation as a single shell-style line, for logs."""
        head = " ".join([*command, self.mode, self.target, "--prelude", self.prelude_path])
        if self.debug:
            head += " --debug"
        return (
            f'{head} --new-token "{escape_argument(self.new_token)}" '
            f'"{escape_argument(self.transcript)}"'
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "prelude_path": self.prelude_path,
            "debug": self.debug,
            "new_token": self.new_token,
            "transcript": self.transcript,
            "mode": self.mode,
        }


def extract_grammar(output: str, marker: str = DEFAULT_GRAMMAR_MARKER) -> str:
    """Return the text after the first marker, leading whitespace trimmed.

    Returns an empty string when the marker is absent or nothing follows it.

    Example:
        >>> extract_grammar("noise\\nLSP: Grammar:\\n  root ::= \\"a\\"\\n")
        'root ::= "a"\\n'
    """
    pos = output.find(marker)
    if pos < 0:
        return ""
    return output[pos + len(marker) :].lstrip(" \n\r\t\f\v")
