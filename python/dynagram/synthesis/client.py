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
"""Grammar synthesizer clients.

The session depends only on GrammarSynthesizer.synthesize(). Two
implementations are provided:

- SubprocessSynthesizer: runs an external program (by default a language
  server helper script) once per request and returns its stdout
- CallableSynthesizer: wraps an in-process function

Calls are synchronous and block the sampling thread. A timeout may be set on
the subprocess client; failures are raised as typed SynthesisError subclasses
and never retried.
"""

from __future__ import annotations

import logging
import subprocess
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from ..core.errors import (
    SynthesisError,
    SynthesisMalformed,
    SynthesisTimeout,
    SynthesisUnavailable,
)
from ..core.params import SynthesisConfig
from .protocol import SynthesisRequest

logger = logging.getLogger(__name__)


class GrammarSynthesizer(ABC):
    """Produces grammar text for the next decoding step."""

    @abstractmethod
    def synthesize(self, request: SynthesisRequest) -> str:
        """Return the raw synthesizer output for a request.

        Raises:
            SynthesisUnavailable: The synthesizer could not be reached
            SynthesisMalformed: Output was produced but is unusable
            SynthesisTimeout: No answer within the configured timeout
        """
        ...


class SubprocessSynthesizer(GrammarSynthesizer):
    """Runs the synthesizer as a child process per request.

    Arguments are passed as an argv list (no shell), so the token text and
    transcript reach the program verbatim.

    Attributes:
        config: Command, timeout and request defaults
        last_latency_ms: Wall time of the most recent call
    """

    def __init__(self, config: Optional[SynthesisConfig] = None):
        self.config = config or SynthesisConfig()
        self.last_latency_ms = 0.0

    def argv(self, request: SynthesisRequest) -> List[str]:
        return [*self.config.command, *request.arguments()]

    def synthesize(self, request: SynthesisRequest) -> str:
        argv = self.argv(request)
        logger.debug(f"Invoking synthesizer: {request.command_line(self.config.command)}")

        start = time.perf_counter()
        try:
            completed = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.config.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise SynthesisTimeout(
                f"Synthesizer did not answer within {self.config.timeout}s",
                target=request.target,
                timeout=self.config.timeout,
            ) from e
        except OSError as e:
            raise SynthesisUnavailable(
                f"Failed to start synthesizer {argv[0]!r}: {e}",
                target=request.target,
            ) from e
        except ValueError as e:
            # argv elements cannot carry NUL bytes
            raise SynthesisMalformed(
                f"Synthesizer request cannot be passed as arguments: {e}",
                target=request.target,
            ) from e
        finally:
            self.last_latency_ms = (time.perf_counter() - start) * 1000

        try:
            output = completed.stdout.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SynthesisMalformed(
                f"Synthesizer output is not valid UTF-8: {e}",
                target=request.target,
            ) from e

        if completed.stderr:
            logger.debug(
                f"Synthesizer stderr: {completed.stderr.decode('utf-8', errors='replace')}"
            )

        if completed.returncode != 0:
            if not output:
                raise SynthesisMalformed(
                    f"Synthesizer exited with status {completed.returncode} and no output",
                    target=request.target,
                )
            logger.warning(
                f"Synthesizer exited with status {completed.returncode}; using its output"
            )

        return output


class CallableSynthesizer(GrammarSynthesizer):
    """Adapts a plain function to the GrammarSynthesizer interface.

    Exceptions other than SynthesisError raised by the function are wrapped
    in SynthesisUnavailable.
    """

    def __init__(self, fn: Callable[[SynthesisRequest], str]):
        self._fn = fn

    def synthesize(self, request: SynthesisRequest) -> str:
        try:
            output = self._fn(request)
        except SynthesisError:
            raise
        except Exception as e:
            raise SynthesisUnavailable(
                f"Synthesizer function failed: {e}", target=request.target
            ) from e
        if not isinstance(output, str):
            raise SynthesisMalformed(
                f"Synthesizer returned {type(output).__name__}, expected str",
                target=request.target,
            )
        return output
