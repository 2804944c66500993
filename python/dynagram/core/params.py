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
"""Immutable sampling configuration.

SamplingParams groups every knob of the per-token pipeline: penalty weights,
truncation filters and their order, temperature and mirostat settings, grammar
sources, and the nested configuration for stopping heuristics and dynamic
grammar synthesis.

Example:
    >>> params = SamplingParams(temp=0.0, n_prev=4)
    >>> params.sampler_order()
    'CFG -> Penalties -> top_k -> tfs_z -> typical_p -> top_p -> min_p -> temp '
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional, Tuple

from .errors import ConfigurationError

# Truncation queue selectors, in the order they are documented
SAMPLER_NAMES: Dict[str, str] = {
    "k": "top_k",
    "f": "tfs_z",
    "y": "typical_p",
    "p": "top_p",
    "m": "min_p",
    "t": "temp",
}

DEFAULT_SAMPLERS_SEQUENCE = "kfypmt"


@dataclass(frozen=True)
class StopConfig:
    """Configuration for degenerate-output detection.

    Attributes:
        max_repeat_length: Longest substring length checked for repetition
        min_repetitions: Consecutive repeats needed to trigger a stop
        whitespace_run_length: Trailing space/tab run that triggers a stop
        stop_marker: Suffix of the recent decoded text that triggers a stop
            (None disables the marker rule)
        marker_window: Number of trailing tokens whose text is checked
    """

    max_repeat_length: int = 30
    min_repetitions: int = 5
    whitespace_run_length: int = 40
    stop_marker: Optional[str] = "in\n\n"
    marker_window: int = 3

    def __post_init__(self) -> None:
        if self.max_repeat_length < 0:
            raise ConfigurationError("max_repeat_length", "must be >= 0")
        if self.min_repetitions < 2:
            raise ConfigurationError("min_repetitions", "must be >= 2")
        if self.whitespace_run_length < 1:
            raise ConfigurationError("whitespace_run_length", "must be >= 1")
        if self.marker_window < 1:
            raise ConfigurationError("marker_window", "must be >= 1")


@dataclass(frozen=True)
class SynthesisConfig:
    """Configuration for dynamic grammar synthesis.

    Attributes:
        command: Program and script used to reach the synthesizer
        mode: Synthesizer sub-command
        prelude_path: Auxiliary context artifact passed with every request
        debug: Whether the debug flag is passed
        grammar_marker: Line that precedes the grammar in the output
        timeout: Seconds to wait for the synthesizer (None waits forever)
        log_path: Append-only regeneration log (None disables logging)
        log_unconstrained_steps: Also log the transcript on steps that run
            without any grammar
    """

    command: Tuple[str, ...] = ("node", "../lsp.js")
    mode: str = "COMPLETIONS"
    prelude_path: str = "../autoregressive.prelude"
    debug: bool = True
    grammar_marker: str = "LSP: Grammar:\n"
    timeout: Optional[float] = None
    log_path: Optional[str] = "log.txt"
    log_unconstrained_steps: bool = False

    def __post_init__(self) -> None:
        if not self.command:
            raise ConfigurationError("command", "must not be empty")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("timeout", "must be positive or None")
        if not self.grammar_marker:
            raise ConfigurationError("grammar_marker", "must not be empty")


@dataclass(frozen=True)
class SamplingParams:
    """Sampling parameters for one session.

    Attributes:
        n_prev: Capacity of the recent-token window
        n_probs: Number of probabilities to report; floor for min_keep
        top_k: Top-k cutoff (<= 0 means the whole vocabulary)
        top_p: Nucleus cutoff (1.0 disables)
        min_p: Minimum relative probability (0.0 disables)
        tfs_z: Tail-free cutoff (1.0 disables)
        typical_p: Locally typical cutoff (1.0 disables)
        temp: < 0 greedy with probabilities, 0 greedy, > 0 stochastic
        penalty_last_n: Tokens considered by penalties (< 0 means n_prev)
        penalty_repeat: Repetition penalty (1.0 disables)
        penalty_freq: Frequency penalty (0.0 disables)
        penalty_present: Presence penalty (0.0 disables)
        mirostat: 0 disabled, 1 mirostat, 2 mirostat v2
        mirostat_tau: Target surprisal
        mirostat_eta: Learning rate
        mirostat_m: Candidates used to estimate the Zipf exponent (v1)
        penalize_nl: Whether the newline token is penalized
        samplers_sequence: Truncation filters applied in order
        grammar: Static grammar text
        dynamic_grammar: Synthesis target; enables dynamic grammar mode
        cfg_scale: Classifier-free guidance scale
        logit_bias: Additive bias per token id
        seed: Seed for the weighted draw (None draws from the global RNG)
        stop: Stopping heuristic configuration
        synthesis: Dynamic grammar synthesis configuration
    """

    n_prev: int = 64
    n_probs: int = 0
    top_k: int = 40
    top_p: float = 0.95
    min_p: float = 0.05
    tfs_z: float = 1.00
    typical_p: float = 1.00
    temp: float = 0.80
    penalty_last_n: int = 64
    penalty_repeat: float = 1.10
    penalty_freq: float = 0.00
    penalty_present: float = 0.00
    mirostat: int = 0
    mirostat_tau: float = 5.00
    mirostat_eta: float = 0.10
    mirostat_m: int = 100
    penalize_nl: bool = True
    samplers_sequence: str = DEFAULT_SAMPLERS_SEQUENCE
    grammar: str = ""
    dynamic_grammar: str = ""
    cfg_scale: float = 1.0
    logit_bias: Dict[int, float] = field(default_factory=dict)
    seed: Optional[int] = None
    stop: StopConfig = field(default_factory=StopConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)

    def __post_init__(self) -> None:
        if self.n_prev < 1:
            raise ConfigurationError("n_prev", "must be >= 1")
        if self.n_probs < 0:
            raise ConfigurationError("n_probs", "must be >= 0")
        if self.mirostat not in (0, 1, 2):
            raise ConfigurationError("mirostat", "must be 0, 1 or 2")
        if self.mirostat_m < 2:
            raise ConfigurationError("mirostat_m", "must be >= 2")
        if self.grammar and self.dynamic_grammar:
            raise ConfigurationError(
                "dynamic_grammar", "cannot be combined with a static grammar"
            )

    @property
    def penalty_window(self) -> int:
        """Effective number of recent tokens the penalty pass looks at.

        Clamped to the window capacity since older tokens are no longer held.
        """
        if self.penalty_last_n < 0:
            return self.n_prev
        return min(self.penalty_last_n, self.n_prev)

    @property
    def min_keep(self) -> int:
        """Shared floor for every truncation filter."""
        return max(1, self.n_probs)

    def describe(self) -> str:
        """Render the parameter summary shown at generation start."""
        return (
            f"\trepeat_last_n = {self.penalty_last_n}, "
            f"repeat_penalty = {self.penalty_repeat:.3f}, "
            f"frequency_penalty = {self.penalty_freq:.3f}, "
            f"presence_penalty = {self.penalty_present:.3f}\n"
            f"\ttop_k = {self.top_k}, tfs_z = {self.tfs_z:.3f}, "
            f"top_p = {self.top_p:.3f}, min_p = {self.min_p:.3f}, "
            f"typical_p = {self.typical_p:.3f}, temp = {self.temp:.3f}\n"
            f"\tmirostat = {self.mirostat}, mirostat_lr = {self.mirostat_eta:.3f}, "
            f"mirostat_ent = {self.mirostat_tau:.3f}"
        )

    def sampler_order(self) -> str:
        """Render the effective order of the sampling chain."""
        result = "CFG -> Penalties "
        if self.mirostat == 0:
            for s in self.samplers_sequence:
                name = SAMPLER_NAMES.get(s)
                if name is not None:
                    result += f"-> {name} "
        else:
            result += "-> mirostat "
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary."""
        d = asdict(self)
        d["synthesis"]["command"] = list(self.synthesis.command)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SamplingParams":
        """Create from a plain dictionary, ignoring unknown keys.

        Logit bias keys may be strings (as produced by JSON).
        """
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in d.items() if k in known}

        if "logit_bias" in kwargs:
            kwargs["logit_bias"] = {
                int(token): float(bias) for token, bias in kwargs["logit_bias"].items()
            }
        if isinstance(kwargs.get("stop"), dict):
            kwargs["stop"] = StopConfig(**kwargs["stop"])
        if isinstance(kwargs.get("synthesis"), dict):
            synthesis = dict(kwargs["synthesis"])
            if "command" in synthesis:
                synthesis["command"] = tuple(synthesis["command"])
            kwargs["synthesis"] = SynthesisConfig(**synthesis)

        return cls(**kwargs)
