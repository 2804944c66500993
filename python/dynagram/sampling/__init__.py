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
"""Score transforms and token selection."""

from .ops import SamplingOps, TorchSamplingOps
from .penalties import apply_guidance, apply_logit_bias, apply_penalties
from .selection import (
    MirostatState,
    SelectionMode,
    SelectionStrategy,
    run_sampler_queue,
    selection_mode,
)

__all__ = [
    "SamplingOps",
    "TorchSamplingOps",
    "apply_guidance",
    "apply_logit_bias",
    "apply_penalties",
    "MirostatState",
    "SelectionMode",
    "SelectionStrategy",
    "run_sampler_queue",
    "selection_mode",
]
