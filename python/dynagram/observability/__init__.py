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
"""Session-scoped metrics and grammar timing diagnostics.

Example:
    >>> from dynagram.observability import SessionMetrics
    >>> metrics = SessionMetrics()
    >>> metrics.masks.record(12)
    >>> metrics.to_dict()["masks"]["count"]
    1
"""

from .metrics import LatencyMetrics, MaskMetrics, SessionMetrics
from .timing import GrammarTiming, GrammarTimingContext

__all__ = [
    "LatencyMetrics",
    "MaskMetrics",
    "SessionMetrics",
    "GrammarTiming",
    "GrammarTimingContext",
]
