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
"""Append-only log of grammar regeneration attempts.

Each entry starts with a delimiter line and holds the content-only transcript
followed by the raw synthesizer output. The log is for offline inspection; it
is never read back. Write failures are reported and swallowed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

ENTRY_DELIMITER = "================"


class GrammarRegenerationLog:
    """Best-effort appender for regeneration entries.

    Attributes:
        path: Log file path, or None to disable logging
        entries_written: Number of entries successfully appended
    """

    def __init__(self, path: Optional[Union[str, Path]]):
        self.path = Path(path) if path is not None else None
        self.entries_written = 0

    @property
    def enabled(self) -> bool:
        return self.path is not None

    @staticmethod
    def format_entry(transcript: str, output: Optional[str] = None) -> str:
        entry = f"\n{ENTRY_DELIMITER}\n{transcript}\n\n"
        if output is not None:
            entry += f"{output}\n"
        return entry

    def append(self, transcript: str, output: Optional[str] = None) -> bool:
        """Append one entry. Returns False if the file could not be written."""
        if self.path is None:
            return False
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(self.format_entry(transcript, output))
        except OSError as e:
            logger.error(f"Unable to write regeneration log {self.path}: {e}")
            return False
        self.entries_written += 1
        return True
