# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
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

"""Conversation summary value and its last-writer-wins store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

SUMMARY_HEADER = "Summary of the earlier conversation. Prefer its conclusions:"


@dataclass(frozen=True)
class ConversationSummary:
    """Compressed digest of older conversation turns.

    Attributes:
        history_summary: Prose summary of the dialog.
        auxiliary_summaries: Qualitative conclusions from individual
            workflows (fraud analysis, challenge outcome, findings).
        produced_at: When the summary was generated.
        source_message_count: How many log messages the summary covers.
    """

    history_summary: str
    auxiliary_summaries: List[str] = field(default_factory=list)
    produced_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source_message_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.history_summary.strip() and not any(
            s.strip() for s in self.auxiliary_summaries
        )

    def render(self) -> str:
        """Text block injected into the leading system message."""
        lines = [SUMMARY_HEADER, self.history_summary.strip() or "(none)"]
        extras = [s.strip() for s in self.auxiliary_summaries if s.strip()]
        if extras:
            lines.append("Workflow conclusions:")
            lines.extend(f"- {s}" for s in extras)
        return "\n".join(lines)


class SummaryStore:
    """Holds the current summary. Every write replaces the previous one."""

    def __init__(self) -> None:
        self._current: Optional[ConversationSummary] = None
        self._listeners: List[Callable[[ConversationSummary], None]] = []

    @property
    def current(self) -> Optional[ConversationSummary]:
        return self._current

    def clear(self) -> None:
        self._current = None
        logger.debug("Conversation summary cleared")

    def replace(self, summary: ConversationSummary) -> None:
        self._current = summary
        logger.debug(
            f"Conversation summary replaced (covers {summary.source_message_count} messages)"
        )
        for listener in list(self._listeners):
            listener(summary)

    def subscribe(self, listener: Callable[[ConversationSummary], None]) -> None:
        self._listeners.append(listener)
