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

"""Background distillation of older turns into a ``ConversationSummary``.

After a task finishes, the orchestrator asks the distiller whether the log
has grown past the summarize threshold. If so, every message except the most
recent few is summarized by the model in a tracked background task and the
result replaces the current summary wholesale. The context funnel then uses
that summary the next time it has to shed history.

Usage:
    distiller = ContextDistiller(provider, summaries, store)
    distiller.schedule_if_needed(log.messages, limits)
    ...
    await distiller.aclose()
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Optional, Sequence

from auditflow.agent.collaborators import ProjectStore
from auditflow.agent.context_funnel import estimate_messages_tokens
from auditflow.agent.conversation import ChatMessage
from auditflow.agent.prompts import distill_prompt
from auditflow.agent.stream_demux import (
    DEFAULT_CLOSE_TAG,
    DEFAULT_OPEN_TAG,
    demultiplex,
    strip_reasoning_markup,
)
from auditflow.agent.stream_handler import StreamHandler
from auditflow.agent.summary import ConversationSummary, SummaryStore
from auditflow.config.constants import FUNNEL_LIMITS, GUARD_LIMITS, FunnelLimits
from auditflow.core.task_manager import TaskManager
from auditflow.providers.base import BaseProvider, Message

logger = logging.getLogger(__name__)

# Store artifacts whose qualitative conclusions ride along with the summary.
AUXILIARY_ARTIFACTS = (
    ("last_challenge_result", "Challenge"),
    ("last_fraud_result", "Fraud analysis"),
    ("last_finding_result", "Finding analysis"),
)

AUXILIARY_PREVIEW_CHARS = 400


def _qualitative(value: Any) -> str:
    if isinstance(value, str):
        text = value
    elif isinstance(value, dict) and isinstance(value.get("aiAnalysis"), dict):
        text = str(value["aiAnalysis"].get("summary", ""))
    else:
        text = json.dumps(value, ensure_ascii=False, default=str)
    text = strip_reasoning_markup(text)
    if len(text) > AUXILIARY_PREVIEW_CHARS:
        text = text[:AUXILIARY_PREVIEW_CHARS] + "..."
    return text


class ContextDistiller(TaskManager):
    """Produces conversation summaries in tracked background tasks.

    Args:
        provider: Provider used for the summarization call.
        summaries: Store that receives each new summary.
        store: Optional project store for workflow conclusions.
        keep_recent: Most recent messages left out of the summary.
        min_messages: Fewer candidate messages than this skips distillation.
    """

    def __init__(
        self,
        provider: BaseProvider,
        summaries: SummaryStore,
        store: Optional[ProjectStore] = None,
        keep_recent: int = GUARD_LIMITS.distill_keep_recent,
        min_messages: int = GUARD_LIMITS.distill_min_messages,
        open_tag: str = DEFAULT_OPEN_TAG,
        close_tag: str = DEFAULT_CLOSE_TAG,
    ):
        super().__init__()
        self.provider = provider
        self.summaries = summaries
        self.store = store
        self.keep_recent = keep_recent
        self.min_messages = min_messages
        self.open_tag = open_tag
        self.close_tag = close_tag

    def candidates(self, messages: Sequence[ChatMessage]) -> List[ChatMessage]:
        """Messages a distill would cover: everything but the most recent ones."""
        with_text = [m for m in messages if m.text.strip()]
        return with_text[: max(len(with_text) - self.keep_recent, 0)]

    def is_fresh(self, candidate_count: int) -> bool:
        current = self.summaries.current
        return current is not None and current.source_message_count >= candidate_count

    def needs_distill(
        self, messages: Sequence[ChatMessage], limits: FunnelLimits = FUNNEL_LIMITS
    ) -> bool:
        api_messages = [Message(role=m.role, content=m.text) for m in messages if m.text.strip()]
        if estimate_messages_tokens(api_messages, limits) <= limits.summarize_threshold:
            return False
        count = len(self.candidates(messages))
        return count >= self.min_messages and not self.is_fresh(count)

    def _auxiliary_summaries(self) -> List[str]:
        if self.store is None:
            return []
        summaries = []
        for key, label in AUXILIARY_ARTIFACTS:
            value = self.store.get_artifact(key)
            if value:
                text = _qualitative(value)
                if text:
                    summaries.append(f"{label}: {text}")
        return summaries

    async def distill(self, messages: Sequence[ChatMessage]) -> Optional[ConversationSummary]:
        """Summarize the older part of ``messages`` and publish the result.

        Returns:
            The new summary, or None when there was too little to summarize
            or the model returned nothing.
        """
        candidates = self.candidates(messages)
        if len(candidates) < self.min_messages:
            logger.debug(f"Skipping distill: only {len(candidates)} candidate message(s)")
            return None

        transcript = "\n".join(
            f"{m.role}: {strip_reasoning_markup(m.text, self.open_tag, self.close_tag)}"
            for m in candidates
        )
        events = self.provider.stream([Message(role="user", content=distill_prompt(transcript))])
        result = await StreamHandler().process_stream(
            demultiplex(events, self.open_tag, self.close_tag)
        )
        history = strip_reasoning_markup(result.content, self.open_tag, self.close_tag)
        if not history:
            logger.warning("Distill returned an empty summary; keeping the previous one")
            return None

        summary = ConversationSummary(
            history_summary=history,
            auxiliary_summaries=self._auxiliary_summaries(),
            source_message_count=len(candidates),
        )
        self.summaries.replace(summary)
        logger.info(f"Distilled {len(candidates)} message(s) into a conversation summary")
        return summary

    def schedule_if_needed(
        self, messages: Sequence[ChatMessage], limits: FunnelLimits = FUNNEL_LIMITS
    ) -> Optional[asyncio.Task]:
        """Start a background distill when the log is over the summarize threshold.

        At most one distill runs at a time. Failures are logged by the task
        manager and leave the previous summary in place.
        """
        if self.active_task_count or not self.needs_distill(messages, limits):
            return None
        snapshot = list(messages)
        return self.create_tracked_task(self.distill(snapshot), name="distill_context")

    async def aclose(self) -> None:
        await self.cleanup_tasks()


__all__ = [
    "ContextDistiller",
    "ConversationSummary",
    "SummaryStore",
    "AUXILIARY_ARTIFACTS",
]
