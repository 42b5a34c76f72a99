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

"""Context funnel: keep outgoing conversation history provider-safe and within budget.

Reduction runs in fixed order:

1. Clean   - strip reasoning markup, drop empty messages
2. Hoist   - fold every system message into one leading system message
3. Merge   - join consecutive same-role dialog messages
4. Anchor  - drop dialog messages before the first user turn
5. Summarize (> T1) - replace older turns with the conversation summary
6. Cut (> T2) - keep the last few turns, then trim oldest text until under T2

The result always alternates roles, starts its dialog with a user turn and
is a fixed point: reducing it again returns it unchanged.
"""

from __future__ import annotations

import logging
import math
import re
from typing import List, Optional, Sequence, Tuple

from auditflow.agent.stream_demux import strip_reasoning_markup
from auditflow.agent.summary import ConversationSummary
from auditflow.config.constants import FUNNEL_LIMITS, FunnelLimits
from auditflow.providers.base import Message

logger = logging.getLogger(__name__)

CJK_PATTERN = re.compile(r"[\u4e00-\u9fa5]")


def estimate_tokens(text: str, limits: FunnelLimits = FUNNEL_LIMITS) -> int:
    """Conservative token estimate weighting CJK ideographs higher."""
    if not text:
        return 0
    cjk = len(CJK_PATTERN.findall(text))
    other = len(text) - cjk
    return math.ceil(cjk * limits.cjk_token_weight + other * limits.other_token_weight)


def estimate_messages_tokens(
    messages: Sequence[Message], limits: FunnelLimits = FUNNEL_LIMITS
) -> int:
    return sum(estimate_tokens(m.content, limits) + limits.per_message_overhead for m in messages)


def _merge_same_role(messages: List[Message]) -> List[Message]:
    merged: List[Message] = []
    for msg in messages:
        if merged and merged[-1].role == msg.role:
            merged[-1] = Message(role=msg.role, content=f"{merged[-1].content}\n\n{msg.content}")
        else:
            merged.append(msg)
    return merged


def _drop_leading_non_user(dialog: List[Message]) -> List[Message]:
    start = 0
    while start < len(dialog) and dialog[start].role != "user":
        start += 1
    return dialog[start:]


def _split(messages: Sequence[Message]) -> Tuple[List[str], List[Message]]:
    """Clean messages and separate system text from dialog."""
    system_texts: List[str] = []
    dialog: List[Message] = []
    for msg in messages:
        content = strip_reasoning_markup(msg.content)
        if not content:
            continue
        if msg.role == "system":
            system_texts.append(content)
        else:
            dialog.append(Message(role=msg.role, content=content))
    return system_texts, _drop_leading_non_user(_merge_same_role(dialog))


def _assemble(system_texts: List[str], dialog: List[Message]) -> List[Message]:
    if not system_texts:
        return list(dialog)
    return [Message(role="system", content="\n\n".join(system_texts))] + list(dialog)


def sanitize_messages(messages: Sequence[Message]) -> List[Message]:
    """Clean, hoist, merge and anchor without applying any budget."""
    system_texts, dialog = _split(messages)
    return _assemble(system_texts, dialog)


class ContextFunnel:
    """Budget-bounded history reducer.

    Args:
        limits: Thresholds to apply. Use ``FunnelLimits.for_context_window``
            to derive them from a model's context window.
    """

    def __init__(self, limits: FunnelLimits = FUNNEL_LIMITS):
        self.limits = limits

    def estimate(self, messages: Sequence[Message]) -> int:
        return estimate_messages_tokens(messages, self.limits)

    def reduce(
        self,
        messages: Sequence[Message],
        summary: Optional[ConversationSummary] = None,
    ) -> List[Message]:
        """Reduce ``messages`` to a provider-safe list within budget."""
        limits = self.limits
        system_texts, dialog = _split(messages)
        result = _assemble(system_texts, dialog)
        estimate = self.estimate(result)

        if (
            estimate > limits.summarize_threshold
            and summary is not None
            and not summary.is_empty
            and len(dialog) > limits.summary_keep_messages
        ):
            block = strip_reasoning_markup(summary.render())
            system_texts = system_texts + [block]
            dialog = _drop_leading_non_user(dialog[-limits.summary_keep_messages :])
            result = _assemble(system_texts, dialog)
            logger.debug(
                f"Context funnel summarized history: {estimate} tokens -> {self.estimate(result)}"
            )
            estimate = self.estimate(result)

        # at or above T2 so the result always lands strictly below it
        if estimate >= limits.hard_threshold:
            dialog = _drop_leading_non_user(dialog[-limits.hard_keep_messages :])
            result = self._trim_to_budget(_assemble(system_texts, dialog))
            logger.debug(
                f"Context funnel cut history: {estimate} tokens -> {self.estimate(result)}"
            )

        return result

    def _trim_to_budget(self, messages: List[Message]) -> List[Message]:
        """Trim text from the front of messages until the estimate is under T2.

        Oldest dialog turns are trimmed first, then the system message, and
        the newest turn last. Every message keeps at least one character, so
        the target is best effort when the per-message overhead alone
        exceeds it.
        """
        target = self.limits.hard_threshold
        result = list(messages)
        if self.estimate(result) < target:
            return result

        has_system = bool(result) and result[0].role == "system"
        dialog_indexes = list(range(1 if has_system else 0, len(result)))
        order = dialog_indexes[:-1] + ([0] if has_system else []) + dialog_indexes[-1:]

        for index in order:
            total = self.estimate(result)
            if total < target:
                break
            content = result[index].content
            rest = total - estimate_tokens(content, self.limits)
            budget = target - 1 - rest
            trimmed = self._keep_tail(content, budget)
            if trimmed != content:
                result[index] = Message(role=result[index].role, content=trimmed)
        return result

    def _keep_tail(self, content: str, token_budget: int) -> str:
        """Shortest front-cut of ``content`` whose estimate fits ``token_budget``.

        Text weight only grows with length, so the cut point is found by
        binary search. Never returns less than the final character.
        """
        low, high = 0, len(content) - 1
        while low < high:
            mid = (low + high) // 2
            if estimate_tokens(content[mid:].lstrip(), self.limits) <= token_budget:
                high = mid
            else:
                low = mid + 1
        return content[low:].lstrip()
