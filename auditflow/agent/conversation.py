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

"""Conversation log: the rendered chat the orchestrator writes into.

Messages here are richer than provider ``Message`` values: an assistant
message carries its reasoning text, a ledger of workflow steps, and the
pending actions the user may take next. Rendering is left to listeners.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from auditflow.config.constants import GUARD_LIMITS
from auditflow.providers.base import Message

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    """Status of one workflow step."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ERROR = "error"


@dataclass
class WorkflowStep:
    name: str
    status: StepStatus = StepStatus.PENDING
    detail: Optional[str] = None


class StepLedger:
    """Append/update-only list of workflow steps.

    ``begin`` completes the step that was in progress, so at most one step
    is ever ``in_progress``.
    """

    def __init__(self) -> None:
        self._steps: List[WorkflowStep] = []

    @property
    def steps(self) -> List[WorkflowStep]:
        return list(self._steps)

    @property
    def active(self) -> Optional[WorkflowStep]:
        for step in self._steps:
            if step.status == StepStatus.IN_PROGRESS:
                return step
        return None

    def begin(self, name: str, detail: Optional[str] = None) -> WorkflowStep:
        current = self.active
        if current is not None:
            current.status = StepStatus.DONE
        step = WorkflowStep(name=name, status=StepStatus.IN_PROGRESS, detail=detail)
        self._steps.append(step)
        return step

    def progress(self, detail: str) -> None:
        """Update the detail text of the in-progress step, if any."""
        current = self.active
        if current is not None:
            current.detail = detail

    def complete(self) -> None:
        current = self.active
        if current is not None:
            current.status = StepStatus.DONE

    def fail(self, detail: Optional[str] = None) -> None:
        current = self.active
        if current is not None:
            current.status = StepStatus.ERROR
            if detail:
                current.detail = detail


@dataclass(frozen=True)
class PendingAction:
    """A follow-up the user can trigger from a message."""

    action_id: str
    label: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatMessage:
    """One entry in the conversation log."""

    role: str
    text: str = ""
    reasoning: str = ""
    id: str = field(default_factory=lambda: f"msg-{uuid.uuid4().hex[:12]}")
    ledger: StepLedger = field(default_factory=StepLedger)
    actions: List[PendingAction] = field(default_factory=list)
    processing_state: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def workflow_steps(self) -> List[WorkflowStep]:
        return self.ledger.steps

    def find_action(self, action_id: str) -> Optional[PendingAction]:
        for action in self.actions:
            if action.action_id == action_id:
                return action
        return None


class DuplicateSubmissionGuard:
    """Rejects an identical (role, text) append arriving inside a short window."""

    def __init__(
        self,
        window_seconds: float = GUARD_LIMITS.duplicate_window_seconds,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self._clock = clock
        self._last_fingerprint: Optional[str] = None
        self._last_time = 0.0

    def admit(self, role: str, text: str) -> bool:
        fingerprint = f"{role}:{text}"
        now = self._clock()
        if fingerprint == self._last_fingerprint and now - self._last_time < self.window_seconds:
            return False
        self._last_fingerprint = fingerprint
        self._last_time = now
        return True


LogListener = Callable[[str, ChatMessage], None]


class ConversationLog:
    """Ordered chat messages with change notifications.

    Listeners receive ``(event, message)`` where event is ``"added"``,
    ``"updated"`` or ``"deleted"``.
    """

    def __init__(self, guard: Optional[DuplicateSubmissionGuard] = None):
        self._messages: List[ChatMessage] = []
        self._guard = guard or DuplicateSubmissionGuard()
        self._listeners: List[LogListener] = []

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def subscribe(self, listener: LogListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: str, message: ChatMessage) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, message)
            except Exception as e:
                logger.warning(f"Conversation listener error: {e}")

    def add(self, role: str, text: str = "", **fields: Any) -> Optional[ChatMessage]:
        """Append a submitted turn. Returns None when it is a duplicate submission."""
        if not self._guard.admit(role, text):
            logger.warning(f"Dropped duplicate {role} message: {text[:60]!r}")
            return None
        return self.append(role, text, **fields)

    def append(self, role: str, text: str = "", **fields: Any) -> ChatMessage:
        """Append a message without the duplicate guard, e.g. an assistant placeholder."""
        message = ChatMessage(role=role, text=text, **fields)
        self._messages.append(message)
        self._emit("added", message)
        return message

    def get(self, message_id: str) -> Optional[ChatMessage]:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def update(self, message_id: str, **changes: Any) -> Optional[ChatMessage]:
        message = self.get(message_id)
        if message is None:
            return None
        for key, value in changes.items():
            setattr(message, key, value)
        self._emit("updated", message)
        return message

    def append_text(self, message_id: str, text: str) -> None:
        message = self.get(message_id)
        if message is not None and text:
            message.text += text
            self._emit("updated", message)

    def append_reasoning(self, message_id: str, text: str) -> None:
        message = self.get(message_id)
        if message is not None and text:
            message.reasoning += text
            self._emit("updated", message)

    def touch(self, message_id: str) -> None:
        """Notify listeners after an in-place change such as a ledger update."""
        message = self.get(message_id)
        if message is not None:
            self._emit("updated", message)

    def delete(self, message_id: str) -> bool:
        message = self.get(message_id)
        if message is None:
            return False
        self._messages.remove(message)
        self._emit("deleted", message)
        return True

    def truncate_before(self, message_id: str) -> List[ChatMessage]:
        """Drop ``message_id`` and everything after it; returns what was removed."""
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                removed = self._messages[index:]
                self._messages = self._messages[:index]
                for gone in removed:
                    self._emit("deleted", gone)
                return removed
        return []

    def to_api_messages(self, exclude_ids: Optional[List[str]] = None) -> List[Message]:
        """Provider messages for every log entry with text."""
        excluded = set(exclude_ids or [])
        return [
            Message(role=m.role, content=m.text)
            for m in self._messages
            if m.id not in excluded and m.text.strip()
        ]
