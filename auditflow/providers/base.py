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

"""Base provider interface and the internal streaming event protocol.

Every vendor adapter turns its wire format into a sequence of
``StreamEvent`` values tagged either ``REASONING`` or ``CONTENT``. Nothing
above this layer knows which vendor produced a stream.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, List, Optional

from pydantic import BaseModel, field_validator

from auditflow.core.cancellation import CancellationToken

CANONICAL_ROLES = ("user", "assistant", "system")

ROLE_ALIASES = {
    "model": "assistant",
    "ai": "assistant",
    "bot": "assistant",
    "human": "user",
}


class Message(BaseModel):
    """Standard message format across providers."""

    role: str
    content: str

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v: Any) -> Any:
        if not isinstance(v, str):
            return v
        role = v.strip().lower()
        role = ROLE_ALIASES.get(role, role)
        if role not in CANONICAL_ROLES:
            raise ValueError(f"Unsupported message role: {v!r}")
        return role


class EventKind(str, Enum):
    """Which sub-stream a piece of text belongs to."""

    REASONING = "reasoning"
    CONTENT = "content"


@dataclass(frozen=True)
class StreamEvent:
    """One piece of streamed text."""

    kind: EventKind
    text: str

    @classmethod
    def reasoning(cls, text: str) -> "StreamEvent":
        return cls(EventKind.REASONING, text)

    @classmethod
    def content(cls, text: str) -> "StreamEvent":
        return cls(EventKind.CONTENT, text)


class BaseProvider(ABC):
    """Abstract base class for streaming LLM providers."""

    def __init__(self, model: str, temperature: float = 0.7, timeout: float = 120.0):
        self.model = model
        self.temperature = temperature
        self.timeout = timeout

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""

    @abstractmethod
    def stream(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
        cancellation: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream events for a conversation.

        Args:
            messages: Conversation history in canonical roles.
            system_prompt: Optional system instruction.
            json_mode: Ask the vendor for a JSON-only response.
            cancellation: Token that ends the stream with ``CancellationError``.

        Yields:
            ``StreamEvent`` values in arrival order.

        Raises:
            ProviderError: On transport failure or non-success status.
            CancellationError: When ``cancellation`` is signalled.
        """

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""

    async def __aenter__(self) -> "BaseProvider":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
