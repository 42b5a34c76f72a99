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

"""Google Gemini provider built on the google-generativeai SDK.

Gemini has no reasoning channel of its own: every delta is emitted as
content and inline reasoning markers are split out later by the
demultiplexer.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import google.generativeai as genai

from auditflow.core.cancellation import (
    CancellationToken,
    await_with_cancellation,
    iterate_with_cancellation,
)
from auditflow.core.errors import CancellationError, ConfigurationError, ProviderError
from auditflow.providers.base import BaseProvider, Message, StreamEvent

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-1.5-pro"


class GoogleProvider(BaseProvider):
    """Provider for Google Gemini models."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.7,
        timeout: float = 120.0,
    ):
        if not api_key:
            raise ConfigurationError(
                "Google API key is missing", config_key="google_api_key"
            )
        super().__init__(model=model, temperature=temperature, timeout=timeout)
        self.api_key = api_key
        genai.configure(api_key=api_key)

    @property
    def name(self) -> str:
        return "google"

    @staticmethod
    def _convert_messages(
        messages: List[Message], system_prompt: Optional[str]
    ) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """Map canonical messages to Gemini history entries.

        System messages are folded into the system instruction because Gemini
        only accepts ``user`` and ``model`` roles in history.
        """
        system_parts = [system_prompt] if system_prompt else []
        contents: List[Dict[str, Any]] = []
        for msg in messages:
            if msg.role == "system":
                if msg.content:
                    system_parts.append(msg.content)
                continue
            role = "model" if msg.role == "assistant" else "user"
            contents.append({"role": role, "parts": [msg.content]})
        system_instruction = "\n\n".join(system_parts) if system_parts else None
        return system_instruction, contents

    @staticmethod
    def _chunk_text(chunk: Any) -> str:
        # chunk.text raises ValueError when the candidate carries no text parts
        try:
            text = chunk.text
        except (ValueError, AttributeError):
            return ""
        return text if isinstance(text, str) else ""

    async def stream(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
        cancellation: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamEvent]:
        system_instruction, contents = self._convert_messages(messages, system_prompt)
        if not contents:
            return

        generation_config = {
            "temperature": self.temperature,
            "response_mime_type": "application/json" if json_mode else "text/plain",
        }

        try:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            model = genai.GenerativeModel(
                model_name=self.model,
                system_instruction=system_instruction,
                generation_config=generation_config,
            )
            chat = model.start_chat(history=contents[:-1])
            last_parts = contents[-1]["parts"]
            response = await await_with_cancellation(
                chat.send_message_async(
                    last_parts[0] if len(last_parts) == 1 else last_parts,
                    stream=True,
                ),
                cancellation,
            )

            async for chunk in iterate_with_cancellation(response, cancellation):
                text = self._chunk_text(chunk)
                if cancellation is not None:
                    cancellation.raise_if_cancelled()
                if text:
                    yield StreamEvent.content(text)

        except (CancellationError, ProviderError):
            raise
        except Exception as e:
            raise ProviderError(
                message=f"Google streaming error: {e}",
                provider=self.name,
                model=self.model,
                raw_error=e,
                cause=e,
            ) from e
