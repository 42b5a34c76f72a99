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

"""DeepSeek provider over the OpenAI-compatible chat completions API.

The response is a server-sent event stream. Each ``data:`` line carries a
JSON chunk whose ``choices[0].delta`` may hold ``reasoning_content`` (native
reasoning channel of the reasoner models) and/or ``content``. The stream ends
with ``data: [DONE]``.
"""

from __future__ import annotations

import json
from contextlib import aclosing
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from auditflow.core.cancellation import (
    CancellationToken,
    await_with_cancellation,
    iterate_with_cancellation,
)
from auditflow.core.errors import (
    ConfigurationError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from auditflow.providers.base import BaseProvider, Message, StreamEvent

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.deepseek.com"
DEFAULT_MODEL = "deepseek-chat"
COMPLETIONS_PATH = "/chat/completions"
DONE_SENTINEL = "[DONE]"


async def _close_response(response: httpx.Response) -> None:
    await response.aclose()


def normalize_endpoint(endpoint: Optional[str]) -> str:
    """Return an endpoint URL that ends with ``/chat/completions``."""
    url = (endpoint or DEFAULT_BASE_URL).strip()
    if url.endswith(COMPLETIONS_PATH):
        return url
    return url.rstrip("/") + COMPLETIONS_PATH


def parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode one SSE line.

    Returns:
        The decoded chunk, ``{}`` for lines that carry nothing (comments,
        keep-alives, malformed JSON), or ``None`` at the ``[DONE]`` sentinel.
    """
    stripped = line.strip()
    if not stripped.startswith("data:"):
        return {}
    payload = stripped[len("data:") :].strip()
    if payload == DONE_SENTINEL:
        return None
    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed SSE line: {payload[:100]}")
        return {}
    return chunk if isinstance(chunk, dict) else {}


def events_from_chunk(chunk: Dict[str, Any]) -> List[StreamEvent]:
    choices = chunk.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return []
    delta = choices[0].get("delta") or {}
    events = []
    reasoning = delta.get("reasoning_content")
    if isinstance(reasoning, str) and reasoning:
        events.append(StreamEvent.reasoning(reasoning))
    content = delta.get("content")
    if isinstance(content, str) and content:
        events.append(StreamEvent.content(content))
    return events


class DeepSeekProvider(BaseProvider):
    """Provider for DeepSeek chat and reasoner models."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        api_endpoint: Optional[str] = None,
        temperature: float = 0.7,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ConfigurationError(
                "DeepSeek API key is missing", config_key="deepseek_api_key"
            )
        super().__init__(model=model, temperature=temperature, timeout=timeout)
        self.api_key = api_key
        self.endpoint = normalize_endpoint(api_endpoint)
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @property
    def name(self) -> str:
        return "deepseek"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(
        self,
        messages: List[Message],
        system_prompt: Optional[str],
        json_mode: bool,
    ) -> Dict[str, Any]:
        api_messages: List[Dict[str, str]] = []
        if system_prompt:
            api_messages.append({"role": "system", "content": system_prompt})
        api_messages.extend({"role": m.role, "content": m.content} for m in messages)

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": api_messages,
            "stream": True,
            "temperature": self.temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def _status_error(self, status_code: int, body: str, headers: Any) -> ProviderError:
        message = f"DeepSeek API returned {status_code}"
        if isinstance(body, str) and body:
            message += f": {body[:300]}"
        if status_code in (401, 403):
            return ProviderAuthError(message, provider=self.name, status_code=status_code)
        if status_code == 429:
            retry_after = None
            raw = headers.get("retry-after") if headers is not None else None
            if isinstance(raw, str) and raw.isdigit():
                retry_after = int(raw)
            return ProviderRateLimitError(
                message, provider=self.name, retry_after=retry_after, status_code=status_code
            )
        return ProviderError(
            message, provider=self.name, model=self.model, status_code=status_code
        )

    @staticmethod
    async def _error_body(response: httpx.Response) -> str:
        try:
            await response.aread()
            return response.text
        except httpx.HTTPError:
            return ""

    async def stream(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
        cancellation: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamEvent]:
        payload = self._build_payload(messages, system_prompt, json_mode)
        if cancellation is not None:
            cancellation.raise_if_cancelled()

        request = self.client.build_request(
            "POST", self.endpoint, json=payload, headers=self._headers()
        )
        try:
            response = await await_with_cancellation(
                self.client.send(request, stream=True),
                cancellation,
                discard=_close_response,
            )
            try:
                try:
                    response.raise_for_status()
                except httpx.HTTPStatusError as e:
                    body = await self._error_body(response)
                    raise self._status_error(
                        e.response.status_code, body, e.response.headers
                    ) from e

                lines = iterate_with_cancellation(response.aiter_lines(), cancellation)
                async with aclosing(lines):
                    async for line in lines:
                        chunk = parse_sse_line(line)
                        if chunk is None:
                            break
                        for event in events_from_chunk(chunk):
                            yield event
            finally:
                await response.aclose()

        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"DeepSeek request timed out after {self.timeout}s",
                provider=self.name,
                timeout=self.timeout,
                cause=e,
            ) from e
        except httpx.RequestError as e:
            raise ProviderConnectionError(
                f"DeepSeek connection error: {e}", provider=self.name, cause=e
            ) from e

    async def close(self) -> None:
        await self.client.aclose()
