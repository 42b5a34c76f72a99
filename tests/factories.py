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

"""Test factories for providers, settings and conversation fixtures.

This module provides:
- Script / ScriptedProvider: a provider that replays scripted event lists
  and records every call it receives
- SettingsBuilder: build Settings with different configurations
- ManualClock: a controllable monotonic clock for the duplicate guard

Usage:
    from tests.factories import ScriptedProvider, text_script

    provider = ScriptedProvider([text_script("Plan: ", "review invoices")])
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from auditflow.config.settings import Settings
from auditflow.core.cancellation import CancellationToken, iterate_with_cancellation
from auditflow.providers.base import BaseProvider, Message, StreamEvent

ScriptItem = Union[StreamEvent, Exception]


@dataclass
class Script:
    """Events one provider call replays.

    Attributes:
        events: Events (or exceptions to raise) in order.
        hang: Block after the last event until the call is cancelled.
    """

    events: List[ScriptItem] = field(default_factory=list)
    hang: bool = False


def text_script(*chunks: str, hang: bool = False) -> Script:
    """Script of content events, one per chunk."""
    return Script([StreamEvent.content(c) for c in chunks], hang=hang)


def json_script(payload: str, chunk_size: int = 16) -> Script:
    """Script that streams ``payload`` as content in fixed-size chunks."""
    chunks = [payload[i : i + chunk_size] for i in range(0, len(payload), chunk_size)]
    return text_script(*chunks)


def failing_script(error: Exception, *chunks: str) -> Script:
    return Script([StreamEvent.content(c) for c in chunks] + [error])


@dataclass
class ProviderCall:
    messages: List[Message]
    system_prompt: Optional[str]
    json_mode: bool
    cancellation: Optional[CancellationToken]

    @property
    def prompt(self) -> str:
        """Content of the last message, which carries the prompt."""
        return self.messages[-1].content if self.messages else ""


class ScriptedProvider(BaseProvider):
    """Provider double that replays one ``Script`` per call.

    Calls beyond the prepared scripts replay an empty stream. ``hanging`` is
    set whenever a script starts blocking, so tests can cancel at a known
    point mid-stream.
    """

    def __init__(self, scripts: Optional[List[Script]] = None, model: str = "scripted-model"):
        super().__init__(model=model)
        self.scripts: List[Script] = list(scripts or [])
        self.calls: List[ProviderCall] = []
        self.hanging = asyncio.Event()
        self.closed = False

    @property
    def name(self) -> str:
        return "scripted"

    def queue(self, *scripts: Script) -> "ScriptedProvider":
        self.scripts.extend(scripts)
        return self

    async def _replay(self, script: Script) -> AsyncIterator[StreamEvent]:
        for item in script.events:
            await asyncio.sleep(0)
            if isinstance(item, Exception):
                raise item
            yield item
        if script.hang:
            self.hanging.set()
            await asyncio.Event().wait()

    async def stream(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
        cancellation: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamEvent]:
        self.calls.append(ProviderCall(list(messages), system_prompt, json_mode, cancellation))
        script = self.scripts.pop(0) if self.scripts else Script()
        async for event in iterate_with_cancellation(self._replay(script), cancellation):
            yield event

    async def close(self) -> None:
        self.closed = True


class SettingsBuilder:
    """Builder for Settings with test-friendly defaults.

    Examples:
        settings = SettingsBuilder().with_retry_on_cancel().build()
    """

    def __init__(self) -> None:
        self._overrides: Dict[str, Any] = {}

    def with_max_attempts(self, attempts: int) -> "SettingsBuilder":
        self._overrides["structured_output_max_attempts"] = attempts
        return self

    def with_retry_on_cancel(self, enabled: bool = True) -> "SettingsBuilder":
        self._overrides["offer_retry_on_cancel"] = enabled
        return self

    def with_distill_keep_recent(self, keep: int) -> "SettingsBuilder":
        self._overrides["distill_keep_recent"] = keep
        return self

    def with_override(self, **overrides: Any) -> "SettingsBuilder":
        self._overrides.update(overrides)
        return self

    def build(self) -> Settings:
        return Settings(**self._overrides)


class ManualClock:
    """Monotonic clock whose time only moves when told to."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
