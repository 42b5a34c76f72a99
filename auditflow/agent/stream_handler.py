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

"""Accumulate a demultiplexed event stream while forwarding it live."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, List, Optional

from auditflow.core.errors import ProviderTimeoutError
from auditflow.providers.base import EventKind, StreamEvent

logger = logging.getLogger(__name__)


@dataclass
class StreamMetrics:
    """Metrics collected during streaming."""

    start_time: float = 0.0
    first_token_time: Optional[float] = None
    end_time: float = 0.0
    total_events: int = 0
    content_length: int = 0
    reasoning_length: int = 0

    @property
    def time_to_first_token(self) -> Optional[float]:
        """Time from start to first token of either kind (TTFT)."""
        if self.first_token_time and self.start_time:
            return self.first_token_time - self.start_time
        return None

    @property
    def total_duration(self) -> float:
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        return 0.0

    @property
    def tokens_per_second(self) -> float:
        """Rough throughput estimate at ~4 chars per token."""
        duration = self.total_duration
        if duration > 0:
            return (self.content_length + self.reasoning_length) / 4 / duration
        return 0.0


@dataclass
class StreamResult:
    """Result from processing a stream."""

    content: str = ""
    reasoning: str = ""
    metrics: StreamMetrics = field(default_factory=StreamMetrics)


class StreamHandler:
    """Consumes ``StreamEvent`` values, invoking callbacks as text arrives.

    Provider and cancellation errors propagate to the caller unchanged.
    A failing callback is logged and does not interrupt the stream.
    """

    def __init__(
        self,
        on_reasoning: Optional[Callable[[str], None]] = None,
        on_content: Optional[Callable[[str], None]] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize stream handler.

        Args:
            on_reasoning: Callback for each reasoning fragment
            on_content: Callback for each content fragment
            timeout: Maximum seconds for the whole stream; None for no limit
        """
        self.on_reasoning = on_reasoning
        self.on_content = on_content
        self.timeout = timeout

    @staticmethod
    def _notify(callback: Optional[Callable[[str], None]], text: str, label: str) -> None:
        if callback is None:
            return
        try:
            callback(text)
        except Exception as e:
            logger.warning(f"{label} callback error: {e}")

    async def process_stream(self, stream: AsyncIterator[StreamEvent]) -> StreamResult:
        """Drain ``stream`` and return the accumulated texts and metrics."""
        metrics = StreamMetrics(start_time=time.time())
        content_parts: List[str] = []
        reasoning_parts: List[str] = []

        async def _drain() -> None:
            async for event in stream:
                if not event.text:
                    continue
                metrics.total_events += 1
                if metrics.first_token_time is None:
                    metrics.first_token_time = time.time()
                if event.kind == EventKind.REASONING:
                    reasoning_parts.append(event.text)
                    metrics.reasoning_length += len(event.text)
                    self._notify(self.on_reasoning, event.text, "Reasoning")
                else:
                    content_parts.append(event.text)
                    metrics.content_length += len(event.text)
                    self._notify(self.on_content, event.text, "Content")

        try:
            if self.timeout is None:
                await _drain()
            else:
                await asyncio.wait_for(_drain(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"Stream timed out after {self.timeout}s", timeout=self.timeout, cause=e
            ) from e
        finally:
            metrics.end_time = time.time()

        logger.debug(
            f"Stream complete: {metrics.total_events} events, "
            f"TTFT={metrics.time_to_first_token}, {metrics.tokens_per_second:.1f} tok/s"
        )
        return StreamResult(
            content="".join(content_parts),
            reasoning="".join(reasoning_parts),
            metrics=metrics,
        )
