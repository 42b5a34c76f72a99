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

"""Split inline reasoning markers out of a content stream.

Models without a native reasoning channel emit ``<think>...</think>`` inside
ordinary content. Chunk boundaries are arbitrary, so a marker may arrive as
``"<th"`` + ``"ink>"``. The demultiplexer buffers only the trailing bytes
that could still become a marker and releases everything else immediately.

Guarantee: for any split of the same input into chunks, the concatenation of
emitted reasoning text and of emitted content text is identical.

Example:
    demux = ReasoningDemultiplexer()
    events = demux.feed("<think>Focus on pro")
    events += demux.feed("cure</think>ment risk")
    events += demux.flush()
    # reasoning: "Focus on procure", content: "ment risk"
"""

from __future__ import annotations

import re
from typing import AsyncIterator, List

from auditflow.providers.base import EventKind, StreamEvent

DEFAULT_OPEN_TAG = "<think>"
DEFAULT_CLOSE_TAG = "</think>"


def _held_suffix_length(buffer: str, marker: str) -> int:
    """Length of the longest buffer suffix that is a proper prefix of ``marker``."""
    longest = min(len(buffer), len(marker) - 1)
    for size in range(longest, 0, -1):
        if marker.startswith(buffer[-size:]):
            return size
    return 0


class ReasoningDemultiplexer:
    """Two-state marker scanner over a content stream.

    Never raises on malformed input: a close marker seen while in content
    state, or an open marker seen while in reasoning state, is literal text.
    """

    def __init__(self, open_tag: str = DEFAULT_OPEN_TAG, close_tag: str = DEFAULT_CLOSE_TAG):
        if not open_tag or not close_tag:
            raise ValueError("reasoning markers must be non-empty")
        self.open_tag = open_tag
        self.close_tag = close_tag
        self._in_reasoning = False
        self._buffer = ""

    @property
    def in_reasoning(self) -> bool:
        return self._in_reasoning

    def _current_kind(self) -> EventKind:
        return EventKind.REASONING if self._in_reasoning else EventKind.CONTENT

    def _target_marker(self) -> str:
        return self.close_tag if self._in_reasoning else self.open_tag

    def feed(self, text: str) -> List[StreamEvent]:
        """Consume one content chunk and return the events it releases."""
        events: List[StreamEvent] = []
        self._buffer += text
        while self._buffer:
            marker = self._target_marker()
            index = self._buffer.find(marker)
            if index >= 0:
                if index > 0:
                    events.append(StreamEvent(self._current_kind(), self._buffer[:index]))
                self._buffer = self._buffer[index + len(marker) :]
                self._in_reasoning = not self._in_reasoning
                continue

            held = _held_suffix_length(self._buffer, marker)
            emit_upto = len(self._buffer) - held
            if emit_upto > 0:
                events.append(StreamEvent(self._current_kind(), self._buffer[:emit_upto]))
                self._buffer = self._buffer[emit_upto:]
            break
        return events

    def process(self, event: StreamEvent) -> List[StreamEvent]:
        """Route one provider event. Native reasoning bypasses the scanner."""
        if event.kind == EventKind.REASONING:
            return [event] if event.text else []
        return self.feed(event.text)

    def flush(self) -> List[StreamEvent]:
        """Release whatever is still buffered under the current state."""
        if not self._buffer:
            return []
        event = StreamEvent(self._current_kind(), self._buffer)
        self._buffer = ""
        return [event]

    def reset(self) -> None:
        self._in_reasoning = False
        self._buffer = ""


async def demultiplex(
    stream: AsyncIterator[StreamEvent],
    open_tag: str = DEFAULT_OPEN_TAG,
    close_tag: str = DEFAULT_CLOSE_TAG,
) -> AsyncIterator[StreamEvent]:
    """Async wrapper: demultiplex a provider event stream."""
    demux = ReasoningDemultiplexer(open_tag, close_tag)
    async for event in stream:
        for out in demux.process(event):
            yield out
    for out in demux.flush():
        yield out


def strip_reasoning_markup(
    text: str,
    open_tag: str = DEFAULT_OPEN_TAG,
    close_tag: str = DEFAULT_CLOSE_TAG,
) -> str:
    """Remove complete reasoning blocks and orphaned markers, then trim."""
    if not text:
        return ""
    block = re.compile(re.escape(open_tag) + r".*?" + re.escape(close_tag), re.DOTALL)
    cleaned = text
    # removing a marker can splice a new one together, so repeat until stable
    while True:
        previous = cleaned
        cleaned = block.sub("", cleaned)
        cleaned = cleaned.replace(close_tag, "").replace(open_tag, "")
        if cleaned == previous:
            break
    return cleaned.strip()
