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

"""Tests for the reasoning demultiplexer."""

import pytest

from auditflow.agent.stream_demux import (
    ReasoningDemultiplexer,
    demultiplex,
    strip_reasoning_markup,
)
from auditflow.providers.base import EventKind, StreamEvent


def split(events):
    reasoning = "".join(e.text for e in events if e.kind == EventKind.REASONING)
    content = "".join(e.text for e in events if e.kind == EventKind.CONTENT)
    return reasoning, content


def feed_all(chunks, demux=None):
    demux = demux or ReasoningDemultiplexer()
    events = []
    for chunk in chunks:
        events.extend(demux.feed(chunk))
    events.extend(demux.flush())
    return events


class TestReasoningDemultiplexer:
    def test_plain_content_passes_through(self):
        assert split(feed_all(["Hello ", "world"])) == ("", "Hello world")

    def test_marker_split_mid_word(self):
        """Close marker inside the second chunk splits the word exactly at the marker."""
        events = feed_all(["<think>Focus on pro", "cure</think>ment risk"])
        reasoning, content = split(events)
        assert reasoning == "Focus on procure"
        assert content == "ment risk"
        assert all("<" not in e.text and ">" not in e.text for e in events)

    def test_marker_split_across_chunks(self):
        events = feed_all(["before <th", "ink>inner</th", "ink> after"])
        assert split(events) == ("inner", "before  after")

    def test_partial_marker_is_held_not_emitted(self):
        demux = ReasoningDemultiplexer()
        assert [e.text for e in demux.feed("text <thi")] == ["text "]
        assert demux.in_reasoning is False
        demux.feed("nk>")
        assert demux.in_reasoning is True

    def test_false_partial_marker_is_released(self):
        events = feed_all(["a <thin", "g> b"])
        assert split(events) == ("", "a <thing> b")

    def test_unclosed_reasoning_flushes_as_reasoning(self):
        assert split(feed_all(["<think>still thinking"])) == ("still thinking", "")

    def test_stray_close_marker_is_literal(self):
        assert split(feed_all(["oops</think> text"])) == ("", "oops</think> text")

    def test_multiple_blocks(self):
        events = feed_all(["<think>a</think>b<think>c</think>d"])
        assert split(events) == ("ac", "bd")
        assert [e.kind for e in events] == [
            EventKind.REASONING,
            EventKind.CONTENT,
            EventKind.REASONING,
            EventKind.CONTENT,
        ]

    def test_native_reasoning_bypasses_scanner(self):
        demux = ReasoningDemultiplexer()
        out = demux.process(StreamEvent.reasoning("<think>native"))
        assert out == [StreamEvent.reasoning("<think>native")]
        assert demux.in_reasoning is False
        assert demux.process(StreamEvent.reasoning("")) == []

    def test_custom_markers(self):
        demux = ReasoningDemultiplexer("[[", "]]")
        assert split(feed_all(["x[[y]", "]z"], demux)) == ("y", "xz")

    def test_empty_markers_rejected(self):
        with pytest.raises(ValueError):
            ReasoningDemultiplexer("", "</think>")

    def test_reset(self):
        demux = ReasoningDemultiplexer()
        demux.feed("<think>abc<")
        demux.reset()
        assert demux.in_reasoning is False
        assert demux.flush() == []


@pytest.mark.asyncio
async def test_demultiplex_async_stream():
    async def source():
        yield StreamEvent.reasoning("native ")
        yield StreamEvent.content("<think>Focus on pro")
        yield StreamEvent.content("cure</think>ment risk")

    events = [e async for e in demultiplex(source())]
    assert split(events) == ("native Focus on procure", "ment risk")


class TestStripReasoningMarkup:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("", ""),
            ("plain", "plain"),
            ("<think>hidden</think> visible ", "visible"),
            ("a</think>b", "ab"),
            ("<think>unterminated", "unterminated"),
            ("<think>x\ny</think>\n{\"a\": 1}", "{\"a\": 1}"),
            ("<th<think>z</think>ink>", ""),
        ],
    )
    def test_strip(self, text, expected):
        assert strip_reasoning_markup(text) == expected

    def test_idempotent(self):
        text = "<<think>a</think>think>b</think>c"
        once = strip_reasoning_markup(text)
        assert strip_reasoning_markup(once) == once
