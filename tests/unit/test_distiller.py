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

"""Tests for background conversation distillation."""

import asyncio
import logging

import pytest

from auditflow.agent.collaborators import InMemoryProjectStore
from auditflow.agent.conversation import ChatMessage
from auditflow.agent.distiller import (
    AUXILIARY_PREVIEW_CHARS,
    ContextDistiller,
    _qualitative,
)
from auditflow.agent.summary import ConversationSummary, SummaryStore
from auditflow.config.constants import FunnelLimits
from auditflow.core.errors import ProviderConnectionError
from tests.factories import ScriptedProvider, failing_script, text_script

SMALL = FunnelLimits(
    summarize_threshold=50,
    hard_threshold=1000,
    summary_keep_messages=4,
    hard_keep_messages=2,
    per_message_overhead=5,
)


def history(count):
    roles = ["user", "assistant"]
    return [
        ChatMessage(role=roles[i % 2], text=f"turn {i}: " + "procurement " * 5) for i in range(count)
    ]


@pytest.fixture
def summaries():
    return SummaryStore()


class TestQualitative:
    def test_string(self):
        assert _qualitative("<think>x</think>Program misses pricing risk") == "Program misses pricing risk"

    def test_finding_analysis_uses_summary(self):
        value = {"aiAnalysis": {"summary": "Orders are split"}, "actionItems": []}
        assert _qualitative(value) == "Orders are split"

    def test_other_values_serialized_and_truncated(self):
        text = _qualitative([{"scenario": "s" * 1000}])
        assert text.startswith('[{"scenario": "sss')
        assert len(text) == AUXILIARY_PREVIEW_CHARS + 3
        assert text.endswith("...")


class TestCandidates:
    def test_recent_and_empty_messages_excluded(self, summaries):
        distiller = ContextDistiller(ScriptedProvider(), summaries, keep_recent=2)
        messages = history(5) + [ChatMessage(role="assistant", text="  ")]
        assert distiller.candidates(messages) == messages[:3]

    def test_short_history_has_no_candidates(self, summaries):
        distiller = ContextDistiller(ScriptedProvider(), summaries, keep_recent=6)
        assert distiller.candidates(history(4)) == []

    def test_needs_distill(self, summaries):
        distiller = ContextDistiller(ScriptedProvider(), summaries, keep_recent=2)
        assert distiller.needs_distill(history(1), SMALL) is False
        assert distiller.needs_distill(history(6), SMALL) is True

        summaries.replace(ConversationSummary(history_summary="x", source_message_count=4))
        assert distiller.needs_distill(history(6), SMALL) is False
        assert distiller.needs_distill(history(8), SMALL) is True


class TestDistill:
    @pytest.mark.asyncio
    async def test_too_few_messages_skips_model_call(self, summaries):
        provider = ScriptedProvider([text_script("unused")])
        distiller = ContextDistiller(provider, summaries, keep_recent=2)

        assert await distiller.distill(history(3)) is None
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_summary_replaces_previous(self, summaries):
        store = InMemoryProjectStore(
            artifacts={
                "last_fraud_result": [{"scenario": "Kickbacks"}],
                "last_finding_result": {"aiAnalysis": {"summary": "Approvals bypassed"}},
            }
        )
        summaries.replace(ConversationSummary(history_summary="old", source_message_count=1))
        provider = ScriptedProvider([text_script("<think>draft</think>", "Scope agreed: procurement.")])
        distiller = ContextDistiller(provider, summaries, store, keep_recent=2)
        messages = history(6)

        summary = await distiller.distill(messages)

        assert summary is summaries.current
        assert summary.history_summary == "Scope agreed: procurement."
        assert summary.source_message_count == 4
        assert summary.auxiliary_summaries == [
            'Fraud analysis: [{"scenario": "Kickbacks"}]',
            "Finding analysis: Approvals bypassed",
        ]
        prompt = provider.calls[0].prompt
        assert "user: turn 0:" in prompt
        assert "assistant: turn 3:" in prompt
        assert "turn 4:" not in prompt

    @pytest.mark.asyncio
    async def test_empty_response_keeps_previous(self, summaries, caplog):
        previous = ConversationSummary(history_summary="old")
        summaries.replace(previous)
        distiller = ContextDistiller(
            ScriptedProvider([text_script("<think>nothing useful</think>")]), summaries, keep_recent=2
        )

        with caplog.at_level(logging.WARNING, logger="auditflow.agent.distiller"):
            assert await distiller.distill(history(6)) is None

        assert summaries.current is previous
        assert "empty summary" in caplog.text


class TestSchedule:
    @pytest.mark.asyncio
    async def test_one_distill_at_a_time(self, summaries):
        provider = ScriptedProvider([text_script("Summary.")])
        distiller = ContextDistiller(provider, summaries, keep_recent=2)
        messages = history(6)

        task = distiller.schedule_if_needed(messages, SMALL)
        assert task is not None
        assert distiller.schedule_if_needed(messages, SMALL) is None

        await task
        assert summaries.current.history_summary == "Summary."
        assert distiller.schedule_if_needed(messages, SMALL) is None
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_under_threshold_not_scheduled(self, summaries):
        distiller = ContextDistiller(ScriptedProvider(), summaries, keep_recent=2)
        assert distiller.schedule_if_needed(history(6), FunnelLimits()) is None

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_previous_kept(self, summaries, caplog):
        previous = ConversationSummary(history_summary="old")
        summaries.replace(previous)
        provider = ScriptedProvider([failing_script(ProviderConnectionError("down"))])
        distiller = ContextDistiller(provider, summaries, keep_recent=2)

        with caplog.at_level(logging.ERROR, logger="auditflow.core.task_manager"):
            task = distiller.schedule_if_needed(history(6), SMALL)
            with pytest.raises(ProviderConnectionError):
                await task
            await asyncio.sleep(0)

        assert summaries.current is previous
        assert "Background task failed: distill_context" in caplog.text
        assert distiller.active_task_count == 0

    @pytest.mark.asyncio
    async def test_aclose_cancels_running_distill(self, summaries):
        provider = ScriptedProvider([text_script("partial", hang=True)])
        distiller = ContextDistiller(provider, summaries, keep_recent=2)

        task = distiller.schedule_if_needed(history(6), SMALL)
        await provider.hanging.wait()
        await distiller.aclose()

        assert task.cancelled()
        assert summaries.current is None
