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

"""Tunable limits for the funnel, decoder and conversation guards.

Single source of truth for thresholds that would otherwise be scattered
across the agent modules.

**Usage:**
    from auditflow.config.constants import FUNNEL_LIMITS, DECODER_LIMITS

    if estimate > FUNNEL_LIMITS.summarize_threshold:
        ...

    limits = FunnelLimits.for_context_window(profile.context_window)

**Note:** These are defaults. Settings and LLM profiles override most of them.
"""

from dataclasses import dataclass

DEFAULT_CONTEXT_WINDOW = 128_000


@dataclass(frozen=True)
class FunnelLimits:
    """Token budget thresholds for the context funnel.

    Attributes:
        summarize_threshold: Estimated tokens above which history is replaced
            by the conversation summary (T1).
        hard_threshold: Estimated tokens above which history is cut to the
            most recent turns regardless of summary (T2).
        summary_keep_messages: Dialog messages kept after summarization (K).
        hard_keep_messages: Dialog messages kept after a hard cut (M).
        per_message_overhead: Fixed token cost added per message.
        cjk_token_weight: Tokens per CJK ideograph.
        other_token_weight: Tokens per any other character.
    """

    summarize_threshold: int = 32_000
    hard_threshold: int = 64_000
    summary_keep_messages: int = 8
    hard_keep_messages: int = 4
    per_message_overhead: int = 20
    cjk_token_weight: float = 0.8
    other_token_weight: float = 0.4

    def __post_init__(self) -> None:
        # a window of two alternating messages always contains a user turn
        if self.hard_keep_messages < 2:
            raise ValueError("hard_keep_messages must be at least 2")
        if self.hard_keep_messages >= self.summary_keep_messages:
            raise ValueError("hard_keep_messages must be smaller than summary_keep_messages")
        if self.summarize_threshold > self.hard_threshold:
            raise ValueError("summarize_threshold must not exceed hard_threshold")

    @classmethod
    def for_context_window(cls, context_window: int) -> "FunnelLimits":
        """Derive T1 = W/4 and T2 = W/2 from a model's context window."""
        return cls(
            summarize_threshold=context_window // 4,
            hard_threshold=context_window // 2,
        )


@dataclass(frozen=True)
class DecoderLimits:
    """Structured-output decoding limits.

    Attributes:
        max_attempts: Model calls allowed per decode, including the first.
        raw_preview_chars: Characters of raw output kept on failure for logs.
    """

    max_attempts: int = 2
    raw_preview_chars: int = 500


@dataclass(frozen=True)
class GuardLimits:
    """Conversation log limits.

    Attributes:
        duplicate_window_seconds: Identical (role, text) appends inside this
            window are dropped.
        volatile_context_messages: Recent turns embedded in plan prompts.
        volatile_context_chars: Per-turn cap for those recent turns.
        pinned_document_chars: Per-document cap for pinned reference text.
        distill_keep_recent: Most recent messages excluded from a distill.
        distill_min_messages: Distill is skipped below this many messages.
    """

    duplicate_window_seconds: float = 0.8
    volatile_context_messages: int = 4
    volatile_context_chars: int = 500
    pinned_document_chars: int = 1000
    distill_keep_recent: int = 6
    distill_min_messages: int = 2


FUNNEL_LIMITS = FunnelLimits()
DECODER_LIMITS = DecoderLimits()
GUARD_LIMITS = GuardLimits()

__all__ = [
    "DEFAULT_CONTEXT_WINDOW",
    "FunnelLimits",
    "DecoderLimits",
    "GuardLimits",
    "FUNNEL_LIMITS",
    "DECODER_LIMITS",
    "GUARD_LIMITS",
]
