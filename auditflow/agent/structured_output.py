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

"""Structured-output decoder: ask for JSON, repair it, validate it, re-prompt on failure.

Each attempt streams the model's answer in JSON mode through the reasoning
demultiplexer. Reasoning is forwarded to the caller as it arrives; content is
accumulated and decoded only once the stream ends. A failed parse or a
validation issue draws one attempt from the ``RetryBudget`` and re-issues the
original prompt with a correction note quoting the error. Bracket repair is
part of parsing and never costs an attempt.

Transport errors and cancellation abort immediately without touching the
budget.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from auditflow.agent.context_funnel import sanitize_messages
from auditflow.agent.json_repair import JSONExtractionError, extract_json
from auditflow.agent.schemas import Normalizer, ValidationIssue, Validator
from auditflow.agent.stream_demux import (
    DEFAULT_CLOSE_TAG,
    DEFAULT_OPEN_TAG,
    demultiplex,
    strip_reasoning_markup,
)
from auditflow.agent.stream_handler import StreamHandler
from auditflow.config.constants import DECODER_LIMITS
from auditflow.core.cancellation import CancellationToken
from auditflow.core.errors import StructuredOutputError
from auditflow.core.retry import RetryBudget
from auditflow.providers.base import BaseProvider, Message

logger = logging.getLogger(__name__)

CORRECTION_TEMPLATE = (
    "{prompt}\n\n"
    "Correction: the JSON you produced last time was incomplete or invalid. "
    "Regenerate the complete JSON and output nothing else. Error: {issue}"
)


class _ValidationFailed(Exception):
    def __init__(self, issue: ValidationIssue):
        super().__init__(str(issue))
        self.issue = issue


def build_correction_prompt(prompt: str, issue: str) -> str:
    return CORRECTION_TEMPLATE.format(prompt=prompt, issue=issue)


class StructuredOutputDecoder:
    """Decode a validated JSON value from a provider stream.

    Args:
        provider: Provider to call in JSON mode.
        max_attempts: Model calls allowed per ``decode`` (first call included).
        open_tag: Inline reasoning open marker.
        close_tag: Inline reasoning close marker.
    """

    def __init__(
        self,
        provider: BaseProvider,
        max_attempts: int = DECODER_LIMITS.max_attempts,
        open_tag: str = DEFAULT_OPEN_TAG,
        close_tag: str = DEFAULT_CLOSE_TAG,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")
        self.provider = provider
        self.max_attempts = max_attempts
        self.open_tag = open_tag
        self.close_tag = close_tag

    def _parse(
        self, raw: str, validate: Optional[Validator], normalize: Optional[Normalizer] = None
    ) -> Any:
        """Parse and validate ``raw``; raises ``JSONExtractionError`` or returns data.

        Validation issues are raised as ``_ValidationFailed`` so both failure
        kinds share one retry path.
        """
        cleaned = strip_reasoning_markup(raw, self.open_tag, self.close_tag)
        data = extract_json(cleaned)
        if normalize is not None:
            data = normalize(data)
        if validate is not None:
            issue = validate(data)
            if issue is not None:
                raise _ValidationFailed(issue)
        return data

    async def decode(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        validate: Optional[Validator] = None,
        cancellation: Optional[CancellationToken] = None,
        on_reasoning: Optional[Callable[[str], None]] = None,
        on_content: Optional[Callable[[str], None]] = None,
        budget: Optional[RetryBudget] = None,
        normalize: Optional[Normalizer] = None,
    ) -> Any:
        """Run attempts until a payload parses and validates.

        Args:
            prompt: User prompt describing the desired JSON.
            system_prompt: Optional system instruction.
            validate: Returns a ``ValidationIssue`` for unacceptable data.
            cancellation: Token shared with the calling task.
            on_reasoning: Receives reasoning text as it streams.
            on_content: Receives raw content text as it streams.
            budget: Attempt budget; a fresh one is created when omitted.
            normalize: Reshapes the parsed JSON before validation.

        Returns:
            The decoded JSON value, normalized when ``normalize`` is given.

        Raises:
            StructuredOutputError: When every attempt fails.
            ProviderError: On transport failure (not retried).
            CancellationError: When the token is signalled.
        """
        budget = budget or RetryBudget(max_attempts=self.max_attempts)
        current_prompt = prompt
        raw = ""

        while not budget.exhausted:
            attempt = budget.attempt + 1
            if cancellation is not None:
                cancellation.raise_if_cancelled()

            handler = StreamHandler(on_reasoning=on_reasoning, on_content=on_content)
            events = self.provider.stream(
                sanitize_messages([Message(role="user", content=current_prompt)]),
                system_prompt=system_prompt,
                json_mode=True,
                cancellation=cancellation,
            )
            result = await handler.process_stream(
                demultiplex(events, self.open_tag, self.close_tag)
            )
            raw = result.content

            try:
                return self._parse(raw, validate, normalize)
            except (JSONExtractionError, _ValidationFailed) as e:
                issue = str(e)
                budget.consume()
                budget.record_issue(issue)
                logger.warning(
                    f"Structured output attempt {attempt}/{budget.max_attempts} failed: {issue}"
                )
                current_prompt = build_correction_prompt(prompt, issue)

        raise StructuredOutputError(
            f"Structured output failed after {budget.attempt} attempt(s): {budget.last_issue}",
            attempts=budget.attempt,
            last_issue=budget.last_issue,
            raw_output=raw[: DECODER_LIMITS.raw_preview_chars],
        )


__all__: List[str] = [
    "StructuredOutputDecoder",
    "build_correction_prompt",
    "CORRECTION_TEMPLATE",
]
