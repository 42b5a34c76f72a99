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

"""Prompt templates and the context blocks embedded in them.

Templates are deliberately short; host applications replace them through
``WorkflowDefinition`` when they need domain copy.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from auditflow.agent.collaborators import PinnedDocument
from auditflow.agent.conversation import ChatMessage
from auditflow.agent.drill import AuditeeProfile, DrillTurn, format_drill_history
from auditflow.agent.schemas import (
    AUDIT_PROGRAM_EXAMPLE,
    FEASIBILITY_EXAMPLE,
    FINDING_ANALYSIS_EXAMPLE,
    FRAUD_CASES_EXAMPLE,
    GUIDANCE_OPTIONS_EXAMPLE,
)
from auditflow.agent.stream_demux import strip_reasoning_markup

AUDITOR_SYSTEM_PROMPT = (
    "You are an experienced internal audit assistant. Be precise, cite the "
    "project material you rely on, and say when information is missing."
)

JSON_ONLY_INSTRUCTION = "Respond with JSON only, matching this structure:"

PINNED_CONTEXT_ACK = "Received. I will use these documents as reference."

PINNED_CONTEXT_INTRO = "Reference documents for this audit project:"

# Project artifacts the prompt builders read through ``PromptContext``.
PROMPT_ARTIFACT_KEYS = ("current_program", "findings")

DISTILL_PROMPT = (
    "Summarize the conversation below for later reference. Keep decisions, "
    "agreed facts, open questions and conclusions. Drop greetings and "
    "repetition. Write plain prose, at most 300 words.\n\n{transcript}"
)


@dataclass
class PromptContext:
    """Context blocks available to every workflow prompt.

    Attributes:
        reference: Pinned document text, already truncated.
        volatile: Most recent conversation turns, already truncated.
        artifacts: Project artifacts keyed by name.
    """

    reference: str = ""
    volatile: str = ""
    artifacts: Dict[str, Any] = field(default_factory=dict)

    def artifact_text(self, key: str, default: str = "(none)") -> str:
        value = self.artifacts.get(key)
        if value is None or value == "":
            return default
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, default=str)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def build_reference_context(documents: Sequence[PinnedDocument], max_chars: int) -> str:
    """Concatenate pinned documents, each capped at ``max_chars``."""
    parts = [
        f"### {doc.name}\n{_truncate(doc.text.strip(), max_chars)}"
        for doc in documents
        if doc.text and doc.text.strip()
    ]
    return "\n\n".join(parts)


def build_volatile_context(messages: Sequence[ChatMessage], count: int, max_chars: int) -> str:
    """Render the last ``count`` turns as ``Role: text`` lines."""
    if count <= 0:
        return ""
    lines: List[str] = []
    for message in list(messages)[-count:]:
        text = strip_reasoning_markup(message.text)
        if not text:
            continue
        role = "User" if message.role == "user" else "Assistant"
        lines.append(f"{role}: {_truncate(text, max_chars)}")
    return "\n\n".join(lines)


def _with_context(body: str, ctx: PromptContext) -> str:
    sections = [body]
    if ctx.volatile:
        sections.append(f"## Recent conversation\n{ctx.volatile}")
    if ctx.reference:
        sections.append(f"## Reference documents\n{ctx.reference}")
    return "\n\n".join(sections)


def _json_format(example: Any) -> str:
    return f"{JSON_ONLY_INSTRUCTION}\n{json.dumps(example, ensure_ascii=False, indent=2)}"


# Audit program


def audit_program_plan_prompt(inputs: Dict[str, Any], ctx: PromptContext) -> str:
    body = (
        "Draft a plan for building an audit program.\n"
        f"Request: {inputs.get('request', '')}\n"
        "List the audit objective, the key risk areas and the procedures you "
        "intend to write. Do not write the procedures yet."
    )
    return _with_context(body, ctx)


def audit_program_execute_prompt(plan: str, inputs: Dict[str, Any], ctx: PromptContext) -> str:
    body = (
        "Write the audit program following the approved plan.\n"
        f"## Approved plan\n{plan}\n\n{_json_format(AUDIT_PROGRAM_EXAMPLE)}"
    )
    return _with_context(body, ctx)


# Challenge


def challenge_plan_prompt(inputs: Dict[str, Any], ctx: PromptContext) -> str:
    focus = inputs.get("focus_note") or "no specific focus"
    body = (
        "Act as a skeptical reviewer of the current audit program and outline "
        "how you will challenge it.\n"
        f"Focus: {focus}\n"
        f"## Current program\n{ctx.artifact_text('current_program')}"
    )
    return _with_context(body, ctx)


def challenge_execute_prompt(plan: str, inputs: Dict[str, Any], ctx: PromptContext) -> str:
    body = (
        "Carry out the approved challenge plan against the current program. "
        "For each weakness state the gap, why it matters and a concrete fix.\n"
        f"## Approved plan\n{plan}\n\n"
        f"## Current program\n{ctx.artifact_text('current_program')}"
    )
    return _with_context(body, ctx)


# Fraud analysis


def fraud_plan_prompt(inputs: Dict[str, Any], ctx: PromptContext) -> str:
    body = (
        "This is a defensive fraud-risk exercise. Outline the fraud scenarios "
        "you will examine against the current program and why.\n"
        f"Request: {inputs.get('request') or 'general fraud risk review'}\n"
        f"## Current program\n{ctx.artifact_text('current_program')}"
    )
    return _with_context(body, ctx)


def fraud_execute_prompt(plan: str, inputs: Dict[str, Any], ctx: PromptContext) -> str:
    body = (
        "Develop the fraud scenarios from the approved plan and assess whether "
        "existing procedures would detect them.\n"
        f"## Approved plan\n{plan}\n\n"
        f"## Current program\n{ctx.artifact_text('current_program')}\n\n"
        f"{_json_format(FRAUD_CASES_EXAMPLE)}"
        "\nIf only a JSON object is allowed, return {\"cases\": [...]} holding the array."
    )
    return _with_context(body, ctx)


# Finding root-cause analysis


def _finding_block(inputs: Dict[str, Any]) -> str:
    return (
        f"Condition: {inputs.get('condition', '')}\n"
        f"Criteria: {inputs.get('criteria', '')}\n"
        f"Effect: {inputs.get('effect', '')}"
    )


def finding_plan_prompt(inputs: Dict[str, Any], ctx: PromptContext) -> str:
    body = (
        "Plan a root-cause analysis for this audit finding. Say which "
        "hypotheses you will test and what evidence would confirm them.\n"
        f"{_finding_block(inputs)}"
    )
    return _with_context(body, ctx)


def finding_execute_prompt(plan: str, inputs: Dict[str, Any], ctx: PromptContext) -> str:
    body = (
        "Perform the root-cause analysis following the approved plan.\n"
        f"{_finding_block(inputs)}\n\n## Approved plan\n{plan}\n\n"
        f"{_json_format(FINDING_ANALYSIS_EXAMPLE)}"
    )
    return _with_context(body, ctx)


# Report


def report_plan_prompt(inputs: Dict[str, Any], ctx: PromptContext) -> str:
    body = (
        "Outline the audit report: sections, key messages and which findings "
        "go where.\n"
        f"Audience: {inputs.get('audience') or 'management'}\n"
        f"## Findings\n{ctx.artifact_text('findings')}"
    )
    return _with_context(body, ctx)


def report_execute_prompt(plan: str, inputs: Dict[str, Any], ctx: PromptContext) -> str:
    body = (
        "Write the audit report in Markdown following the approved outline.\n"
        f"## Approved outline\n{plan}\n\n## Findings\n{ctx.artifact_text('findings')}"
    )
    return _with_context(body, ctx)


# One-shot helpers


def feasibility_prompt(procedure: Dict[str, Any], ctx: PromptContext) -> str:
    body = (
        "Assess how feasible it is to carry out this audit procedure and how "
        "to overcome the difficulties.\n"
        f"## Procedure\n{json.dumps(procedure, ensure_ascii=False)}\n\n"
        f"{_json_format(FEASIBILITY_EXAMPLE)}"
    )
    return _with_context(body, ctx)


def guidance_options_prompt(question: str, ctx: PromptContext) -> str:
    body = (
        "Suggest short answer options the auditor could pick for this "
        f"question.\nQuestion: {question}\n\n{_json_format(GUIDANCE_OPTIONS_EXAMPLE)}"
    )
    return _with_context(body, ctx)


# Finding questions and communication drill


def finding_questions_prompt(finding: Dict[str, Any], ctx: PromptContext) -> str:
    body = (
        "You are the audit manager reviewing this preliminary finding. Ask 3 to 5 "
        "pointed follow-up questions that pin down the facts, the root cause "
        "and the impact.\n"
        f"{_finding_block(finding)}\n"
        f"Preliminary cause: {finding.get('cause') or 'not provided'}"
    )
    return _with_context(body, ctx)


def auditee_simulation_prompt(
    finding: Dict[str, Any], history: Sequence[DrillTurn], profile: AuditeeProfile
) -> str:
    return (
        "Role-play the auditee described below and give their next reply. Stay in "
        "character: do not be overly cooperative; deflect, justify or explain the "
        "way this person would.\n\n"
        "## Auditee\n"
        f"Position: {profile.position}\n"
        f"Personality: {profile.personality}\n"
        f"Professional ability: {profile.professional_ability}\n"
        f"Attitude towards audit: {profile.attitude}\n\n"
        f"## Issue under discussion\n{finding.get('condition', '')}\n\n"
        f"## Conversation so far\n{format_drill_history(history)}"
    )


def communication_review_prompt(
    finding: Dict[str, Any], history: Sequence[DrillTurn], rebuttal: str
) -> str:
    return (
        "As an audit coach, review the auditor's latest reply and what it reveals "
        "about the auditee's likely state of mind.\n\n"
        f"## Background\n{finding.get('condition', '')}\n\n"
        f"## Conversation so far\n{format_drill_history(history)}\n\n"
        f"## Auditor's latest reply\n\"{rebuttal}\"\n\n"
        "Comment on whether the reply is logically clear, whether it is too "
        "aggressive or too weak, and how the auditee is likely to react."
    )


def auditee_response_analysis_prompt(
    finding: Dict[str, Any], history: Sequence[DrillTurn]
) -> str:
    earlier, latest = list(history[:-1]), (history[-1].text if history else "")
    return (
        "The auditee has just replied. Analyse the logic gaps, attempts to change "
        "the subject and any sign of obstruction in what they said.\n\n"
        f"## Background\n{finding.get('condition', '')}\n\n"
        f"## Conversation so far\n{format_drill_history(earlier)}\n\n"
        f"## Auditee's latest reply\n\"{latest}\"\n\n"
        "Say whether they are avoiding the core question and whether they "
        "contradict themselves, then draft the follow-up question the auditor "
        "should ask next."
    )


def distill_prompt(transcript: str) -> str:
    return DISTILL_PROMPT.format(transcript=transcript)
