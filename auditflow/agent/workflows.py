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

"""Plan -> approve -> execute workflow definitions.

Each workflow names the prompts for its two model phases, the action id that
approves its plan, whether execution yields validated JSON or streamed text,
and the follow-up action offered once the result is committed.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from auditflow.agent import prompts
from auditflow.agent.prompts import PromptContext
from auditflow.agent.schemas import (
    Normalizer,
    Validator,
    unwrap_fraud_cases,
    validate_audit_program,
    validate_finding_analysis,
    validate_fraud_cases,
)
from auditflow.core.errors import ValidationError


class TaskKind(str, Enum):
    """Workflow kinds. Each kind has its own busy flag and state machine."""

    CHAT = "chat"
    AUDIT_PROGRAM = "audit_program"
    CHALLENGE = "challenge"
    FRAUD = "fraud"
    FINDING = "finding"
    REPORT = "report"


PlanPromptBuilder = Callable[[Dict[str, Any], PromptContext], str]
ExecutePromptBuilder = Callable[[str, Dict[str, Any], PromptContext], str]


@dataclass(frozen=True)
class WorkflowDefinition:
    """Static description of one plan/approve/execute workflow.

    Attributes:
        kind: Workflow kind.
        title: Human-readable name, used in step labels.
        approve_action_id: Action id attached to the plan message.
        approve_label: Label for that action.
        build_plan_prompt: Builds the plan-phase prompt.
        build_execute_prompt: Builds the execute-phase prompt from the plan.
        validator: Present for structured workflows; None means streamed text.
        normalize: Reshapes decoded JSON before validation and commit.
        follow_up_action_id: Action offered after a successful execute.
        follow_up_label: Label for that action.
        plan_steps: Step names recorded while planning.
        execute_steps: Step names recorded while executing.
        user_turn: Template for the user turn logged at plan start.
    """

    kind: TaskKind
    title: str
    approve_action_id: str
    approve_label: str
    build_plan_prompt: PlanPromptBuilder
    build_execute_prompt: ExecutePromptBuilder
    validator: Optional[Validator] = None
    normalize: Optional[Normalizer] = None
    follow_up_action_id: Optional[str] = None
    follow_up_label: Optional[str] = None
    plan_steps: Tuple[str, ...] = ("Gathering context", "Drafting plan")
    execute_steps: Tuple[str, ...] = ("Executing plan",)
    user_turn: str = "Start {title}"

    @property
    def structured(self) -> bool:
        return self.validator is not None


WORKFLOWS: Dict[TaskKind, WorkflowDefinition] = {
    TaskKind.AUDIT_PROGRAM: WorkflowDefinition(
        kind=TaskKind.AUDIT_PROGRAM,
        title="audit program",
        approve_action_id="approve_plan",
        approve_label="Approve plan and generate program",
        build_plan_prompt=prompts.audit_program_plan_prompt,
        build_execute_prompt=prompts.audit_program_execute_prompt,
        validator=validate_audit_program,
        follow_up_action_id="review_draft",
        follow_up_label="Review draft",
        execute_steps=("Generating procedures", "Validating structure"),
    ),
    TaskKind.CHALLENGE: WorkflowDefinition(
        kind=TaskKind.CHALLENGE,
        title="program challenge",
        approve_action_id="execute_challenge",
        approve_label="Run challenge",
        build_plan_prompt=prompts.challenge_plan_prompt,
        build_execute_prompt=prompts.challenge_execute_prompt,
        plan_steps=("Gathering context", "Planning challenge strategy"),
        execute_steps=("Challenging program",),
    ),
    TaskKind.FRAUD: WorkflowDefinition(
        kind=TaskKind.FRAUD,
        title="fraud risk analysis",
        approve_action_id="execute_fraud_analysis",
        approve_label="Run fraud analysis",
        build_plan_prompt=prompts.fraud_plan_prompt,
        build_execute_prompt=prompts.fraud_execute_prompt,
        validator=validate_fraud_cases,
        normalize=unwrap_fraud_cases,
        follow_up_action_id="view_fraud_cases",
        follow_up_label="View fraud cases",
        execute_steps=("Developing scenarios", "Validating structure"),
    ),
    TaskKind.FINDING: WorkflowDefinition(
        kind=TaskKind.FINDING,
        title="finding root-cause analysis",
        approve_action_id="execute_finding_analysis",
        approve_label="Run root-cause analysis",
        build_plan_prompt=prompts.finding_plan_prompt,
        build_execute_prompt=prompts.finding_execute_prompt,
        validator=validate_finding_analysis,
        follow_up_action_id="view_finding",
        follow_up_label="View finding",
        execute_steps=("Analyzing root cause", "Validating structure"),
    ),
    TaskKind.REPORT: WorkflowDefinition(
        kind=TaskKind.REPORT,
        title="audit report",
        approve_action_id="execute_report",
        approve_label="Write report",
        build_plan_prompt=prompts.report_plan_prompt,
        build_execute_prompt=prompts.report_execute_prompt,
        follow_up_action_id="view_report",
        follow_up_label="View report",
        plan_steps=("Gathering findings", "Outlining report"),
        execute_steps=("Writing report",),
    ),
}

RETRY_ACTION_ID = "retry"
RETRY_LABEL = "Retry"


def get_workflow(kind: TaskKind) -> WorkflowDefinition:
    """Return the definition for ``kind``.

    Raises:
        ValidationError: If ``kind`` has no plan/execute workflow.
    """
    try:
        return WORKFLOWS[TaskKind(kind)]
    except (KeyError, ValueError) as e:
        raise ValidationError(f"No workflow for task kind: {kind}", field="kind", value=kind) from e


def workflow_for_action(action_id: str) -> Optional[WorkflowDefinition]:
    """Workflow whose approve action is ``action_id``, if any."""
    for workflow in WORKFLOWS.values():
        if workflow.approve_action_id == action_id:
            return workflow
    return None


def follow_up_action_ids() -> List[str]:
    return [w.follow_up_action_id for w in WORKFLOWS.values() if w.follow_up_action_id]
