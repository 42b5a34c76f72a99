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

"""Task orchestrator: drives plan -> approve -> execute workflows and free chat.

Each ``TaskKind`` has its own state machine, busy flag and cancellation
token. Starting a task of a kind that is already running supersedes it: the
old token is signalled and the old run's completion can no longer touch the
kind's state. Every entry point returns a ``TaskOutcome``; failures and
cancellation are outcomes, not exceptions, so the caller always gets a
message with a next step.

Usage:
    orchestrator = TaskOrchestrator(provider, store, settings)
    outcome = await orchestrator.start_plan(TaskKind.AUDIT_PROGRAM, {"request": "..."})
    approve = outcome.actions[0]
    outcome = await orchestrator.invoke_action(outcome.message_id, approve.action_id)
    await orchestrator.aclose()
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Union

from auditflow.agent.collaborators import ProjectStore
from auditflow.agent.context_funnel import ContextFunnel
from auditflow.agent.conversation import (
    ChatMessage,
    ConversationLog,
    DuplicateSubmissionGuard,
    PendingAction,
)
from auditflow.agent.distiller import ContextDistiller
from auditflow.agent.drill import AuditeeProfile, DrillActor, DrillTurn
from auditflow.agent.prompts import (
    AUDITOR_SYSTEM_PROMPT,
    PINNED_CONTEXT_ACK,
    PINNED_CONTEXT_INTRO,
    PROMPT_ARTIFACT_KEYS,
    PromptContext,
    auditee_response_analysis_prompt,
    auditee_simulation_prompt,
    build_reference_context,
    build_volatile_context,
    communication_review_prompt,
    feasibility_prompt,
    finding_questions_prompt,
    guidance_options_prompt,
)
from auditflow.agent.schemas import (
    FeasibilityAssessment,
    GuidanceOptions,
    parse_as,
    validate_feasibility,
    validate_guidance_options,
)
from auditflow.agent.stream_demux import demultiplex, strip_reasoning_markup
from auditflow.agent.stream_handler import StreamHandler
from auditflow.agent.structured_output import StructuredOutputDecoder
from auditflow.agent.summary import SummaryStore
from auditflow.agent.workflows import (
    RETRY_ACTION_ID,
    RETRY_LABEL,
    TaskKind,
    WorkflowDefinition,
    get_workflow,
    workflow_for_action,
)
from auditflow.config.constants import FUNNEL_LIMITS, FunnelLimits
from auditflow.config.settings import Settings, get_settings
from auditflow.core.cancellation import CancellationToken
from auditflow.core.errors import (
    AuditFlowError,
    CancellationError,
    ProviderError,
    ValidationError,
)
from auditflow.core.retry import RetryBudget
from auditflow.providers.base import BaseProvider, Message

logger = logging.getLogger(__name__)

INTERRUPTED_NOTICE = "Operation interrupted."
SUPERSEDED_REASON = "Superseded by a newer request"


class TaskState(str, Enum):
    """Lifecycle state of one task kind."""

    IDLE = "idle"
    PLANNING = "planning"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    DONE = "done"
    CANCELLED = "cancelled"
    ERROR = "error"


ACTIVE_STATES = frozenset({TaskState.PLANNING, TaskState.EXECUTING})

# Valid transitions per state. Executing is reachable from the terminal
# states so a failed or cancelled execute phase can be retried, and from
# idle for callers that supply an already approved plan.
TRANSITION_GRAPH: Dict[TaskState, Set[TaskState]] = {
    TaskState.IDLE: {TaskState.PLANNING, TaskState.EXECUTING},
    TaskState.PLANNING: {
        TaskState.AWAITING_APPROVAL,
        TaskState.CANCELLED,
        TaskState.ERROR,
    },
    TaskState.AWAITING_APPROVAL: {
        TaskState.EXECUTING,
        TaskState.PLANNING,
        TaskState.CANCELLED,
        TaskState.ERROR,
    },
    TaskState.EXECUTING: {TaskState.DONE, TaskState.CANCELLED, TaskState.ERROR},
    TaskState.DONE: {TaskState.PLANNING, TaskState.EXECUTING},
    TaskState.CANCELLED: {TaskState.PLANNING, TaskState.EXECUTING},
    TaskState.ERROR: {TaskState.PLANNING, TaskState.EXECUTING},
}


@dataclass
class TaskRequest:
    """One run of one phase of a task."""

    kind: TaskKind
    inputs: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"task-{uuid.uuid4().hex[:12]}")
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    retry_budget: RetryBudget = field(default_factory=RetryBudget)


@dataclass
class TaskOutcome:
    """What an orchestrator entry point produced."""

    request_id: str
    kind: TaskKind
    state: TaskState
    message_id: Optional[str] = None
    result: Any = None
    error: Optional[str] = None
    actions: List[PendingAction] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state in (TaskState.AWAITING_APPROVAL, TaskState.DONE)


StateListener = Callable[[TaskKind, TaskState, TaskState], None]


def _error_text(error: BaseException) -> str:
    if isinstance(error, AuditFlowError):
        return error.message
    return str(error) or type(error).__name__


class TaskOrchestrator:
    """Owns the session state of one conversation.

    Args:
        provider: Provider used for every model call.
        store: Project store read for context and written with results.
        settings: Library settings; the process-wide settings when omitted.
        log: Conversation log; a fresh one when omitted.
        summaries: Summary store shared with the distiller.
        clock: Monotonic clock for the duplicate guard.
        limits: Context funnel thresholds for free chat.
    """

    def __init__(
        self,
        provider: BaseProvider,
        store: ProjectStore,
        settings: Optional[Settings] = None,
        log: Optional[ConversationLog] = None,
        summaries: Optional[SummaryStore] = None,
        clock: Callable[[], float] = time.monotonic,
        limits: Optional[FunnelLimits] = None,
    ):
        self.provider = provider
        self.store = store
        self.settings = settings or get_settings()
        self.log = log if log is not None else ConversationLog(
            DuplicateSubmissionGuard(self.settings.duplicate_window_seconds, clock)
        )
        self.summaries = summaries if summaries is not None else SummaryStore()
        self.limits = limits or FUNNEL_LIMITS
        self.funnel = ContextFunnel(self.limits)
        self.distiller = ContextDistiller(
            provider,
            self.summaries,
            store,
            keep_recent=self.settings.distill_keep_recent,
            open_tag=self.settings.reasoning_open_tag,
            close_tag=self.settings.reasoning_close_tag,
        )
        self._states: Dict[TaskKind, TaskState] = {}
        self._active: Dict[TaskKind, TaskRequest] = {}
        self._plan_messages: Dict[TaskKind, str] = {}
        self._listeners: List[StateListener] = []

    # State machine

    def state(self, kind: TaskKind) -> TaskState:
        return self._states.get(kind, TaskState.IDLE)

    def is_busy(self, kind: Optional[TaskKind] = None) -> bool:
        """Busy flag for ``kind``, or for any kind when omitted."""
        if kind is None:
            return bool(self._active)
        return kind in self._active

    def register_callback(self, listener: StateListener) -> None:
        """Call ``listener(kind, old, new)`` after every state transition."""
        self._listeners.append(listener)

    def _transition(self, kind: TaskKind, new_state: TaskState) -> None:
        old_state = self.state(kind)
        if new_state not in TRANSITION_GRAPH[old_state]:
            raise ValidationError(
                f"Invalid transition for {kind.value}: {old_state.value} -> {new_state.value}",
                field="state",
                value=new_state.value,
            )
        self._states[kind] = new_state
        logger.debug(f"Task {kind.value}: {old_state.value} -> {new_state.value}")
        for listener in list(self._listeners):
            try:
                listener(kind, old_state, new_state)
            except Exception as e:
                logger.warning(f"State listener error: {e}")

    def _is_current(self, request: TaskRequest) -> bool:
        active = self._active.get(request.kind)
        return active is not None and active.id == request.id

    def _begin(self, kind: TaskKind, state: TaskState, inputs: Dict[str, Any]) -> TaskRequest:
        """Supersede any in-flight run of ``kind`` and make a new request current."""
        previous = self._active.pop(kind, None)
        if previous is not None:
            previous.cancellation.cancel(SUPERSEDED_REASON)
            logger.info(f"Superseded in-flight {kind.value} task {previous.id}")
            if self.state(kind) in ACTIVE_STATES:
                self._transition(kind, TaskState.CANCELLED)
        self._withdraw_approval(kind)

        request = TaskRequest(
            kind=kind,
            inputs=dict(inputs),
            retry_budget=RetryBudget(max_attempts=self.settings.structured_output_max_attempts),
        )
        self._transition(kind, state)
        self._active[kind] = request
        return request

    def _release(self, request: TaskRequest) -> None:
        if self._is_current(request):
            del self._active[request.kind]

    def _withdraw_approval(self, kind: TaskKind) -> None:
        """Remove the approve action from the last plan message of ``kind``."""
        message_id = self._plan_messages.pop(kind, None)
        if message_id is None:
            return
        message = self.log.get(message_id)
        workflow = get_workflow(kind)
        if message is not None and message.find_action(workflow.approve_action_id):
            remaining = [a for a in message.actions if a.action_id != workflow.approve_action_id]
            self.log.update(message_id, actions=remaining)

    # Shared plumbing

    def _settled_messages(self) -> List[ChatMessage]:
        """Log messages that finished normally; placeholders and failures are left out."""
        return [m for m in self.log.messages if m.processing_state is None]

    def _prompt_context(self) -> PromptContext:
        settings = self.settings
        return PromptContext(
            reference=build_reference_context(
                self.store.pinned_documents(), settings.pinned_document_chars
            ),
            volatile=build_volatile_context(
                self._settled_messages(),
                settings.volatile_context_messages,
                settings.volatile_context_chars,
            ),
            artifacts={key: self.store.get_artifact(key) for key in PROMPT_ARTIFACT_KEYS},
        )

    def _open_placeholder(self, phase: TaskState) -> ChatMessage:
        return self.log.append("assistant", "", processing_state=phase.value)

    def _begin_step(self, message: ChatMessage, name: str) -> None:
        message.ledger.begin(name)
        self.log.touch(message.id)

    def _progress(self, message: ChatMessage) -> Callable[[str], None]:
        received = [0]

        def _on_content(text: str) -> None:
            received[0] += len(text)
            message.ledger.progress(f"{received[0]} characters received")
            self.log.touch(message.id)

        return _on_content

    def _decoder(self) -> StructuredOutputDecoder:
        return StructuredOutputDecoder(
            self.provider,
            max_attempts=self.settings.structured_output_max_attempts,
            open_tag=self.settings.reasoning_open_tag,
            close_tag=self.settings.reasoning_close_tag,
        )

    async def _stream_text(
        self,
        messages: List[Message],
        message: ChatMessage,
        cancellation: CancellationToken,
        system_prompt: Optional[str] = AUDITOR_SYSTEM_PROMPT,
    ) -> str:
        """Stream plain text into ``message`` and return the cleaned answer."""
        handler = StreamHandler(
            on_reasoning=lambda text: self.log.append_reasoning(message.id, text),
            on_content=lambda text: self.log.append_text(message.id, text),
        )
        events = self.provider.stream(
            messages, system_prompt=system_prompt, cancellation=cancellation
        )
        result = await handler.process_stream(
            demultiplex(events, self.settings.reasoning_open_tag, self.settings.reasoning_close_tag)
        )
        text = strip_reasoning_markup(
            result.content, self.settings.reasoning_open_tag, self.settings.reasoning_close_tag
        )
        if not text:
            raise ProviderError("The model returned an empty response", provider=self.provider.name)
        return text

    def _finalize(
        self,
        message: ChatMessage,
        notice: Optional[str] = None,
        actions: Optional[List[PendingAction]] = None,
        text: Optional[str] = None,
        terminal_state: Optional[TaskState] = None,
    ) -> None:
        """Write the final text and actions; failed messages keep their terminal state."""
        body = message.text if text is None else text
        if notice:
            body = f"{body}\n\n{notice}" if body.strip() else notice
        self.log.update(
            message.id,
            text=body,
            actions=list(actions or []),
            processing_state=terminal_state.value if terminal_state else None,
        )

    def _finish_cancelled(
        self, request: TaskRequest, message: ChatMessage, retry_payload: Dict[str, Any]
    ) -> TaskOutcome:
        current = self._is_current(request)
        message.ledger.fail(INTERRUPTED_NOTICE)
        actions: List[PendingAction] = []
        if current and self.settings.offer_retry_on_cancel:
            actions.append(PendingAction(RETRY_ACTION_ID, RETRY_LABEL, retry_payload))
        self._finalize(
            message, notice=INTERRUPTED_NOTICE, actions=actions, terminal_state=TaskState.CANCELLED
        )
        if current:
            self._transition(request.kind, TaskState.CANCELLED)
            self._release(request)
        logger.info(f"Task {request.kind.value} {request.id} cancelled")
        return TaskOutcome(
            request_id=request.id,
            kind=request.kind,
            state=TaskState.CANCELLED,
            message_id=message.id,
            actions=actions,
        )

    def _finish_error(
        self,
        request: TaskRequest,
        message: ChatMessage,
        error: BaseException,
        retry_payload: Dict[str, Any],
    ) -> TaskOutcome:
        current = self._is_current(request)
        detail = _error_text(error)
        message.ledger.fail(detail)
        actions = [PendingAction(RETRY_ACTION_ID, RETRY_LABEL, retry_payload)] if current else []
        self._finalize(
            message, notice=f"Error: {detail}", actions=actions, terminal_state=TaskState.ERROR
        )
        if current:
            self._transition(request.kind, TaskState.ERROR)
            self._release(request)
        return TaskOutcome(
            request_id=request.id,
            kind=request.kind,
            state=TaskState.ERROR,
            message_id=message.id,
            error=detail,
            actions=actions,
        )

    def _finish_stale(self, request: TaskRequest, message: ChatMessage) -> TaskOutcome:
        """A superseded run finished anyway; its result is discarded."""
        message.ledger.fail(SUPERSEDED_REASON)
        self._finalize(message, notice=INTERRUPTED_NOTICE, terminal_state=TaskState.CANCELLED)
        logger.info(f"Discarded result of superseded {request.kind.value} task {request.id}")
        return TaskOutcome(
            request_id=request.id,
            kind=request.kind,
            state=TaskState.CANCELLED,
            message_id=message.id,
        )

    async def _guarded(
        self,
        request: TaskRequest,
        message: ChatMessage,
        retry_payload: Dict[str, Any],
        run: Callable[[], Any],
    ) -> Union[TaskOutcome, Any]:
        """Await ``run()`` and turn cancellation and failures into outcomes.

        Returns the run's value on success, or a ``TaskOutcome`` when the run
        was cancelled, failed, or was superseded while in flight.
        """
        try:
            value = await run()
        except CancellationError:
            return self._finish_cancelled(request, message, retry_payload)
        except AuditFlowError as e:
            logger.warning(f"Task {request.kind.value} {request.id} failed: {e.message}")
            return self._finish_error(request, message, e, retry_payload)
        except Exception as e:
            logger.error(f"Task {request.kind.value} {request.id} failed unexpectedly", exc_info=e)
            return self._finish_error(request, message, e, retry_payload)
        if not self._is_current(request):
            return self._finish_stale(request, message)
        return value

    def _after_success(self) -> None:
        self.distiller.schedule_if_needed(self._settled_messages(), self.limits)

    # Workflows

    async def start_plan(
        self,
        kind: TaskKind,
        inputs: Dict[str, Any],
        user_text: Optional[str] = None,
    ) -> Optional[TaskOutcome]:
        """Record the user turn and stream a plan for ``kind``.

        Returns:
            The outcome, or None when the user turn was a duplicate
            submission and the request was ignored.

        Raises:
            ValidationError: If ``kind`` has no workflow.
        """
        workflow = get_workflow(kind)
        text = user_text or workflow.user_turn.format(title=workflow.title)
        if self.log.add("user", text) is None:
            return None
        return await self._run_plan(workflow, inputs)

    async def _run_plan(self, workflow: WorkflowDefinition, inputs: Dict[str, Any]) -> TaskOutcome:
        request = self._begin(workflow.kind, TaskState.PLANNING, inputs)
        message = self._open_placeholder(TaskState.PLANNING)
        retry_payload = {"kind": workflow.kind.value, "phase": "plan", "inputs": dict(inputs)}

        async def run() -> str:
            self._begin_step(message, workflow.plan_steps[0])
            prompt = workflow.build_plan_prompt(request.inputs, self._prompt_context())
            for step in workflow.plan_steps[1:]:
                self._begin_step(message, step)
            return await self._stream_text(
                [Message(role="user", content=prompt)], message, request.cancellation
            )

        plan = await self._guarded(request, message, retry_payload, run)
        if isinstance(plan, TaskOutcome):
            return plan

        message.ledger.complete()
        approve = PendingAction(
            workflow.approve_action_id,
            workflow.approve_label,
            {"kind": workflow.kind.value, "plan": plan, "inputs": dict(inputs)},
        )
        self._finalize(message, actions=[approve])
        self._plan_messages[workflow.kind] = message.id
        self._transition(workflow.kind, TaskState.AWAITING_APPROVAL)
        self._release(request)
        self._after_success()
        logger.info(f"Plan ready for {workflow.kind.value} ({len(plan)} chars)")
        return TaskOutcome(
            request_id=request.id,
            kind=workflow.kind,
            state=TaskState.AWAITING_APPROVAL,
            message_id=message.id,
            result=plan,
            actions=[approve],
        )

    async def execute(self, kind: TaskKind, plan: str, inputs: Dict[str, Any]) -> TaskOutcome:
        """Run the execute phase of ``kind`` against an approved plan."""
        workflow = get_workflow(kind)
        request = self._begin(workflow.kind, TaskState.EXECUTING, inputs)
        message = self._open_placeholder(TaskState.EXECUTING)
        retry_payload = {
            "kind": workflow.kind.value,
            "phase": "execute",
            "plan": plan,
            "inputs": dict(inputs),
        }

        async def run() -> Any:
            self._begin_step(message, workflow.execute_steps[0])
            prompt = workflow.build_execute_prompt(plan, request.inputs, self._prompt_context())
            if not workflow.structured:
                return await self._stream_text(
                    [Message(role="user", content=prompt)], message, request.cancellation
                )
            data = await self._decoder().decode(
                prompt,
                system_prompt=AUDITOR_SYSTEM_PROMPT,
                validate=workflow.validator,
                cancellation=request.cancellation,
                on_reasoning=lambda text: self.log.append_reasoning(message.id, text),
                on_content=self._progress(message),
                budget=request.retry_budget,
                normalize=workflow.normalize,
            )
            for step in workflow.execute_steps[1:]:
                self._begin_step(message, step)
            return data

        result = await self._guarded(request, message, retry_payload, run)
        if isinstance(result, TaskOutcome):
            return result

        try:
            record_id = self.store.commit_result(workflow.kind.value, result, dict(inputs))
        except Exception as e:
            logger.error(f"Failed to commit {workflow.kind.value} result", exc_info=e)
            return self._finish_error(request, message, e, retry_payload)

        message.ledger.complete()
        actions: List[PendingAction] = []
        if workflow.follow_up_action_id:
            actions.append(
                PendingAction(
                    workflow.follow_up_action_id,
                    workflow.follow_up_label or workflow.follow_up_action_id,
                    {"kind": workflow.kind.value, "record_id": record_id},
                )
            )
        text = None if not workflow.structured else f"Completed {workflow.title} ({record_id})."
        self._finalize(message, actions=actions, text=text)
        self._transition(workflow.kind, TaskState.DONE)
        self._release(request)
        self._after_success()
        logger.info(f"Committed {workflow.kind.value} result as {record_id}")
        return TaskOutcome(
            request_id=request.id,
            kind=workflow.kind,
            state=TaskState.DONE,
            message_id=message.id,
            result=result,
            actions=actions,
        )

    async def invoke_action(
        self, message_id: str, action_id: str
    ) -> Union[TaskOutcome, PendingAction, None]:
        """Dispatch a ``PendingAction`` attached to ``message_id``.

        Approve actions run the execute phase, ``retry`` re-runs the failed
        phase with its original inputs, and any other action (result views)
        is returned unchanged for the caller to handle.

        Raises:
            ValidationError: If the message or the action does not exist.
        """
        message = self.log.get(message_id)
        if message is None:
            raise ValidationError(f"Unknown message: {message_id}", field="message_id", value=message_id)
        action = message.find_action(action_id)
        if action is None:
            raise ValidationError(
                f"Action '{action_id}' is not available on message {message_id}",
                field="action_id",
                value=action_id,
            )

        workflow = workflow_for_action(action_id)
        if workflow is not None:
            self._consume(message, action_id)
            return await self.execute(workflow.kind, action.payload["plan"], action.payload["inputs"])

        if action_id == RETRY_ACTION_ID:
            self._consume(message, action_id)
            return await self._retry(action.payload)

        return action

    def _consume(self, message: ChatMessage, action_id: str) -> None:
        remaining = [a for a in message.actions if a.action_id != action_id]
        self.log.update(message.id, actions=remaining)

    async def _retry(self, payload: Dict[str, Any]) -> Optional[TaskOutcome]:
        phase = payload.get("phase")
        inputs = payload.get("inputs") or {}
        if phase == "chat":
            return await self._run_chat()
        kind = TaskKind(payload["kind"])
        if phase == "plan":
            return await self._run_plan(get_workflow(kind), inputs)
        if phase == "execute":
            return await self.execute(kind, payload["plan"], inputs)
        raise ValidationError(f"Cannot retry phase: {phase}", field="phase", value=phase)

    # Free chat

    async def send_message(self, text: str) -> Optional[TaskOutcome]:
        """Append a user turn and stream the assistant's reply.

        Returns None when the turn was a duplicate submission.
        """
        if self.log.add("user", text) is None:
            return None
        return await self._run_chat()

    async def edit_and_resubmit(self, message_id: str, text: str) -> TaskOutcome:
        """Replace a user turn with ``text`` and regenerate the reply.

        The turn and everything after it are removed from the log; a summary
        that covered removed turns is dropped with them.

        Raises:
            ValidationError: If ``message_id`` is not a user turn in the log.
        """
        self._user_turn(message_id)
        if not text.strip():
            raise ValidationError("Message text is empty", field="text", value=text)

        self.cancel(TaskKind.CHAT, reason="Conversation edited")
        removed = self.log.truncate_before(message_id)
        summary = self.summaries.current
        if summary is not None and summary.source_message_count > len(self.log):
            self.summaries.clear()
        logger.debug(f"Resubmitting turn {message_id}; dropped {len(removed)} message(s)")

        self.log.append("user", text)
        return await self._run_chat()

    async def resend(self, message_id: str) -> TaskOutcome:
        """Regenerate the reply to an existing user turn."""
        return await self.edit_and_resubmit(message_id, self._user_turn(message_id).text)

    def _user_turn(self, message_id: str) -> ChatMessage:
        message = self.log.get(message_id)
        if message is None or message.role != "user":
            raise ValidationError(
                f"Not a user message: {message_id}", field="message_id", value=message_id
            )
        return message

    def _chat_messages(self, exclude_id: str) -> List[Message]:
        messages = [Message(role="system", content=AUDITOR_SYSTEM_PROMPT)]
        reference = build_reference_context(
            self.store.pinned_documents(), self.settings.pinned_document_chars
        )
        if reference:
            messages.append(Message(role="user", content=f"{PINNED_CONTEXT_INTRO}\n\n{reference}"))
            messages.append(Message(role="assistant", content=PINNED_CONTEXT_ACK))
        unsettled = [m.id for m in self.log.messages if m.processing_state is not None]
        messages.extend(self.log.to_api_messages(exclude_ids=unsettled + [exclude_id]))
        return self.funnel.reduce(messages, summary=self.summaries.current)

    async def _run_chat(self) -> TaskOutcome:
        request = self._begin(TaskKind.CHAT, TaskState.EXECUTING, {})
        message = self._open_placeholder(TaskState.EXECUTING)
        retry_payload = {"kind": TaskKind.CHAT.value, "phase": "chat", "inputs": {}}

        async def run() -> str:
            messages = self._chat_messages(exclude_id=message.id)
            return await self._stream_text(
                messages, message, request.cancellation, system_prompt=None
            )

        reply = await self._guarded(request, message, retry_payload, run)
        if isinstance(reply, TaskOutcome):
            return reply

        self._finalize(message)
        self._transition(TaskKind.CHAT, TaskState.DONE)
        self._release(request)
        self._after_success()
        return TaskOutcome(
            request_id=request.id,
            kind=TaskKind.CHAT,
            state=TaskState.DONE,
            message_id=message.id,
            result=reply,
        )

    # One-shot helpers

    async def assess_feasibility(
        self,
        procedure: Dict[str, Any],
        cancellation: Optional[CancellationToken] = None,
    ) -> FeasibilityAssessment:
        """Difficulties and strategies for carrying out one audit procedure.

        Raises:
            StructuredOutputError: If no valid assessment could be decoded.
            CancellationError: If ``cancellation`` is signalled.
        """
        data = await self._decoder().decode(
            feasibility_prompt(procedure, self._prompt_context()),
            system_prompt=AUDITOR_SYSTEM_PROMPT,
            validate=validate_feasibility,
            cancellation=cancellation,
        )
        return parse_as(FeasibilityAssessment, data)

    async def generate_guidance_options(
        self,
        question: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> GuidanceOptions:
        """Short answer options for a guidance question."""
        data = await self._decoder().decode(
            guidance_options_prompt(question, self._prompt_context()),
            system_prompt=AUDITOR_SYSTEM_PROMPT,
            validate=validate_guidance_options,
            cancellation=cancellation,
        )
        return parse_as(GuidanceOptions, data)

    async def _stream_one_shot(
        self,
        prompt: str,
        cancellation: Optional[CancellationToken],
        on_content: Optional[Callable[[str], None]],
        system_prompt: str = AUDITOR_SYSTEM_PROMPT,
    ) -> str:
        """Stream a plain-text answer that is returned to the caller, not logged."""
        handler = StreamHandler(on_content=on_content)
        events = self.provider.stream(
            [Message(role="user", content=prompt)],
            system_prompt=system_prompt,
            cancellation=cancellation,
        )
        result = await handler.process_stream(
            demultiplex(events, self.settings.reasoning_open_tag, self.settings.reasoning_close_tag)
        )
        text = strip_reasoning_markup(
            result.content, self.settings.reasoning_open_tag, self.settings.reasoning_close_tag
        )
        if not text:
            raise ProviderError("The model returned an empty response", provider=self.provider.name)
        return text

    async def generate_finding_questions(
        self,
        finding: Dict[str, Any],
        cancellation: Optional[CancellationToken] = None,
        on_content: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Follow-up questions that clarify a preliminary finding.

        ``finding`` carries ``condition``, ``criteria``, ``effect`` and an
        optional ``cause``.
        """
        return await self._stream_one_shot(
            finding_questions_prompt(finding, self._prompt_context()), cancellation, on_content
        )

    async def simulate_auditee_response(
        self,
        finding: Dict[str, Any],
        history: Sequence[DrillTurn],
        profile: Optional[AuditeeProfile] = None,
        cancellation: Optional[CancellationToken] = None,
        on_content: Optional[Callable[[str], None]] = None,
    ) -> str:
        """The auditee's next line in a communication drill."""
        prompt = auditee_simulation_prompt(finding, history, profile or AuditeeProfile())
        return await self._stream_one_shot(prompt, cancellation, on_content)

    async def analyze_communication(
        self,
        finding: Dict[str, Any],
        history: Sequence[DrillTurn],
        rebuttal: str,
        cancellation: Optional[CancellationToken] = None,
        on_content: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Coach feedback on the auditor's latest reply in a drill."""
        prompt = communication_review_prompt(finding, history, rebuttal)
        return await self._stream_one_shot(prompt, cancellation, on_content)

    async def analyze_auditee_response(
        self,
        finding: Dict[str, Any],
        history: Sequence[DrillTurn],
        cancellation: Optional[CancellationToken] = None,
        on_content: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Analysis of the auditee's latest turn, with a suggested follow-up question.

        Raises:
            ValidationError: If ``history`` does not end with an auditee turn.
            ProviderError: On transport failure or an empty answer.
            CancellationError: If ``cancellation`` is signalled.
        """
        if not history or history[-1].actor != DrillActor.AUDITEE:
            raise ValidationError(
                "The drill history must end with an auditee turn", field="history"
            )
        prompt = auditee_response_analysis_prompt(finding, history)
        return await self._stream_one_shot(prompt, cancellation, on_content)

    # Cancellation and shutdown

    def cancel(self, kind: Optional[TaskKind] = None, reason: str = "Cancelled by user") -> int:
        """Signal the running task of ``kind`` (or every running task).

        A plan awaiting approval is cancelled directly: its approve action is
        withdrawn. Returns the number of tasks affected.
        """
        kinds = [kind] if kind is not None else list(self._active) + [
            k for k, s in self._states.items() if s == TaskState.AWAITING_APPROVAL
        ]
        affected = 0
        for task_kind in dict.fromkeys(kinds):
            request = self._active.get(task_kind)
            if request is not None:
                request.cancellation.cancel(reason)
                affected += 1
            elif self.state(task_kind) == TaskState.AWAITING_APPROVAL:
                self._withdraw_approval(task_kind)
                self._transition(task_kind, TaskState.CANCELLED)
                affected += 1
        if affected:
            logger.info(f"Cancellation requested for {affected} task(s): {reason}")
        return affected

    async def aclose(self) -> None:
        """Cancel running tasks and background distills."""
        for request in list(self._active.values()):
            request.cancellation.cancel("Orchestrator closed")
        await self.distiller.aclose()


__all__ = [
    "TaskOrchestrator",
    "TaskOutcome",
    "TaskRequest",
    "TaskState",
    "TRANSITION_GRAPH",
    "INTERRUPTED_NOTICE",
]
