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

"""Streaming, context management, structured output and task orchestration."""

from auditflow.agent.collaborators import InMemoryProjectStore, PinnedDocument, ProjectStore
from auditflow.agent.context_funnel import (
    ContextFunnel,
    estimate_messages_tokens,
    estimate_tokens,
    sanitize_messages,
)
from auditflow.agent.conversation import (
    ChatMessage,
    ConversationLog,
    DuplicateSubmissionGuard,
    PendingAction,
    StepLedger,
    StepStatus,
    WorkflowStep,
)
from auditflow.agent.distiller import ContextDistiller
from auditflow.agent.drill import AuditeeProfile, DrillActor, DrillTurn
from auditflow.agent.json_repair import JSONExtractionError, extract_json, repair_json
from auditflow.agent.orchestrator import TaskOrchestrator, TaskOutcome, TaskRequest, TaskState
from auditflow.agent.stream_demux import (
    ReasoningDemultiplexer,
    demultiplex,
    strip_reasoning_markup,
)
from auditflow.agent.stream_handler import StreamHandler, StreamMetrics, StreamResult
from auditflow.agent.structured_output import StructuredOutputDecoder
from auditflow.agent.summary import ConversationSummary, SummaryStore
from auditflow.agent.workflows import WORKFLOWS, TaskKind, WorkflowDefinition, get_workflow

__all__ = [
    "AuditeeProfile",
    "ChatMessage",
    "ContextDistiller",
    "ContextFunnel",
    "ConversationLog",
    "ConversationSummary",
    "DrillActor",
    "DrillTurn",
    "DuplicateSubmissionGuard",
    "InMemoryProjectStore",
    "JSONExtractionError",
    "PendingAction",
    "PinnedDocument",
    "ProjectStore",
    "ReasoningDemultiplexer",
    "StepLedger",
    "StepStatus",
    "StreamHandler",
    "StreamMetrics",
    "StreamResult",
    "StructuredOutputDecoder",
    "SummaryStore",
    "TaskKind",
    "TaskOrchestrator",
    "TaskOutcome",
    "TaskRequest",
    "TaskState",
    "WORKFLOWS",
    "WorkflowDefinition",
    "WorkflowStep",
    "demultiplex",
    "estimate_messages_tokens",
    "estimate_tokens",
    "extract_json",
    "get_workflow",
    "repair_json",
    "sanitize_messages",
    "strip_reasoning_markup",
]
