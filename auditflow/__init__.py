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

"""
auditflow - streaming and task-orchestration core for an audit assistant.

Normalizes provider token streams into reasoning/content events, keeps chat
history inside a token budget, decodes validated JSON from lossy model
output, and drives cancellable plan -> approve -> execute workflows.

Usage:
    from auditflow import InMemoryProjectStore, Settings, TaskKind, TaskOrchestrator
    from auditflow import create_provider

    settings = Settings()
    provider = create_provider(settings.get_profile("deepseek"), settings)
    orchestrator = TaskOrchestrator(provider, InMemoryProjectStore(), settings)
    outcome = await orchestrator.start_plan(TaskKind.AUDIT_PROGRAM, {"request": "Procurement"})
"""

__version__ = "0.1.0"
__author__ = "Vijaykumar Singh"
__email__ = "singhvjd@gmail.com"
__license__ = "Apache-2.0"

from auditflow.agent import (
    ConversationLog,
    InMemoryProjectStore,
    PinnedDocument,
    ProjectStore,
    TaskKind,
    TaskOrchestrator,
    TaskOutcome,
    TaskState,
)
from auditflow.config.settings import LLMProfile, ProviderKind, Settings
from auditflow.core.cancellation import CancellationToken
from auditflow.core.errors import (
    AuditFlowError,
    CancellationError,
    ConfigurationError,
    ProviderError,
    StructuredOutputError,
    ValidationError,
)
from auditflow.providers import create_provider

__all__ = [
    "AuditFlowError",
    "CancellationError",
    "CancellationToken",
    "ConfigurationError",
    "ConversationLog",
    "InMemoryProjectStore",
    "LLMProfile",
    "PinnedDocument",
    "ProjectStore",
    "ProviderError",
    "ProviderKind",
    "Settings",
    "StructuredOutputError",
    "TaskKind",
    "TaskOrchestrator",
    "TaskOutcome",
    "TaskState",
    "ValidationError",
    "__version__",
    "create_provider",
]
