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

"""Core infrastructure: errors, cancellation, retry accounting, background tasks."""

from auditflow.core.cancellation import CancellationToken, iterate_with_cancellation
from auditflow.core.errors import (
    AuditFlowError,
    CancellationError,
    ConfigurationError,
    ErrorCategory,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    StructuredOutputError,
    ValidationError,
)
from auditflow.core.retry import RetryBudget
from auditflow.core.task_manager import TaskManager

__all__ = [
    "AuditFlowError",
    "CancellationError",
    "CancellationToken",
    "ConfigurationError",
    "ErrorCategory",
    "ProviderAuthError",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "RetryBudget",
    "StructuredOutputError",
    "TaskManager",
    "ValidationError",
    "iterate_with_cancellation",
]
