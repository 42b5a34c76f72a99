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

"""Error taxonomy for auditflow.

This module provides:
- Structured exception types grouped by category
- Correlation IDs so a failed task can be traced across log lines
- Recovery hints that the orchestrator surfaces next to a retry action

Cancellation is deliberately kept outside of the ``AuditFlowError`` tree:
a user abort is an outcome, not a failure, and callers that catch
``AuditFlowError`` to render an error notice must never catch it.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""

    # Provider errors
    PROVIDER_CONNECTION = "provider_connection"
    PROVIDER_AUTH = "provider_auth"
    PROVIDER_RATE_LIMIT = "provider_rate_limit"
    PROVIDER_TIMEOUT = "provider_timeout"
    PROVIDER_INVALID_RESPONSE = "provider_invalid_response"

    # Decoding errors
    STRUCTURED_OUTPUT = "structured_output"

    # Configuration errors
    CONFIG_INVALID = "config_invalid"
    CONFIG_MISSING = "config_missing"

    # Caller errors
    VALIDATION_ERROR = "validation_error"

    UNKNOWN = "unknown"


class AuditFlowError(Exception):
    """Base exception for all auditflow errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
        recovery_hint: Optional[str] = None,
        correlation_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.details = details or {}
        self.recovery_hint = recovery_hint
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.message,
            "category": self.category.value,
            "correlation_id": self.correlation_id,
            "recovery_hint": self.recovery_hint,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        result = f"[{self.correlation_id}] {self.message}"
        if self.recovery_hint:
            result += f"\nRecovery hint: {self.recovery_hint}"
        return result


class ProviderError(AuditFlowError):
    """Transport-level failure talking to an LLM provider."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        status_code: Optional[int] = None,
        raw_error: Optional[Any] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("category", ErrorCategory.PROVIDER_INVALID_RESPONSE)
        super().__init__(message, **kwargs)
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.raw_error = raw_error
        self.details["provider"] = provider
        self.details["model"] = model
        if status_code is not None:
            self.details["status_code"] = status_code


class ProviderConnectionError(ProviderError):
    """Provider connection failures."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs: Any):
        super().__init__(
            message,
            provider=provider,
            category=ErrorCategory.PROVIDER_CONNECTION,
            recovery_hint="Check network connection and the provider endpoint.",
            **kwargs,
        )


class ProviderAuthError(ProviderError):
    """Provider rejected the credential."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs: Any):
        super().__init__(
            message,
            provider=provider,
            category=ErrorCategory.PROVIDER_AUTH,
            recovery_hint="Check the API key configured for this LLM profile.",
            **kwargs,
        )


class ProviderRateLimitError(ProviderError):
    """Provider rate limit exceeded."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            provider=provider,
            category=ErrorCategory.PROVIDER_RATE_LIMIT,
            recovery_hint=(
                f"Wait {retry_after} seconds before retrying."
                if retry_after
                else "Wait and retry later."
            ),
            **kwargs,
        )
        self.retry_after = retry_after
        self.details["retry_after"] = retry_after


class ProviderTimeoutError(ProviderError):
    """Provider request timeout."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            provider=provider,
            category=ErrorCategory.PROVIDER_TIMEOUT,
            recovery_hint=(
                f"Request timed out after {timeout} seconds. Try increasing the timeout."
                if timeout
                else "Request timed out. Check provider status and network connection."
            ),
            **kwargs,
        )
        self.timeout = timeout
        self.details["timeout"] = timeout


class ConfigurationError(AuditFlowError):
    """Missing or invalid configuration, raised before any I/O happens."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("category", ErrorCategory.CONFIG_INVALID)
        kwargs.setdefault("recovery_hint", "Check the LLM profile and environment settings.")
        super().__init__(message, **kwargs)
        self.config_key = config_key
        self.details["config_key"] = config_key


class ValidationError(AuditFlowError):
    """Invalid caller input, such as an unknown action or illegal state change."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs: Any,
    ):
        super().__init__(message, category=ErrorCategory.VALIDATION_ERROR, **kwargs)
        self.field = field
        self.value = value
        self.details["field"] = field
        if value is not None:
            self.details["value"] = str(value)[:100]


class StructuredOutputError(AuditFlowError):
    """The model never produced a payload that parsed and validated."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_issue: Optional[str] = None,
        raw_output: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            category=ErrorCategory.STRUCTURED_OUTPUT,
            recovery_hint="Retry the task or rephrase the request.",
            **kwargs,
        )
        self.attempts = attempts
        self.last_issue = last_issue
        self.raw_output = raw_output
        self.details["attempts"] = attempts
        self.details["last_issue"] = last_issue


class CancellationError(Exception):
    """Raised when a task is aborted through its cancellation token."""

    def __init__(self, message: str = "Operation cancelled", reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason


__all__ = [
    "ErrorCategory",
    "AuditFlowError",
    "ProviderError",
    "ProviderConnectionError",
    "ProviderAuthError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "ConfigurationError",
    "ValidationError",
    "StructuredOutputError",
    "CancellationError",
]
