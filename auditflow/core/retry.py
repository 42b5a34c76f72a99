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

"""Attempt accounting for structured-output decoding.

A ``RetryBudget`` is created per task request. Only parse or validation
failures draw from it; transport errors and cancellation abort the task
without touching it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class RetryBudget:
    """Tracks attempts made against a fixed maximum.

    Attributes:
        max_attempts: Total attempts allowed, including the first one.
        attempt: Attempts consumed so far.
        issues: Failure descriptions in the order they were recorded.
    """

    max_attempts: int = 2
    attempt: int = 0
    start_time: float = field(default_factory=time.time)
    issues: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be positive, got {self.max_attempts}")

    @property
    def elapsed(self) -> float:
        """Time elapsed since the budget was created."""
        return time.time() - self.start_time

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempt)

    @property
    def exhausted(self) -> bool:
        return self.attempts_remaining == 0

    @property
    def last_issue(self) -> Optional[str]:
        return self.issues[-1] if self.issues else None

    def consume(self) -> int:
        """Draw one attempt and return its 1-based number."""
        if self.exhausted:
            raise RuntimeError("Retry budget exhausted")
        self.attempt += 1
        return self.attempt

    def record_issue(self, issue: str) -> None:
        self.issues.append(issue)

    def reset(self) -> None:
        self.attempt = 0
        self.issues.clear()
        self.start_time = time.time()
