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

"""Protocols for the host application's project state.

The orchestrator reads pinned reference documents and project artifacts
through ``ProjectStore`` and hands finished results back to it. Persistence
is entirely the host's concern.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PinnedDocument:
    """Reference text the user pinned to the project."""

    name: str
    text: str


@runtime_checkable
class ProjectStore(Protocol):
    """Project state consumed and updated by workflows."""

    def pinned_documents(self) -> List[PinnedDocument]:
        """Documents to include as reference context."""
        ...

    def get_artifact(self, key: str) -> Any:
        """Named project artifact (current program, fraud cases, findings...), or None."""
        ...

    def commit_result(self, kind: str, result: Any, inputs: Dict[str, Any]) -> str:
        """Store a finished workflow result and return its record id."""
        ...


@dataclass
class InMemoryProjectStore:
    """Dictionary-backed ``ProjectStore`` for tests and embedding."""

    documents: List[PinnedDocument] = field(default_factory=list)
    artifacts: Dict[str, Any] = field(default_factory=dict)
    committed: List[Tuple[str, str, Any]] = field(default_factory=list)

    def pinned_documents(self) -> List[PinnedDocument]:
        return list(self.documents)

    def get_artifact(self, key: str) -> Any:
        return self.artifacts.get(key)

    def set_artifact(self, key: str, value: Any) -> None:
        self.artifacts[key] = value

    def commit_result(self, kind: str, result: Any, inputs: Dict[str, Any]) -> str:
        record_id = f"{kind}-{uuid.uuid4().hex[:8]}"
        self.committed.append((record_id, kind, result))
        self.artifacts[f"last_{kind}_result"] = result
        logger.debug(f"Committed {kind} result as {record_id}")
        return record_id

    def last_committed(self, kind: Optional[str] = None) -> Optional[Tuple[str, str, Any]]:
        for entry in reversed(self.committed):
            if kind is None or entry[1] == kind:
                return entry
        return None
