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

"""Communication drill: a rehearsed conversation between auditor and auditee.

The auditor practises presenting a finding while the model plays the
auditee, described by an ``AuditeeProfile``. A coach can review either
side's latest turn. The host keeps the turn history and passes it in.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

NO_HISTORY = "(no conversation yet)"


class DrillActor(str, Enum):
    AUDITOR = "auditor"
    AUDITEE = "auditee"
    COACH = "coach"


@dataclass(frozen=True)
class DrillTurn:
    """One line of the drill conversation."""

    actor: DrillActor
    text: str
    simulated: bool = False


@dataclass(frozen=True)
class AuditeeProfile:
    """Persona the model adopts when simulating the auditee."""

    position: str = "Business unit manager"
    personality: str = "Cautious, sensitive about data, somewhat defensive"
    professional_ability: str = "Average"
    attitude: str = "Neutral"


_ACTOR_LABELS = {
    DrillActor.AUDITOR: "Auditor",
    DrillActor.AUDITEE: "Auditee",
    DrillActor.COACH: "Coach",
}


def format_drill_history(history: Sequence[DrillTurn]) -> str:
    """Render turns as ``[Round n] Actor: text``; two turns make a round."""
    if not history:
        return NO_HISTORY
    return "\n".join(
        f"[Round {index // 2 + 1}] {_ACTOR_LABELS[turn.actor]}: {turn.text}"
        for index, turn in enumerate(history)
    )


__all__ = [
    "NO_HISTORY",
    "AuditeeProfile",
    "DrillActor",
    "DrillTurn",
    "format_drill_history",
]
