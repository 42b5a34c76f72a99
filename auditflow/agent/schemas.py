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

"""Typed shapes for the structured outputs the workflows ask for.

Field aliases keep the camelCase keys the prompts show the model, while the
Python side works with snake_case attributes. ``schema_validator`` turns a
model into the ``validate(data) -> Optional[ValidationIssue]`` callable the
structured-output decoder expects.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


@dataclass(frozen=True)
class ValidationIssue:
    """First problem found in a decoded payload."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


RISK_LEVEL_ALIASES = {
    "高": RiskLevel.HIGH,
    "中": RiskLevel.MEDIUM,
    "低": RiskLevel.LOW,
}


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class AuditProcedure(_Schema):
    id: NonEmptyStr
    risk: NonEmptyStr
    risk_level: RiskLevel = Field(alias="riskLevel")
    control: NonEmptyStr
    test_step: NonEmptyStr = Field(alias="testStep")

    @field_validator("risk_level", mode="before")
    @classmethod
    def normalize_risk_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            key = v.strip().lower()
            return RISK_LEVEL_ALIASES.get(key, key)
        return v


class AuditProgram(_Schema):
    objective: NonEmptyStr
    procedures: List[AuditProcedure]


class FraudTriangle(_Schema):
    pressure: NonEmptyStr
    opportunity: NonEmptyStr
    rationalization: NonEmptyStr


class RedFlag(_Schema):
    indicator: NonEmptyStr
    metric: Optional[str] = None
    threshold: Optional[str] = None


class DetectionMethods(_Schema):
    data_analytics: List[str] = Field(alias="dataAnalytics")
    document_review: List[str] = Field(alias="documentReview")


class GapStatus(str, Enum):
    COVERED = "COVERED"
    EXPOSED = "EXPOSED"
    PARTIALLY_COVERED = "PARTIALLY_COVERED"


class SuggestedProcedure(_Schema):
    risk: Optional[str] = None
    control: Optional[str] = None
    test_step: Optional[str] = Field(None, alias="testStep")


class GapAnalysis(_Schema):
    status: GapStatus
    assessment: Optional[str] = None
    suggested_procedure: Optional[SuggestedProcedure] = Field(None, alias="suggestedProcedure")


class FraudCase(_Schema):
    scenario: NonEmptyStr
    fraud_triangle: FraudTriangle = Field(alias="fraudTriangle")
    potential_actors: Optional[str] = Field(None, alias="potentialActors")
    red_flags: List[RedFlag] = Field(alias="redFlags")
    detection_methods: DetectionMethods = Field(alias="detectionMethods")
    gap_analysis: Optional[GapAnalysis] = Field(None, alias="gapAnalysis")


class RootCauseHypothesis(_Schema):
    category: Optional[str] = None
    description: Optional[str] = None
    likelihood: Optional[str] = None


class AIAnalysis(_Schema):
    summary: NonEmptyStr
    root_cause_hypotheses: List[Union[RootCauseHypothesis, str]] = Field(
        alias="rootCauseHypotheses"
    )
    systemic_vs_isolated: str = Field(alias="systemicVsIsolated")
    five_whys_chain: Union[Annotated[List[str], Field(min_length=1)], NonEmptyStr] = Field(
        alias="5WhysChain"
    )


class ActionItem(_Schema):
    text: NonEmptyStr


class FindingAnalysis(_Schema):
    ai_analysis: AIAnalysis = Field(alias="aiAnalysis")
    action_items: List[ActionItem] = Field(alias="actionItems")


class Difficulty(_Schema):
    dimension: str
    description: str


class Strategy(_Schema):
    difficulty: str
    strategy: str


class FeasibilityAssessment(_Schema):
    potential_difficulties: List[Difficulty] = Field(alias="potentialDifficulties")
    suggested_strategies: List[Strategy] = Field(alias="suggestedStrategies")


class GuidanceOptions(_Schema):
    options: Annotated[List[NonEmptyStr], Field(min_length=1)]
    explanation: Optional[str] = None


# Example payloads embedded in prompts so the model sees the expected keys
AUDIT_PROGRAM_EXAMPLE: Dict[str, Any] = {
    "objective": "Overall audit objective",
    "procedures": [
        {
            "id": "AP-01",
            "risk": "Risk description",
            "riskLevel": "high | medium | low",
            "control": "Key control",
            "testStep": "Detailed test step",
        }
    ],
}

FRAUD_CASES_EXAMPLE: List[Dict[str, Any]] = [
    {
        "scenario": "Fraud scenario",
        "fraudTriangle": {
            "pressure": "Pressure or motive",
            "opportunity": "Opportunity",
            "rationalization": "Rationalization",
        },
        "potentialActors": "Who could commit it",
        "redFlags": [{"indicator": "Anomaly", "metric": "How to measure", "threshold": "Limit"}],
        "detectionMethods": {
            "dataAnalytics": ["Analytic test"],
            "documentReview": ["Document check"],
        },
        "gapAnalysis": {
            "status": "COVERED | EXPOSED | PARTIALLY_COVERED",
            "assessment": "Whether existing procedures detect it, citing procedure ids",
            "suggestedProcedure": {"risk": "...", "control": "...", "testStep": "..."},
        },
    }
]

FINDING_ANALYSIS_EXAMPLE: Dict[str, Any] = {
    "aiAnalysis": {
        "summary": "Analysis summary",
        "rootCauseHypotheses": [
            {"category": "Process design", "description": "...", "likelihood": "high"}
        ],
        "systemicVsIsolated": "Systemic or isolated, with reasoning",
        "5WhysChain": ["Symptom", "Cause 1", "Cause 2", "Root cause"],
    },
    "actionItems": [{"text": "Recommended action"}],
}

FEASIBILITY_EXAMPLE: Dict[str, Any] = {
    "potentialDifficulties": [{"dimension": "data | people | systems | process", "description": "..."}],
    "suggestedStrategies": [{"difficulty": "...", "strategy": "..."}],
}

GUIDANCE_OPTIONS_EXAMPLE: Dict[str, Any] = {
    "options": ["Option 1", "Option 2", "Option 3"],
    "explanation": "Why these options are suggested",
}


def _format_location(loc: tuple) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


Validator = Callable[[Any], Optional[ValidationIssue]]
Normalizer = Callable[[Any], Any]


def schema_validator(schema: Any) -> Validator:
    """Build a validator for a pydantic model or a typing construct like ``List[FraudCase]``."""
    adapter: TypeAdapter = TypeAdapter(schema)

    def validate(data: Any) -> Optional[ValidationIssue]:
        try:
            adapter.validate_python(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = tuple(first["loc"])
            return ValidationIssue(path=_format_location(loc), message=first["msg"])
        return None

    return validate


def parse_as(schema: Any, data: Any) -> Any:
    """Validate ``data`` and return the typed value."""
    return TypeAdapter(schema).validate_python(data)


validate_audit_program = schema_validator(AuditProgram)
validate_fraud_cases = schema_validator(List[FraudCase])
validate_finding_analysis = schema_validator(FindingAnalysis)
validate_feasibility = schema_validator(FeasibilityAssessment)
validate_guidance_options = schema_validator(GuidanceOptions)


def unwrap_list_field(key: str) -> Normalizer:
    """Build a normalizer that lifts ``{key: [...]}`` to the bare list.

    JSON-object response modes cannot return a top-level array, so list
    schemas also accept the list wrapped in a single field. Anything else
    is passed through for the validator to judge.
    """

    def unwrap(data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get(key), list):
            return data[key]
        return data

    return unwrap


unwrap_fraud_cases = unwrap_list_field("cases")
