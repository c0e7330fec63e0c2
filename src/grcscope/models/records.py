"""Tenant-owned records: control responses, requirement assessments, snapshots."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Answer(str, Enum):
    YES = "yes"
    NO = "no"
    PARTIAL = "partial"
    NOT_APPLICABLE = "na"
    UNANSWERED = "unanswered"


class RequirementStatus(str, Enum):
    NOT_ASSESSED = "not_assessed"
    COMPLIANT = "compliant"
    PARTIALLY_COMPLIANT = "partially_compliant"
    NON_COMPLIANT = "non_compliant"
    NOT_APPLICABLE = "not_applicable"


class ComplianceMethod(str, Enum):
    CONTROL_MAPPING = "control_mapping"
    DIRECT_ASSESSMENT = "direct_assessment"
    COMPENSATING_CONTROL = "compensating_control"
    EXCEPTION = "exception"
    INHERITED = "inherited"


class AddressableDecisionType(str, Enum):
    IMPLEMENTED = "implemented"
    ALTERNATIVE_IMPLEMENTED = "alternative_implemented"
    NOT_REASONABLE = "not_reasonable"


class ControlResponse(BaseModel):
    """One tenant's answer to one control."""

    tenant_id: str
    control_id: str
    answer: Answer = Answer.UNANSWERED
    notes: str = ""
    remediation_plan: str = ""
    answered_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Evidence(BaseModel):
    id: str
    name: str
    reference: str = ""
    description: str = ""
    added_at: datetime


class Note(BaseModel):
    text: str
    created_at: datetime
    author: str = ""


class AddressableDecision(BaseModel):
    """Why an organization did or did not implement an addressable safeguard."""

    decision: AddressableDecisionType
    justification: str = ""
    alternative_description: str = ""
    risk_analysis_reference: str = ""
    documented_at: Optional[datetime] = None
    documented_by: str = ""


class DirectAssessmentQuestion(BaseModel):
    question: str
    answer: Optional[Answer] = None
    notes: str = ""


class CompensatingControl(BaseModel):
    description: str
    justification: str = ""
    risk_mitigation: str = ""
    residual_risk: str = "low"
    approved_by: str = ""
    valid_until: Optional[datetime] = None


class RiskException(BaseModel):
    reason: str
    business_justification: str = ""
    risk_level: str = "medium"
    approved_by: str = ""
    expires_at: Optional[datetime] = None


class RequirementAssessment(BaseModel):
    """Assessor-recorded verdict for one leaf requirement.

    Separate from control responses: the recorded status is never recomputed
    from control answers.
    """

    tenant_id: str
    framework_id: str
    requirement_id: str
    status: RequirementStatus = RequirementStatus.NOT_ASSESSED
    method: ComplianceMethod = ComplianceMethod.CONTROL_MAPPING
    skipped: bool = False
    addressable_decision: Optional[AddressableDecision] = None
    direct_questions: list[DirectAssessmentQuestion] = []
    compensating_control: Optional[CompensatingControl] = None
    exception: Optional[RiskException] = None
    evidence: list[Evidence] = []
    notes: list[Note] = []
    assessed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def touched(self) -> bool:
        """True once the requirement has a verdict or was deliberately skipped."""
        return self.skipped or self.status != RequirementStatus.NOT_ASSESSED


class ComplianceSnapshot(BaseModel):
    """Immutable point-in-time rollup of a tenant's scores."""

    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str
    taken_at: datetime
    overall_score: int
    total_controls: int = 0
    implemented_controls: int = 0
    partial_controls: int = 0
    not_implemented_controls: int = 0
    not_applicable_controls: int = 0
    not_started_controls: int = 0
    framework_scores: dict[str, int] = Field(default_factory=dict)
    domain_scores: dict[str, int] = Field(default_factory=dict)
