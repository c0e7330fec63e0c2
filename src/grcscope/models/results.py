"""Computed read models: scores, coverage, gaps, summaries, trends."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .catalog import Control, Requirement, RiskLevel
from .records import Answer, RequirementAssessment, RequirementStatus
from ..utils.percent import percent


class LevelScore(BaseModel):
    """Weighted score over one pool of controls (global, a domain, a framework)."""

    id: str
    name: str = ""
    score: int = 0
    total: int = 0
    applicable: int = 0
    implemented: int = 0
    partial: int = 0
    not_implemented: int = 0
    not_applicable: int = 0
    not_started: int = 0


class FrameworkProgress(LevelScore):
    gaps: int = 0


class ScoreBreakdown(BaseModel):
    tenant_id: str
    overall: LevelScore
    domains: dict[str, LevelScore] = {}
    frameworks: dict[str, FrameworkProgress] = {}


class CoverageStats(BaseModel):
    """Mapping coverage of one framework's leaf requirements."""

    framework_id: str
    total: int = 0
    mapped: int = 0
    unmapped: int = 0
    average_coverage: float = 0.0

    @property
    def coverage_percent(self) -> float:
        return round((self.mapped / self.total) * 100, 1) if self.total > 0 else 0.0


class Gap(BaseModel):
    control_id: str
    title: str
    domain: str
    risk_level: RiskLevel
    answer: Answer = Answer.UNANSWERED


class GapAnalysis(BaseModel):
    total_gaps: int = 0
    critical: list[Gap] = []
    high: list[Gap] = []
    medium: list[Gap] = []
    by_framework: dict[str, int] = {}
    by_domain: dict[str, int] = {}


class AssessmentStats(BaseModel):
    total_controls: int = 0
    answered_controls: int = 0
    compliant_controls: int = 0
    gap_controls: int = 0
    remaining_controls: int = 0
    assessment_percentage: int = 0


class MappedControl(BaseModel):
    control: Control
    mapping_type: str = "direct"
    clause_id: str = ""
    answer: Answer = Answer.UNANSWERED


class RequirementView(BaseModel):
    """Implied (derived) and recorded (assessor-owned) status side by side."""

    framework_id: str
    requirement: Requirement
    mapped_controls: list[MappedControl] = []
    related_controls: list[MappedControl] = []
    implied_status: RequirementStatus = RequirementStatus.NOT_ASSESSED
    recorded: Optional[RequirementAssessment] = None

    @property
    def effective_status(self) -> RequirementStatus:
        if self.recorded is not None and self.recorded.status != RequirementStatus.NOT_ASSESSED:
            return self.recorded.status
        return self.implied_status


class Progress(BaseModel):
    assessed: int = 0
    total: int = 0

    @property
    def fraction(self) -> float:
        return self.assessed / self.total if self.total > 0 else 0.0

    @property
    def percentage(self) -> int:
        return percent(self.assessed, self.total)

    def __str__(self) -> str:
        return f"{self.assessed}/{self.total} ({self.percentage}%)"


class AssessmentSummary(BaseModel):
    framework_id: str
    framework_version: str = ""
    total_requirements: int = 0
    assessed_requirements: int = 0
    skipped_requirements: int = 0
    compliance_by_status: dict[RequirementStatus, int] = {}
    compliance_by_method: dict[str, int] = {}
    overall_compliance_percentage: int = 0
    critical_gaps: list[str] = []
    last_assessment_date: Optional[datetime] = None
    assessment_completeness: int = 0


class TrendPoint(BaseModel):
    timestamp: datetime
    score: int
    implemented: int = 0
    partial: int = 0
    not_implemented: int = 0


class FrameworkTrend(BaseModel):
    framework_id: str
    framework_name: str = ""
    points: list[TrendPoint] = []
    current_score: int = 0
    change_30d: Optional[int] = None
    change_90d: Optional[int] = None


class DomainAnalysis(BaseModel):
    domain: str
    title: str = ""
    total_controls: int = 0
    implemented: int = 0
    partial: int = 0
    not_implemented: int = 0
    not_started: int = 0
    score: int = 0
    risk_level: RiskLevel = RiskLevel.LOW
    top_gaps: list[Gap] = []


class DashboardMetrics(BaseModel):
    overall_score: int = 0
    score_change_7d: Optional[int] = None
    score_change_30d: Optional[int] = None
    controls_implemented: int = 0
    controls_total: int = 0
    critical_gaps: int = 0
    high_gaps: int = 0
    framework_readiness: dict[str, int] = {}


class ExportBundle(BaseModel):
    """Plain numbers and control metadata handed to document generation."""

    tenant_id: str
    generated_at: datetime
    scores: ScoreBreakdown
    stats: AssessmentStats
    critical_gaps: list[Gap] = []
    gap_analysis: GapAnalysis
    trend: list[TrendPoint] = []
    deltas: dict[int, Optional[int]] = {}
    coverage: dict[str, CoverageStats] = {}
