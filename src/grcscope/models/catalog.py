"""Catalog reference data models."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

CUSTOM_DOMAIN_ID = "company_specific"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort key: critical first."""
        return {"critical": 0, "high": 1, "medium": 2, "low": 3}[self.value]


class FrameworkMapping(BaseModel):
    """Binding of a control to one (framework, clause) pair."""

    model_config = ConfigDict(frozen=True)

    framework_id: str
    clause_id: str
    clause_title: str = ""


class Control(BaseModel):
    """An atomic, assessable security practice."""

    model_config = ConfigDict(frozen=True)

    id: str
    domain: str
    title: str
    description: str = ""
    question: str = ""
    risk_level: RiskLevel = RiskLevel.MEDIUM
    mappings: tuple[FrameworkMapping, ...] = ()
    guidance: str = ""
    evidence_examples: tuple[str, ...] = ()
    remediation_tip: str = ""
    custom: bool = False

    def framework_ids(self) -> set[str]:
        return {m.framework_id for m in self.mappings}

    def maps_to(self, framework_id: str) -> bool:
        return any(m.framework_id == framework_id for m in self.mappings)


class Domain(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""


CUSTOM_DOMAIN = Domain(
    id=CUSTOM_DOMAIN_ID,
    title="Company Specific",
    description="Custom controls created by your organization",
)


class Requirement(BaseModel):
    """A node in a framework's requirement hierarchy."""

    model_config = ConfigDict(frozen=True)

    id: str
    framework_id: str
    title: str = ""
    description: str = ""
    level: int = 0
    required: bool = True
    parent_id: Optional[str] = None
    implicit: bool = False


class FrameworkInfo(BaseModel):
    """Framework metadata without the requirement tree (for listings)."""

    id: str
    name: str
    full_name: str = ""
    version: str = ""
    color: str = ""
    leaf_count: int = 0


class CustomControlInput(BaseModel):
    """Caller-supplied fields for a tenant custom control.

    ``domain`` is accepted for compatibility with form payloads but is always
    replaced with the synthetic custom domain.
    """

    title: str = Field(min_length=1)
    description: str = ""
    question: str = ""
    risk_level: RiskLevel = RiskLevel.MEDIUM
    mappings: list[FrameworkMapping] = []
    domain: Optional[str] = None
    guidance: str = ""
    remediation_tip: str = ""
