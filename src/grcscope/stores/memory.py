"""In-process store backed by dicts."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Optional

from ..models.catalog import Control
from ..models.records import ComplianceSnapshot, ControlResponse, RequirementAssessment
from .base import in_window


class MemoryStore:
    """Dict-backed store for every record family.

    Records are copied on the way in and out so callers never hold live
    references into the store. A single re-entrant lock guards all state, so a
    reset is never observed half done.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._responses: dict[str, dict[str, ControlResponse]] = {}
        self._assessments: dict[tuple[str, str], dict[str, RequirementAssessment]] = {}
        self._snapshots: dict[str, list[ComplianceSnapshot]] = {}
        self._custom: dict[str, dict[str, Control]] = {}

    # responses

    def get_response(self, tenant_id: str, control_id: str) -> Optional[ControlResponse]:
        with self._lock:
            found = self._responses.get(tenant_id, {}).get(control_id)
            return found.model_copy(deep=True) if found else None

    def save_response(self, response: ControlResponse) -> None:
        with self._lock:
            self._responses.setdefault(response.tenant_id, {})[response.control_id] = response.model_copy(deep=True)

    def list_responses(self, tenant_id: str) -> list[ControlResponse]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._responses.get(tenant_id, {}).values()]

    # assessments

    def get_assessment(
        self, tenant_id: str, framework_id: str, requirement_id: str
    ) -> Optional[RequirementAssessment]:
        with self._lock:
            found = self._assessments.get((tenant_id, framework_id), {}).get(requirement_id)
            return found.model_copy(deep=True) if found else None

    def save_assessment(self, assessment: RequirementAssessment) -> None:
        key = (assessment.tenant_id, assessment.framework_id)
        with self._lock:
            self._assessments.setdefault(key, {})[assessment.requirement_id] = assessment.model_copy(deep=True)

    def list_assessments(self, tenant_id: str, framework_id: str) -> list[RequirementAssessment]:
        with self._lock:
            return [a.model_copy(deep=True) for a in self._assessments.get((tenant_id, framework_id), {}).values()]

    def delete_assessments(self, tenant_id: str, framework_id: str) -> int:
        with self._lock:
            removed = self._assessments.pop((tenant_id, framework_id), {})
            return len(removed)

    # snapshots

    def add_snapshot(self, snapshot: ComplianceSnapshot) -> None:
        with self._lock:
            self._snapshots.setdefault(snapshot.tenant_id, []).append(snapshot)

    def list_snapshots(
        self,
        tenant_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[ComplianceSnapshot]:
        with self._lock:
            found = [s for s in self._snapshots.get(tenant_id, []) if in_window(s.taken_at, since, until)]
        return sorted(found, key=lambda s: s.taken_at)

    # custom controls

    def list_custom_controls(self, tenant_id: str) -> list[Control]:
        with self._lock:
            return list(self._custom.get(tenant_id, {}).values())

    def save_custom_control(self, tenant_id: str, control: Control) -> None:
        with self._lock:
            self._custom.setdefault(tenant_id, {})[control.id] = control

    def delete_custom_control(self, tenant_id: str, control_id: str) -> bool:
        with self._lock:
            return self._custom.get(tenant_id, {}).pop(control_id, None) is not None
