"""Requirement-level assessment workflow for one (tenant, framework) pair.

Statuses form a flat set: any status can be saved at any time. What the
session tracks is navigation over the framework's leaf requirements in
declaration order, plus a review step reached by moving past the last leaf.
Skips are persisted on the assessment record so they survive a reload and
stay distinguishable from requirements nobody has looked at.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from ..compliance.catalog import Framework
from ..models.catalog import Requirement
from ..models.records import (
    AddressableDecision,
    AddressableDecisionType,
    CompensatingControl,
    ComplianceMethod,
    DirectAssessmentQuestion,
    Evidence,
    Note,
    RequirementAssessment,
    RequirementStatus,
    RiskException,
)
from ..models.results import AssessmentSummary, Progress
from ..utils.percent import percent
from .errors import NotFoundError, ValidationError, require_tenant
from .scoring import status_percentage

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def status_from_questions(questions: list[DirectAssessmentQuestion]) -> RequirementStatus:
    """All answered questions yes: compliant. All no: non-compliant. Else partial."""
    answered = [q.answer for q in questions if q.answer is not None]
    if not answered:
        return RequirementStatus.NOT_ASSESSED
    if all(a.value == "yes" for a in answered):
        return RequirementStatus.COMPLIANT
    if all(a.value == "no" for a in answered):
        return RequirementStatus.NON_COMPLIANT
    return RequirementStatus.PARTIALLY_COMPLIANT


class AssessmentSession:
    """Navigation pointer and record mutations for one tenant and framework."""

    def __init__(
        self,
        tenant_id: str,
        framework: Framework,
        store,
        clock: Callable[[], datetime] = utc_now,
        max_critical_gaps: int = 10,
        author: str = "",
    ) -> None:
        self.tenant_id = require_tenant(tenant_id)
        self.framework = framework
        self.store = store
        self.clock = clock
        self.max_critical_gaps = max_critical_gaps
        self.author = author
        self._current: Optional[str] = None
        self._reviewing = False

    # -- navigation -------------------------------------------------------

    @property
    def leaves(self) -> list[Requirement]:
        return self.framework.tree.leaves()

    @property
    def current(self) -> Optional[Requirement]:
        return self.framework.tree.get(self._current) if self._current else None

    @property
    def in_review(self) -> bool:
        return self._reviewing

    def _position(self) -> int:
        return self.framework.tree.leaf_ids().index(self._current)

    def next(self) -> Optional[Requirement]:
        """Advance one leaf. Moving past the last leaf enters review and returns None."""
        if self._reviewing:
            return None
        leaves = self.leaves
        index = 0 if self._current is None else self._position() + 1
        if index >= len(leaves):
            self.enter_review()
            return None
        self._current = leaves[index].id
        return leaves[index]

    def previous(self) -> Optional[Requirement]:
        """Step back one leaf. From review, return to the last leaf; at the first leaf, stay."""
        leaves = self.leaves
        if self._reviewing:
            self._reviewing = False
            self._current = leaves[-1].id if leaves else None
            return self.current
        if self._current is None:
            return None
        index = self._position()
        if index == 0:
            return None
        self._current = leaves[index - 1].id
        return leaves[index - 1]

    def navigate_to(self, requirement_id: str) -> Requirement:
        requirement = self._leaf(requirement_id)
        self._current = requirement.id
        self._reviewing = False
        return requirement

    def enter_review(self) -> None:
        self._reviewing = True
        self._current = None

    def next_unassessed(self) -> Optional[Requirement]:
        """Jump to the next untouched leaf after the pointer, wrapping around."""
        records = self.assessments()
        leaves = self.leaves
        if not leaves:
            return None
        start = 0 if self._current is None else self._position() + 1
        for offset in range(len(leaves)):
            leaf = leaves[(start + offset) % len(leaves)]
            record = records.get(leaf.id)
            if record is None or not record.touched:
                self._current = leaf.id
                self._reviewing = False
                return leaf
        return None

    def resume(self) -> Optional[Requirement]:
        """Point at the first untouched leaf, or enter review when every leaf is touched."""
        records = self.assessments()
        for leaf in self.leaves:
            record = records.get(leaf.id)
            if record is None or not record.touched:
                self._current = leaf.id
                self._reviewing = False
                return leaf
        self.enter_review()
        return None

    # -- records ----------------------------------------------------------

    def _leaf(self, requirement_id: str) -> Requirement:
        tree = self.framework.tree
        requirement = tree.get(requirement_id)
        if requirement is None:
            raise NotFoundError(f"Requirement in {self.framework.id}", requirement_id, self.tenant_id)
        if not tree.is_leaf(requirement_id):
            raise ValidationError(
                f"Requirement {requirement_id} groups other requirements and cannot be assessed directly"
            )
        return requirement

    def _target(self, requirement_id: Optional[str]) -> Requirement:
        if requirement_id is None:
            if self._current is None:
                raise ValidationError("No requirement selected")
            requirement_id = self._current
        return self._leaf(requirement_id)

    def _record(self, requirement: Requirement) -> RequirementAssessment:
        existing = self.store.get_assessment(self.tenant_id, self.framework.id, requirement.id)
        if existing is not None:
            return existing
        return RequirementAssessment(
            tenant_id=self.tenant_id,
            framework_id=self.framework.id,
            requirement_id=requirement.id,
        )

    def _save(self, record: RequirementAssessment) -> RequirementAssessment:
        record.updated_at = self.clock()
        self.store.save_assessment(record)
        return record

    def _verdict(
        self,
        record: RequirementAssessment,
        status: RequirementStatus,
        method: ComplianceMethod,
    ) -> None:
        record.status = status
        if status == RequirementStatus.NOT_ASSESSED:
            # Not a verdict: a skip and the last assessment time stand.
            return
        record.method = method
        record.skipped = False
        record.assessed_at = self.clock()

    def _append_note(self, record: RequirementAssessment, text: str) -> None:
        record.notes.append(Note(text=text, created_at=self.clock(), author=self.author))

    def get(self, requirement_id: str) -> Optional[RequirementAssessment]:
        requirement = self._leaf(requirement_id)
        return self.store.get_assessment(self.tenant_id, self.framework.id, requirement.id)

    def skip(self) -> Optional[Requirement]:
        """Defer the current requirement without a verdict, then advance."""
        requirement = self._target(None)
        record = self._record(requirement)
        record.skipped = True
        self._save(record)
        return self.next()

    def unskip(self, requirement_id: Optional[str] = None) -> RequirementAssessment:
        record = self._record(self._target(requirement_id))
        record.skipped = False
        return self._save(record)

    def save_status(
        self,
        status: Union[RequirementStatus, str],
        note: Optional[str] = None,
        requirement_id: Optional[str] = None,
    ) -> RequirementAssessment:
        """Record a direct verdict, optionally with a note."""
        try:
            status = RequirementStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown requirement status: {status}") from e
        record = self._record(self._target(requirement_id))
        self._verdict(record, status, ComplianceMethod.DIRECT_ASSESSMENT)
        if note:
            self._append_note(record, note)
        return self._save(record)

    def record_addressable_decision(
        self,
        decision: AddressableDecision,
        requirement_id: Optional[str] = None,
    ) -> RequirementAssessment:
        """Document an addressable safeguard decision.

        Only allowed on requirements that are not required. Implemented or
        alternative decisions make the requirement compliant; ``not_reasonable``
        marks it not applicable and needs a justification.
        """
        requirement = self._target(requirement_id)
        if requirement.required:
            raise ValidationError(
                f"Requirement {requirement.id} is required; addressable decisions apply "
                f"only to addressable requirements",
                details={"requirement_id": requirement.id},
            )
        if decision.decision == AddressableDecisionType.NOT_REASONABLE and not decision.justification.strip():
            raise ValidationError(
                "A justification is required when an addressable safeguard is not implemented",
                details={"justification": "empty"},
            )
        if decision.decision == AddressableDecisionType.NOT_REASONABLE:
            status = RequirementStatus.NOT_APPLICABLE
        else:
            status = RequirementStatus.COMPLIANT

        record = self._record(requirement)
        record.addressable_decision = decision.model_copy(update={
            "documented_at": decision.documented_at or self.clock(),
            "documented_by": decision.documented_by or self.author,
        })
        self._verdict(record, status, ComplianceMethod.DIRECT_ASSESSMENT)
        return self._save(record)

    def save_direct_assessment(
        self,
        questions: list[DirectAssessmentQuestion],
        requirement_id: Optional[str] = None,
    ) -> RequirementAssessment:
        record = self._record(self._target(requirement_id))
        record.direct_questions = list(questions)
        self._verdict(record, status_from_questions(questions), ComplianceMethod.DIRECT_ASSESSMENT)
        return self._save(record)

    def save_compensating_control(
        self,
        control: CompensatingControl,
        requirement_id: Optional[str] = None,
    ) -> RequirementAssessment:
        record = self._record(self._target(requirement_id))
        record.compensating_control = control
        self._verdict(record, RequirementStatus.COMPLIANT, ComplianceMethod.COMPENSATING_CONTROL)
        return self._save(record)

    def save_exception(
        self,
        exception: RiskException,
        requirement_id: Optional[str] = None,
    ) -> RequirementAssessment:
        """Accept a risk. Critical exceptions leave the requirement non-compliant."""
        record = self._record(self._target(requirement_id))
        record.exception = exception
        if exception.risk_level == "critical":
            status = RequirementStatus.NON_COMPLIANT
        else:
            status = RequirementStatus.PARTIALLY_COMPLIANT
        self._verdict(record, status, ComplianceMethod.EXCEPTION)
        return self._save(record)

    def add_evidence(
        self,
        name: str,
        reference: str = "",
        description: str = "",
        requirement_id: Optional[str] = None,
    ) -> Evidence:
        if not name.strip():
            raise ValidationError("Evidence name is required", details={"name": "empty"})
        record = self._record(self._target(requirement_id))
        evidence = Evidence(
            id=uuid.uuid4().hex,
            name=name.strip(),
            reference=reference,
            description=description,
            added_at=self.clock(),
        )
        record.evidence.append(evidence)
        self._save(record)
        return evidence

    def remove_evidence(self, evidence_id: str, requirement_id: Optional[str] = None) -> None:
        record = self._record(self._target(requirement_id))
        remaining = [e for e in record.evidence if e.id != evidence_id]
        if len(remaining) == len(record.evidence):
            raise NotFoundError("Evidence", evidence_id, self.tenant_id)
        record.evidence = remaining
        self._save(record)

    def add_note(self, text: str, requirement_id: Optional[str] = None) -> Note:
        """Append to the requirement's note log. Earlier notes are never touched."""
        if not text.strip():
            raise ValidationError("Note text is required", details={"text": "empty"})
        record = self._record(self._target(requirement_id))
        self._append_note(record, text.strip())
        self._save(record)
        return record.notes[-1]

    def reset(self) -> int:
        """Drop every record for this framework and rewind navigation."""
        removed = self.store.delete_assessments(self.tenant_id, self.framework.id)
        self._current = None
        self._reviewing = False
        logger.info("Reset %d assessments for tenant %s framework %s", removed, self.tenant_id, self.framework.id)
        return removed

    # -- views ------------------------------------------------------------

    def assessments(self) -> dict[str, RequirementAssessment]:
        """Records keyed by leaf id. Records for unknown requirements are skipped."""
        tree = self.framework.tree
        records: dict[str, RequirementAssessment] = {}
        for record in self.store.list_assessments(self.tenant_id, self.framework.id):
            if record.tenant_id != self.tenant_id:
                continue
            if not tree.is_leaf(record.requirement_id):
                logger.warning(
                    "Ignoring assessment for unknown requirement %s in %s (tenant %s)",
                    record.requirement_id, self.framework.id, self.tenant_id,
                )
                continue
            records[record.requirement_id] = record
        return records

    def progress(self) -> Progress:
        records = self.assessments()
        touched = sum(1 for r in records.values() if r.touched)
        return Progress(assessed=touched, total=len(self.leaves))

    def summary(self) -> AssessmentSummary:
        records = self.assessments()
        leaves = self.leaves

        by_status = {status: 0 for status in RequirementStatus}
        by_method: dict[str, int] = {}
        statuses: list[RequirementStatus] = []
        gaps: list[str] = []
        last: Optional[datetime] = None
        skipped = 0
        touched = 0

        for leaf in leaves:
            record = records.get(leaf.id)
            status = record.status if record else RequirementStatus.NOT_ASSESSED
            by_status[status] += 1
            statuses.append(status)
            if record is None:
                continue
            if record.touched:
                touched += 1
            if record.skipped:
                skipped += 1
            if status != RequirementStatus.NOT_ASSESSED:
                by_method[record.method.value] = by_method.get(record.method.value, 0) + 1
            if status == RequirementStatus.NON_COMPLIANT and leaf.required and leaf.id not in gaps:
                gaps.append(leaf.id)
            if record.assessed_at is not None and (last is None or record.assessed_at > last):
                last = record.assessed_at

        verdicts = len(leaves) - by_status[RequirementStatus.NOT_ASSESSED]
        return AssessmentSummary(
            framework_id=self.framework.id,
            framework_version=self.framework.version,
            total_requirements=len(leaves),
            assessed_requirements=touched,
            skipped_requirements=skipped,
            compliance_by_status=by_status,
            compliance_by_method=by_method,
            overall_compliance_percentage=status_percentage(statuses),
            critical_gaps=gaps[: self.max_critical_gaps],
            last_assessment_date=last,
            assessment_completeness=percent(verdicts, len(leaves)),
        )
