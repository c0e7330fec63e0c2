"""Compliance engine facade.

Holds the shared catalog, the tenant store and per-tenant caches, and exposes
every read and mutation the CLI and other consumers use. Aggregate reads
degrade to empty results when the store is unreachable; mutations let store
and validation errors reach the caller.
"""

from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, Union

from ..compliance.catalog import Catalog, CustomControlRegistry, Framework
from ..compliance.loader import load_catalog
from ..compliance.mapping import DIRECT, MappingIndex
from ..models.catalog import CUSTOM_DOMAIN, Control, CustomControlInput, Domain, FrameworkInfo
from ..models.records import Answer, ComplianceSnapshot, ControlResponse, RequirementStatus
from ..models.results import (
    AssessmentStats,
    AssessmentSummary,
    CoverageStats,
    DashboardMetrics,
    DomainAnalysis,
    ExportBundle,
    FrameworkProgress,
    FrameworkTrend,
    Gap,
    GapAnalysis,
    LevelScore,
    MappedControl,
    Progress,
    RequirementView,
    ScoreBreakdown,
    TrendPoint,
)
from . import analytics, scoring
from .assessment import AssessmentSession, utc_now
from .config import DEFAULT_CONFIG
from .errors import NotFoundError, StoreUnavailableError, ValidationError, require_tenant

logger = logging.getLogger(__name__)


class ComplianceEngine:
    """Scoring, mapping, assessment and analytics over one catalog and one store."""

    def __init__(
        self,
        catalog: Catalog,
        store,
        config: Optional[dict] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.config = config if config is not None else copy.deepcopy(DEFAULT_CONFIG)
        self.clock = clock
        self.custom = CustomControlRegistry(catalog, store)
        self.custom.subscribe(self.invalidate)
        self._lock = threading.Lock()
        self._indexes: dict[str, MappingIndex] = {}
        self._sessions: dict[tuple[str, str], AssessmentSession] = {}

    @classmethod
    def from_config(
        cls,
        config: dict,
        workspace: Optional[Path] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> ComplianceEngine:
        from ..stores.base import get_store

        catalog = load_catalog(config.get("catalog", {}).get("path") or None)
        return cls(catalog, get_store(config, workspace), config=config, clock=clock)

    def _setting(self, section: str, key: str):
        value = self.config.get(section, {}).get(key)
        return DEFAULT_CONFIG[section][key] if value is None else value

    # -- degraded reads ---------------------------------------------------

    def _custom_controls(self, tenant_id: str) -> list[Control]:
        try:
            return self.custom.custom_controls(tenant_id)
        except StoreUnavailableError as e:
            logger.warning("Custom controls unavailable for tenant %s: %s", tenant_id, e)
            return []

    def _snapshots(
        self, tenant_id: str, since: Optional[datetime] = None
    ) -> list[ComplianceSnapshot]:
        try:
            found = self.store.list_snapshots(tenant_id, since=since)
        except StoreUnavailableError as e:
            logger.warning("Snapshots unavailable for tenant %s: %s", tenant_id, e)
            return []
        return [s for s in found if s.tenant_id == tenant_id]

    # -- catalog ----------------------------------------------------------

    def frameworks(self) -> list[FrameworkInfo]:
        return [f.info() for f in self.catalog.frameworks()]

    def framework(self, framework_id: str) -> Framework:
        return self.catalog.require_framework(framework_id)

    def controls(self, tenant_id: str, domain_id: Optional[str] = None) -> list[Control]:
        """Catalog controls followed by the tenant's custom controls."""
        tenant_id = require_tenant(tenant_id)
        controls = self.catalog.controls() + self._custom_controls(tenant_id)
        if domain_id is not None:
            controls = [c for c in controls if c.domain == domain_id]
        return controls

    def domains(self, tenant_id: str) -> list[Domain]:
        tenant_id = require_tenant(tenant_id)
        domains = self.catalog.domains()
        if self._custom_controls(tenant_id):
            domains.append(CUSTOM_DOMAIN)
        return domains

    def add_custom_control(self, tenant_id: str, data: CustomControlInput) -> Control:
        return self.custom.add(tenant_id, data)

    def update_custom_control(self, tenant_id: str, control_id: str, data: CustomControlInput) -> Control:
        return self.custom.update(tenant_id, control_id, data)

    def remove_custom_control(self, tenant_id: str, control_id: str) -> None:
        self.custom.remove(tenant_id, control_id)

    # -- mapping ----------------------------------------------------------

    def invalidate(self, tenant_id: str) -> None:
        """Drop cached mapping results for a tenant."""
        with self._lock:
            self._indexes.pop(tenant_id, None)

    def mapping_index(self, tenant_id: str) -> MappingIndex:
        tenant_id = require_tenant(tenant_id)
        with self._lock:
            index = self._indexes.get(tenant_id)
        if index is not None:
            return index
        try:
            custom = self.custom.custom_controls(tenant_id)
        except StoreUnavailableError as e:
            # Degraded: serve the catalog-only index without caching it.
            logger.warning("Custom controls unavailable for tenant %s: %s", tenant_id, e)
            return MappingIndex.build(self.catalog.controls(), self.catalog.frameworks())
        index = MappingIndex.build(self.catalog.controls() + custom, self.catalog.frameworks())
        with self._lock:
            self._indexes[tenant_id] = index
        return index

    def coverage(self, tenant_id: str, framework_id: Optional[str] = None) -> dict[str, CoverageStats]:
        index = self.mapping_index(tenant_id)
        if framework_id is not None:
            return {framework_id: index.coverage(framework_id)}
        return index.coverage_all()

    # -- control responses ------------------------------------------------

    def responses(self, tenant_id: str) -> dict[str, ControlResponse]:
        """Responses keyed by control id; rows for unknown controls are excluded."""
        tenant_id = require_tenant(tenant_id)
        try:
            rows = self.store.list_responses(tenant_id)
        except StoreUnavailableError as e:
            logger.warning("Responses unavailable for tenant %s: %s", tenant_id, e)
            return {}
        known = {c.id for c in self.controls(tenant_id)}
        result: dict[str, ControlResponse] = {}
        for row in rows:
            if row.tenant_id != tenant_id:
                continue
            if row.control_id not in known:
                logger.warning("Ignoring response for unknown control %s (tenant %s)", row.control_id, tenant_id)
                continue
            result[row.control_id] = row
        return result

    def answers(self, tenant_id: str) -> dict[str, Answer]:
        return {cid: r.answer for cid, r in self.responses(tenant_id).items()}

    def _require_control(self, tenant_id: str, control_id: str) -> Control:
        control = self.custom.control(tenant_id, control_id)
        if control is None:
            raise NotFoundError("Control", control_id, tenant_id)
        return control

    def answer(
        self,
        tenant_id: str,
        control_id: str,
        answer: Union[Answer, str],
        notes: Optional[str] = None,
    ) -> ControlResponse:
        """Record or change a tenant's answer to a control."""
        tenant_id = require_tenant(tenant_id)
        try:
            answer = Answer(answer)
        except ValueError as e:
            raise ValidationError(
                f"Unknown answer {answer!r}; expected one of {', '.join(a.value for a in Answer)}"
            ) from e
        self._require_control(tenant_id, control_id)

        now = self.clock()
        response = self.store.get_response(tenant_id, control_id) or ControlResponse(
            tenant_id=tenant_id, control_id=control_id
        )
        response.answer = answer
        if notes is not None:
            response.notes = notes
        if response.answered_at is None and answer != Answer.UNANSWERED:
            response.answered_at = now
        response.updated_at = now
        self.store.save_response(response)
        return response

    def set_remediation_plan(self, tenant_id: str, control_id: str, plan: str) -> ControlResponse:
        """Attach a remediation plan. It is kept whatever the answer, but only shown for ``no``."""
        tenant_id = require_tenant(tenant_id)
        self._require_control(tenant_id, control_id)
        response = self.store.get_response(tenant_id, control_id) or ControlResponse(
            tenant_id=tenant_id, control_id=control_id
        )
        response.remediation_plan = plan
        response.updated_at = self.clock()
        self.store.save_response(response)
        return response

    # -- scoring ----------------------------------------------------------

    def scores(self, tenant_id: str) -> ScoreBreakdown:
        controls = self.controls(tenant_id)
        answers = self.answers(tenant_id)
        return ScoreBreakdown(
            tenant_id=tenant_id,
            overall=scoring.global_score(controls, answers),
            domains=scoring.domain_scores(controls, self.domains(tenant_id), answers),
            frameworks=scoring.framework_scores(controls, self.catalog.frameworks(), answers),
        )

    def global_score(self, tenant_id: str) -> LevelScore:
        return scoring.global_score(self.controls(tenant_id), self.answers(tenant_id))

    def domain_score(self, tenant_id: str, domain_id: str) -> LevelScore:
        domain = self.catalog.domain(domain_id)
        return scoring.score_controls(
            domain_id,
            self.controls(tenant_id, domain_id),
            self.answers(tenant_id),
            name=domain.title if domain else "",
        )

    def framework_score(self, tenant_id: str, framework_id: str) -> FrameworkProgress:
        framework = self.catalog.framework(framework_id)
        return scoring.framework_score(
            framework_id,
            self.controls(tenant_id),
            self.answers(tenant_id),
            name=framework.name if framework else "",
        )

    def critical_gaps(self, tenant_id: str, limit: Optional[int] = None) -> list[Gap]:
        if limit is None:
            limit = self._setting("scoring", "top_gaps")
        return scoring.critical_gaps(self.controls(tenant_id), self.answers(tenant_id), limit)

    def stats(self, tenant_id: str) -> AssessmentStats:
        return scoring.assessment_stats(self.controls(tenant_id), self.answers(tenant_id))

    # -- requirement views ------------------------------------------------

    def _recorded(self, tenant_id: str, framework_id: str) -> dict:
        try:
            return self.session(tenant_id, framework_id).assessments()
        except StoreUnavailableError as e:
            logger.warning("Assessments unavailable for tenant %s: %s", tenant_id, e)
            return {}

    def requirement_view(self, tenant_id: str, framework_id: str, requirement_id: str) -> RequirementView:
        """Implied and recorded status of one leaf requirement, side by side."""
        framework = self.framework(framework_id)
        requirement = framework.tree.get(requirement_id)
        if requirement is None:
            raise NotFoundError(f"Requirement in {framework_id}", requirement_id)
        index = self.mapping_index(tenant_id)
        answers = self.answers(tenant_id)

        mapped = index.controls_for(framework_id, requirement_id)
        return RequirementView(
            framework_id=framework_id,
            requirement=requirement,
            mapped_controls=[
                MappedControl(
                    control=c,
                    mapping_type=DIRECT,
                    clause_id=requirement_id,
                    answer=scoring.answer_of(answers, c.id),
                )
                for c in mapped
            ],
            related_controls=[
                MappedControl(
                    control=c,
                    mapping_type=kind,
                    clause_id=clause,
                    answer=scoring.answer_of(answers, c.id),
                )
                for c, kind, clause in index.related_controls(framework_id, requirement_id)
            ],
            implied_status=scoring.implied_status(mapped, answers),
            recorded=self._recorded(tenant_id, framework_id).get(requirement_id),
        )

    def requirement_status(self, tenant_id: str, framework_id: str, requirement_id: str) -> RequirementStatus:
        """Effective status of any node; grouping nodes roll up their leaves."""
        framework = self.framework(framework_id)
        tree = framework.tree
        if requirement_id not in tree:
            raise NotFoundError(f"Requirement in {framework_id}", requirement_id)
        index = self.mapping_index(tenant_id)
        answers = self.answers(tenant_id)
        recorded = self._recorded(tenant_id, framework_id)

        statuses: list[RequirementStatus] = []
        for leaf in tree.descendant_leaves(requirement_id):
            record = recorded.get(leaf.id)
            if record is not None and record.status != RequirementStatus.NOT_ASSESSED:
                statuses.append(record.status)
            else:
                statuses.append(scoring.implied_status(index.controls_for(framework_id, leaf.id), answers))
        if tree.is_leaf(requirement_id):
            return statuses[0]
        return scoring.rollup_status(statuses)

    # -- assessment workflow ----------------------------------------------

    def session(self, tenant_id: str, framework_id: str) -> AssessmentSession:
        tenant_id = require_tenant(tenant_id)
        framework = self.framework(framework_id)
        key = (tenant_id, framework_id)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = AssessmentSession(
                    tenant_id,
                    framework,
                    self.store,
                    clock=self.clock,
                    max_critical_gaps=self._setting("assessment", "max_critical_gaps"),
                )
                self._sessions[key] = session
        return session

    def assessment_summary(self, tenant_id: str, framework_id: str) -> AssessmentSummary:
        session = self.session(tenant_id, framework_id)
        try:
            return session.summary()
        except StoreUnavailableError as e:
            logger.warning("Assessments unavailable for tenant %s: %s", tenant_id, e)
            leaves = len(session.leaves)
            return AssessmentSummary(
                framework_id=framework_id,
                framework_version=session.framework.version,
                total_requirements=leaves,
                compliance_by_status={s: 0 for s in RequirementStatus} | {RequirementStatus.NOT_ASSESSED: leaves},
            )

    def progress(self, tenant_id: str, framework_id: str) -> Progress:
        session = self.session(tenant_id, framework_id)
        try:
            return session.progress()
        except StoreUnavailableError as e:
            logger.warning("Assessments unavailable for tenant %s: %s", tenant_id, e)
            return Progress(total=len(session.leaves))

    def reset_framework(self, tenant_id: str, framework_id: str) -> int:
        """Clear every assessment record for a framework. Unknown frameworks raise NotFoundError."""
        tenant_id = require_tenant(tenant_id)
        self.catalog.require_framework(framework_id)
        return self.session(tenant_id, framework_id).reset()

    def reset_all(self, tenant_id: str) -> int:
        return sum(self.reset_framework(tenant_id, fid) for fid in self.catalog.framework_ids())

    # -- analytics --------------------------------------------------------

    def create_snapshot(self, tenant_id: str) -> ComplianceSnapshot:
        """Freeze current scores. Requirement assessments are not read."""
        breakdown = self.scores(tenant_id)
        snapshot = analytics.build_snapshot(
            tenant_id,
            self.clock(),
            breakdown.overall,
            breakdown.domains,
            breakdown.frameworks,
        )
        self.store.add_snapshot(snapshot)
        logger.info("Snapshot %s for tenant %s: score %d", snapshot.id, tenant_id, snapshot.overall_score)
        return snapshot

    def trend(self, tenant_id: str, days: Optional[int] = None) -> list[TrendPoint]:
        tenant_id = require_tenant(tenant_id)
        if days is None:
            days = self._setting("analytics", "trend_days")
        since = self.clock() - timedelta(days=days)
        return analytics.trend(self._snapshots(tenant_id, since=since))

    def delta(self, tenant_id: str, days_ago: int) -> Optional[int]:
        """Live score minus the baseline ``days_ago`` days back, or None without a baseline."""
        tenant_id = require_tenant(tenant_id)
        current = self.global_score(tenant_id).score
        return analytics.score_delta(current, self._snapshots(tenant_id), self.clock().date(), days_ago)

    def gap_analysis(self, tenant_id: str) -> GapAnalysis:
        return analytics.gap_analysis(
            self.controls(tenant_id),
            self.answers(tenant_id),
            framework_ids=self.catalog.framework_ids(),
            domain_ids=[d.id for d in self.domains(tenant_id)],
        )

    def domain_analysis(self, tenant_id: str) -> list[DomainAnalysis]:
        return analytics.domain_analysis(
            self.controls(tenant_id),
            self.domains(tenant_id),
            self.answers(tenant_id),
        )

    def framework_trends(self, tenant_id: str) -> list[FrameworkTrend]:
        breakdown = self.scores(tenant_id)
        return analytics.framework_trends(self._snapshots(tenant_id), breakdown.frameworks, self.clock().date())

    def dashboard(self, tenant_id: str) -> DashboardMetrics:
        breakdown = self.scores(tenant_id)
        return analytics.dashboard_metrics(
            self.controls(tenant_id),
            self.answers(tenant_id),
            breakdown.overall,
            breakdown.frameworks,
            self._snapshots(tenant_id),
            self.clock().date(),
        )

    def export(self, tenant_id: str) -> ExportBundle:
        """Numbers and control metadata for an external report generator."""
        tenant_id = require_tenant(tenant_id)
        breakdown = self.scores(tenant_id)
        return ExportBundle(
            tenant_id=tenant_id,
            generated_at=self.clock(),
            scores=breakdown,
            stats=self.stats(tenant_id),
            critical_gaps=self.critical_gaps(tenant_id),
            gap_analysis=self.gap_analysis(tenant_id),
            trend=self.trend(tenant_id),
            deltas={d: self.delta(tenant_id, d) for d in self._setting("analytics", "delta_days")},
            coverage=self.coverage(tenant_id),
        )
