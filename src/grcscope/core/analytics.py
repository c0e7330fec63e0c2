"""Snapshots, trends, deltas and gap analysis."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta
from typing import Iterable, Mapping, Optional

from ..models.catalog import Control, Domain, RiskLevel
from ..models.records import Answer, ComplianceSnapshot
from ..models.results import (
    DashboardMetrics,
    DomainAnalysis,
    FrameworkProgress,
    FrameworkTrend,
    Gap,
    GapAnalysis,
    LevelScore,
    TrendPoint,
)
from .scoring import answer_of, score_controls

UNMET = (Answer.NO, Answer.UNANSWERED)


def build_snapshot(
    tenant_id: str,
    taken_at: datetime,
    overall: LevelScore,
    domains: Mapping[str, LevelScore],
    frameworks: Mapping[str, LevelScore],
) -> ComplianceSnapshot:
    """Freeze computed scores into a snapshot. Counts are copied, not recomputed."""
    return ComplianceSnapshot(
        id=uuid.uuid4().hex,
        tenant_id=tenant_id,
        taken_at=taken_at,
        overall_score=overall.score,
        total_controls=overall.total,
        implemented_controls=overall.implemented,
        partial_controls=overall.partial,
        not_implemented_controls=overall.not_implemented,
        not_applicable_controls=overall.not_applicable,
        not_started_controls=overall.not_started,
        framework_scores={fid: s.score for fid, s in frameworks.items()},
        domain_scores={did: s.score for did, s in domains.items()},
    )


def trend(snapshots: Iterable[ComplianceSnapshot]) -> list[TrendPoint]:
    return [
        TrendPoint(
            timestamp=s.taken_at,
            score=s.overall_score,
            implemented=s.implemented_controls,
            partial=s.partial_controls,
            not_implemented=s.not_implemented_controls,
        )
        for s in sorted(snapshots, key=lambda s: s.taken_at)
    ]


def baseline_snapshot(
    snapshots: Iterable[ComplianceSnapshot],
    today: date,
    days_ago: int,
) -> Optional[ComplianceSnapshot]:
    """Latest snapshot whose calendar date is on or before ``today - days_ago``.

    Never the nearest in the other direction: a newer snapshot is not a
    baseline for an older date.
    """
    target = today - timedelta(days=days_ago)
    candidates = [s for s in snapshots if s.taken_at.date() <= target]
    if not candidates:
        return None
    return max(candidates, key=lambda s: s.taken_at)


def score_delta(
    current_score: int,
    snapshots: Iterable[ComplianceSnapshot],
    today: date,
    days_ago: int,
) -> Optional[int]:
    """``current - baseline``; None means there is no baseline, not "no change"."""
    baseline = baseline_snapshot(snapshots, today, days_ago)
    if baseline is None:
        return None
    return current_score - baseline.overall_score


def _gap(control: Control, answer: Answer) -> Gap:
    return Gap(
        control_id=control.id,
        title=control.title,
        domain=control.domain,
        risk_level=control.risk_level,
        answer=answer,
    )


def gap_analysis(
    controls: Iterable[Control],
    answers: Mapping[str, Answer],
    framework_ids: Iterable[str] = (),
    domain_ids: Iterable[str] = (),
) -> GapAnalysis:
    """Bucket unmet controls (``no`` or unanswered) by risk, and count them per framework and domain.

    Low-risk gaps are counted per framework and domain but have no bucket.
    A control mapped several times to one framework counts once there.
    """
    result = GapAnalysis(
        by_framework={fid: 0 for fid in framework_ids},
        by_domain={did: 0 for did in domain_ids},
    )
    buckets = {
        RiskLevel.CRITICAL: result.critical,
        RiskLevel.HIGH: result.high,
        RiskLevel.MEDIUM: result.medium,
    }
    for control in controls:
        answer = answer_of(answers, control.id)
        if answer not in UNMET:
            continue
        bucket = buckets.get(control.risk_level)
        if bucket is not None:
            bucket.append(_gap(control, answer))
        result.by_domain[control.domain] = result.by_domain.get(control.domain, 0) + 1
        for fid in sorted(control.framework_ids()):
            result.by_framework[fid] = result.by_framework.get(fid, 0) + 1
    result.total_gaps = len(result.critical) + len(result.high) + len(result.medium)
    return result


def domain_risk(score: int, gaps: list[Gap]) -> RiskLevel:
    critical = sum(1 for g in gaps if g.risk_level == RiskLevel.CRITICAL)
    high = sum(1 for g in gaps if g.risk_level == RiskLevel.HIGH)
    if critical > 0 or score < 30:
        return RiskLevel.CRITICAL
    if high > 2 or score < 50:
        return RiskLevel.HIGH
    if score < 70:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def domain_analysis(
    controls: list[Control],
    domains: Iterable[Domain],
    answers: Mapping[str, Answer],
    top: int = 5,
) -> list[DomainAnalysis]:
    results: list[DomainAnalysis] = []
    for domain in domains:
        pool = [c for c in controls if c.domain == domain.id]
        level = score_controls(domain.id, pool, answers, name=domain.title)
        gaps = [
            _gap(c, answer_of(answers, c.id))
            for c in pool
            if answer_of(answers, c.id) in UNMET
        ]
        gaps.sort(key=lambda g: (g.risk_level.rank, g.control_id))
        results.append(DomainAnalysis(
            domain=domain.id,
            title=domain.title,
            total_controls=level.total,
            implemented=level.implemented,
            partial=level.partial,
            not_implemented=level.not_implemented,
            not_started=level.not_started,
            score=level.score,
            risk_level=domain_risk(level.score, gaps),
            top_gaps=gaps[:top],
        ))
    return results


def framework_trends(
    snapshots: list[ComplianceSnapshot],
    current: Mapping[str, FrameworkProgress],
    today: date,
) -> list[FrameworkTrend]:
    ordered = sorted(snapshots, key=lambda s: s.taken_at)
    trends: list[FrameworkTrend] = []
    for fid, progress in current.items():
        with_framework = [s for s in ordered if fid in s.framework_scores]
        points = [
            TrendPoint(timestamp=s.taken_at, score=s.framework_scores[fid])
            for s in with_framework
        ]
        changes: dict[int, Optional[int]] = {}
        for days in (30, 90):
            baseline = baseline_snapshot(with_framework, today, days)
            changes[days] = None if baseline is None else progress.score - baseline.framework_scores[fid]
        trends.append(FrameworkTrend(
            framework_id=fid,
            framework_name=progress.name,
            points=points,
            current_score=progress.score,
            change_30d=changes[30],
            change_90d=changes[90],
        ))
    return trends


def dashboard_metrics(
    controls: Iterable[Control],
    answers: Mapping[str, Answer],
    overall: LevelScore,
    frameworks: Mapping[str, LevelScore],
    snapshots: list[ComplianceSnapshot],
    today: date,
) -> DashboardMetrics:
    critical = 0
    high = 0
    for control in controls:
        if answer_of(answers, control.id) not in UNMET:
            continue
        if control.risk_level == RiskLevel.CRITICAL:
            critical += 1
        elif control.risk_level == RiskLevel.HIGH:
            high += 1
    return DashboardMetrics(
        overall_score=overall.score,
        score_change_7d=score_delta(overall.score, snapshots, today, 7),
        score_change_30d=score_delta(overall.score, snapshots, today, 30),
        controls_implemented=overall.implemented,
        controls_total=overall.total,
        critical_gaps=critical,
        high_gaps=high,
        framework_readiness={fid: s.score for fid, s in frameworks.items()},
    )
