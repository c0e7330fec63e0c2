"""Weighted compliance scoring.

Every function here is total: empty answer sets, controls without mappings and
frameworks without matching controls all resolve to zero scores or empty
lists. Answers are passed as a ``control id -> Answer`` mapping; a control
missing from the mapping counts as unanswered.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from ..models.catalog import Control, Domain, RiskLevel
from ..models.records import Answer, RequirementStatus
from ..models.results import AssessmentStats, FrameworkProgress, Gap, LevelScore
from ..utils.percent import percent

ANSWER_WEIGHTS: dict[Answer, float] = {
    Answer.YES: 1.0,
    Answer.PARTIAL: 0.5,
    Answer.NO: 0.0,
    Answer.UNANSWERED: 0.0,
}

STATUS_WEIGHTS: dict[RequirementStatus, float] = {
    RequirementStatus.COMPLIANT: 1.0,
    RequirementStatus.PARTIALLY_COMPLIANT: 0.5,
    RequirementStatus.NON_COMPLIANT: 0.0,
}

GAP_RISKS = (RiskLevel.CRITICAL, RiskLevel.HIGH)


def answer_of(answers: Mapping[str, Answer], control_id: str) -> Answer:
    return answers.get(control_id, Answer.UNANSWERED)


def score_controls(
    level_id: str,
    controls: Iterable[Control],
    answers: Mapping[str, Answer],
    name: str = "",
) -> LevelScore:
    """Score one pool. ``na`` answers leave both numerator and denominator."""
    result = LevelScore(id=level_id, name=name)
    earned = 0.0
    seen: set[str] = set()
    for control in controls:
        if control.id in seen:
            continue
        seen.add(control.id)
        answer = answer_of(answers, control.id)
        result.total += 1
        if answer == Answer.NOT_APPLICABLE:
            result.not_applicable += 1
            continue
        result.applicable += 1
        earned += ANSWER_WEIGHTS[answer]
        if answer == Answer.YES:
            result.implemented += 1
        elif answer == Answer.PARTIAL:
            result.partial += 1
        elif answer == Answer.NO:
            result.not_implemented += 1
        else:
            result.not_started += 1
    result.score = percent(earned, result.applicable)
    return result


def global_score(controls: Iterable[Control], answers: Mapping[str, Answer]) -> LevelScore:
    return score_controls("overall", controls, answers, name="Overall")


def domain_scores(
    controls: list[Control],
    domains: Iterable[Domain],
    answers: Mapping[str, Answer],
) -> dict[str, LevelScore]:
    return {
        d.id: score_controls(d.id, [c for c in controls if c.domain == d.id], answers, name=d.title)
        for d in domains
    }


def framework_score(
    framework_id: str,
    controls: list[Control],
    answers: Mapping[str, Answer],
    name: str = "",
) -> FrameworkProgress:
    """Score over controls with at least one mapping to the framework, each counted once."""
    pool = [c for c in controls if c.maps_to(framework_id)]
    level = score_controls(framework_id, pool, answers, name=name)
    return FrameworkProgress(**level.model_dump(), gaps=level.not_implemented)


def framework_scores(
    controls: list[Control],
    frameworks: Iterable,
    answers: Mapping[str, Answer],
) -> dict[str, FrameworkProgress]:
    return {f.id: framework_score(f.id, controls, answers, name=f.name) for f in frameworks}


def implied_status(mapped: Iterable[Control], answers: Mapping[str, Answer]) -> RequirementStatus:
    """Advisory status of a leaf requirement derived from its mapped controls.

    No controls, or none answered: not assessed. Every control yes or na:
    compliant. Every control no: non-compliant. Anything else: partial.
    """
    values = [answer_of(answers, c.id) for c in mapped]
    if not values or all(v == Answer.UNANSWERED for v in values):
        return RequirementStatus.NOT_ASSESSED
    if all(v in (Answer.YES, Answer.NOT_APPLICABLE) for v in values):
        return RequirementStatus.COMPLIANT
    if all(v == Answer.NO for v in values):
        return RequirementStatus.NON_COMPLIANT
    return RequirementStatus.PARTIALLY_COMPLIANT


def rollup_status(statuses: Iterable[RequirementStatus]) -> RequirementStatus:
    """Status of a grouping node from its descendant leaves' effective statuses."""
    values = list(statuses)
    if not values or all(s == RequirementStatus.NOT_ASSESSED for s in values):
        return RequirementStatus.NOT_ASSESSED
    applicable = [s for s in values if s != RequirementStatus.NOT_APPLICABLE]
    if not applicable:
        return RequirementStatus.NOT_APPLICABLE
    if all(s == RequirementStatus.COMPLIANT for s in applicable):
        return RequirementStatus.COMPLIANT
    if all(s == RequirementStatus.NON_COMPLIANT for s in applicable):
        return RequirementStatus.NON_COMPLIANT
    return RequirementStatus.PARTIALLY_COMPLIANT


def status_percentage(statuses: Iterable[RequirementStatus]) -> int:
    """Weighted percentage over assessment statuses; n/a and not assessed excluded."""
    earned = 0.0
    counted = 0
    for status in statuses:
        if status in STATUS_WEIGHTS:
            earned += STATUS_WEIGHTS[status]
            counted += 1
    return percent(earned, counted)


def critical_gaps(
    controls: Iterable[Control],
    answers: Mapping[str, Answer],
    limit: Optional[int] = 5,
) -> list[Gap]:
    """High and critical controls answered ``no``: critical first, then by id."""
    gaps = [
        Gap(
            control_id=c.id,
            title=c.title,
            domain=c.domain,
            risk_level=c.risk_level,
            answer=Answer.NO,
        )
        for c in controls
        if c.risk_level in GAP_RISKS and answer_of(answers, c.id) == Answer.NO
    ]
    gaps.sort(key=lambda g: (g.risk_level.rank, g.control_id))
    return gaps if limit is None else gaps[:limit]


def assessment_stats(controls: Iterable[Control], answers: Mapping[str, Answer]) -> AssessmentStats:
    stats = AssessmentStats()
    for control in controls:
        answer = answer_of(answers, control.id)
        stats.total_controls += 1
        if answer != Answer.UNANSWERED:
            stats.answered_controls += 1
        if answer in (Answer.YES, Answer.NOT_APPLICABLE):
            stats.compliant_controls += 1
        elif answer == Answer.NO:
            stats.gap_controls += 1
    stats.remaining_controls = stats.total_controls - stats.answered_controls
    stats.assessment_percentage = percent(stats.answered_controls, stats.total_controls)
    return stats
