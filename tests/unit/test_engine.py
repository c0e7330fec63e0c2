"""Tests for core/engine.py."""

from __future__ import annotations

import json

import httpx
import pytest

from grcscope.core.engine import ComplianceEngine
from grcscope.core.errors import NotFoundError, StoreUnavailableError, ValidationError
from grcscope.models.catalog import CUSTOM_DOMAIN_ID, CustomControlInput, FrameworkMapping
from grcscope.models.records import Answer, ControlResponse, RequirementStatus
from grcscope.stores.files import FileStore
from grcscope.stores.memory import MemoryStore
from grcscope.stores.supabase import SupabaseStore


class UnavailableStore(MemoryStore):
    """Memory store whose reads fail as if the database were down."""

    def _down(self, *args, **kwargs):
        raise StoreUnavailableError("database unreachable")

    list_responses = _down
    list_assessments = _down
    list_snapshots = _down
    list_custom_controls = _down


class TestAnswers:
    def test_answer_and_reanswer(self, engine, clock):
        first = engine.answer("acme", "AC-001", "no", notes="pending rollout")
        clock.advance(days=2)
        second = engine.answer("acme", "AC-001", "yes")
        assert second.answered_at == first.answered_at
        assert second.updated_at == clock.now
        assert second.notes == "pending rollout"
        assert engine.answers("acme") == {"AC-001": Answer.YES}

    def test_unknown_answer(self, engine):
        with pytest.raises(ValidationError):
            engine.answer("acme", "AC-001", "maybe")

    def test_unknown_control(self, engine):
        with pytest.raises(NotFoundError):
            engine.answer("acme", "XX-999", "yes")

    def test_empty_tenant(self, engine):
        with pytest.raises(ValidationError):
            engine.answer(" ", "AC-001", "yes")

    def test_remediation_plan(self, engine):
        engine.answer("acme", "DP-001", "no")
        response = engine.set_remediation_plan("acme", "DP-001", "Enable KMS encryption")
        assert response.remediation_plan == "Enable KMS encryption"
        assert response.answer == Answer.NO

    def test_tenants_isolated(self, answered_engine):
        assert answered_engine.answers("globex") == {}
        assert answered_engine.global_score("globex").score == 0


class TestScores:
    def test_breakdown(self, answered_engine):
        scores = answered_engine.scores("acme")
        assert scores.overall.score == 50
        assert scores.domains["access_control"].score == 75
        assert {fid: f.score for fid, f in scores.frameworks.items()} == {"SOC2": 50, "HIPAA": 100, "PCI_DSS": 0}

    def test_critical_gaps_uses_configured_limit(self, catalog, store, clock):
        engine = ComplianceEngine(catalog, store, config={"scoring": {"top_gaps": 1}}, clock=clock)
        engine.answer("acme", "AC-001", "no")
        engine.answer("acme", "AC-002", "no")
        assert [g.control_id for g in engine.critical_gaps("acme")] == ["AC-001"]
        assert len(engine.critical_gaps("acme", limit=5)) == 2

    def test_stats(self, answered_engine):
        stats = answered_engine.stats("acme")
        assert stats.answered_controls == 4
        assert stats.assessment_percentage == 100


class TestRequirementViews:
    def test_view(self, answered_engine):
        view = answered_engine.requirement_view("acme", "SOC2", "CC6.1")
        assert [m.control.id for m in view.mapped_controls] == ["AC-001", "DP-001"]
        assert view.implied_status == RequirementStatus.PARTIALLY_COMPLIANT
        assert view.recorded is None
        assert view.effective_status == RequirementStatus.PARTIALLY_COMPLIANT

    def test_related_controls_in_view(self, answered_engine):
        view = answered_engine.requirement_view("acme", "HIPAA", "164.312(a)(2)(iv)")
        assert view.mapped_controls == []
        assert [(m.control.id, m.mapping_type) for m in view.related_controls] == [("DP-002", "partial")]
        assert view.implied_status == RequirementStatus.NOT_ASSESSED

    def test_recorded_status_never_overwritten(self, engine, store):
        engine.session("acme", "SOC2").save_status("non_compliant", requirement_id="CC6.1")
        engine.answer("acme", "AC-001", "yes")
        engine.answer("acme", "DP-001", "yes")

        view = engine.requirement_view("acme", "SOC2", "CC6.1")
        assert view.implied_status == RequirementStatus.COMPLIANT
        assert view.effective_status == RequirementStatus.NON_COMPLIANT
        assert store.get_assessment("acme", "SOC2", "CC6.1").status == RequirementStatus.NON_COMPLIANT

    def test_group_rollup(self, answered_engine):
        answered_engine.session("acme", "SOC2").save_status("not_applicable", requirement_id="CC6.3")
        # CC6.1 implied partial, CC6.2 implied partial, CC6.3 recorded n/a.
        assert answered_engine.requirement_status("acme", "SOC2", "CC6") == RequirementStatus.PARTIALLY_COMPLIANT
        assert answered_engine.requirement_status("acme", "SOC2", "CC6.3") == RequirementStatus.NOT_APPLICABLE

    def test_unknown_requirement(self, engine):
        with pytest.raises(NotFoundError):
            engine.requirement_view("acme", "SOC2", "CC1.1")
        with pytest.raises(NotFoundError):
            engine.requirement_status("acme", "NIST", "AC-2")


class TestCustomControls:
    def test_custom_control_joins_scoring_and_mapping(self, engine):
        control = engine.add_custom_control("acme", CustomControlInput(
            title="Badge audit",
            risk_level="critical",
            mappings=[FrameworkMapping(framework_id="SOC2", clause_id="CC6.3")],
        ))
        assert engine.coverage("acme", "SOC2")["SOC2"].mapped == 3
        assert engine.coverage("globex", "SOC2")["SOC2"].mapped == 2
        engine.answer("acme", control.id, "no")
        assert [g.control_id for g in engine.critical_gaps("acme")] == [control.id]
        assert CUSTOM_DOMAIN_ID in [d.id for d in engine.domains("acme")]

    def test_removing_last_custom_control(self, engine, store, caplog):
        control = engine.add_custom_control("acme", CustomControlInput(
            title="Badge audit",
            mappings=[FrameworkMapping(framework_id="SOC2", clause_id="CC6.3")],
        ))
        engine.answer("acme", control.id, "yes")
        engine.answer("acme", "AC-001", "no")
        assert engine.global_score("acme").score == 20

        engine.remove_custom_control("acme", control.id)
        assert CUSTOM_DOMAIN_ID not in [d.id for d in engine.domains("acme")]
        assert CUSTOM_DOMAIN_ID not in engine.scores("acme").domains
        assert engine.coverage("acme", "SOC2")["SOC2"].mapped == 2
        # The orphaned response is still stored but no longer scored.
        assert store.get_response("acme", control.id) is not None
        assert control.id not in engine.answers("acme")
        assert engine.global_score("acme").score == 0
        assert "unknown control" in caplog.text


class TestAnalytics:
    def test_snapshot_matches_live_scores(self, answered_engine):
        snapshot = answered_engine.create_snapshot("acme")
        live = answered_engine.scores("acme")
        assert snapshot.overall_score == live.overall.score
        assert snapshot.implemented_controls == live.overall.implemented
        assert snapshot.partial_controls == live.overall.partial
        assert snapshot.not_implemented_controls == live.overall.not_implemented
        assert snapshot.not_applicable_controls == live.overall.not_applicable
        assert snapshot.framework_scores == {fid: f.score for fid, f in live.frameworks.items()}
        assert snapshot.domain_scores == {did: d.score for did, d in live.domains.items()}

    def test_delta_against_older_snapshot(self, engine, clock):
        engine.answer("acme", "AC-001", "no")
        engine.create_snapshot("acme")  # day -45, score 0
        clock.advance(days=40)
        engine.answer("acme", "AC-001", "yes")
        engine.create_snapshot("acme")  # day -5
        clock.advance(days=5)
        engine.answer("acme", "AC-002", "yes")

        assert engine.delta("acme", 30) == engine.global_score("acme").score - 0
        assert engine.delta("acme", 60) is None

    def test_trend_window(self, engine, clock):
        engine.create_snapshot("acme")
        clock.advance(days=100)
        engine.create_snapshot("acme")
        assert len(engine.trend("acme")) == 1
        assert len(engine.trend("acme", days=365)) == 2

    def test_snapshots_are_per_tenant(self, answered_engine):
        answered_engine.create_snapshot("acme")
        assert answered_engine.trend("globex") == []

    def test_dashboard_without_history(self, answered_engine):
        metrics = answered_engine.dashboard("acme")
        assert metrics.overall_score == 50
        assert metrics.score_change_7d is None

    def test_export(self, answered_engine):
        bundle = answered_engine.export("acme")
        assert bundle.scores.overall.score == 50
        assert set(bundle.deltas) == {7, 30, 90}
        assert "SOC2" in bundle.coverage
        assert bundle.model_dump_json()


class TestDegradedReads:
    def test_reads_degrade_to_empty(self, catalog, clock, caplog):
        engine = ComplianceEngine(catalog, UnavailableStore(), clock=clock)
        assert engine.global_score("acme").score == 0
        assert engine.gap_analysis("acme").total_gaps == 3
        assert engine.trend("acme") == []
        assert engine.delta("acme", 30) is None
        assert engine.coverage("acme", "SOC2")["SOC2"].mapped == 2
        summary = engine.assessment_summary("acme", "SOC2")
        assert summary.compliance_by_status[RequirementStatus.NOT_ASSESSED] == 3
        progress = engine.progress("acme", "SOC2")
        assert (progress.assessed, progress.total) == (0, 3)
        assert "unavailable" in caplog.text

    def test_rejected_api_key_degrades(self, catalog, clock):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "Invalid API key"})

        store = SupabaseStore(
            url="https://example.supabase.co",
            api_key="sb_secret_expired",
            transport=httpx.MockTransport(handler),
        )
        engine = ComplianceEngine(catalog, store, clock=clock)
        assert engine.scores("acme").overall.score == 0
        assert engine.gap_analysis("acme").total_gaps == 3
        assert engine.trend("acme") == []
        assert engine.dashboard("acme").score_change_7d is None

    def test_malformed_file_records_ignored(self, catalog, clock, tmp_path):
        (tmp_path / "acme").mkdir()
        (tmp_path / "acme" / "responses.json").write_text(json.dumps({
            "AC-001": {"control_id": "AC-001"},
            "AC-002": {"tenant_id": "acme", "control_id": "AC-002", "answer": "yes"},
        }), encoding="utf-8")
        engine = ComplianceEngine(catalog, FileStore(tmp_path), clock=clock)
        assert engine.answers("acme") == {"AC-002": Answer.YES}
        assert engine.scores("acme").overall.score == 25

    def test_tenant_with_spaces_on_file_store(self, catalog, clock, tmp_path):
        engine = ComplianceEngine(catalog, FileStore(tmp_path), clock=clock)
        engine.answer("Acme Corp", "AC-001", "yes")
        assert engine.scores("Acme Corp").overall.implemented == 1
        assert engine.scores("Acme Corp").overall.score == 25

    def test_mutations_propagate(self, catalog, clock):
        engine = ComplianceEngine(catalog, UnavailableStore(), clock=clock)
        with pytest.raises(StoreUnavailableError):
            engine.add_custom_control("acme", CustomControlInput(title="Badge audit"))

    def test_foreign_rows_ignored(self, engine, store):
        store._responses.setdefault("acme", {})["AC-001"] = ControlResponse(
            tenant_id="globex", control_id="AC-001", answer=Answer.YES
        )
        assert engine.answers("acme") == {}
