"""Tests for the grcscope CLI."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from grcscope.cli.main import cli
from grcscope.core.config import STORE_BACKEND_ENV


@pytest.fixture
def run(tmp_path: Path, monkeypatch):
    """Invoke the CLI against a fresh workspace with the file store."""
    monkeypatch.delenv(STORE_BACKEND_ENV, raising=False)
    monkeypatch.delenv("GRCSCOPE_TENANT", raising=False)
    runner = CliRunner()

    def invoke(*args: str):
        return runner.invoke(cli, ["--workspace", str(tmp_path), *args])

    return invoke


class TestCatalogCommands:
    def test_frameworks(self, run):
        result = run("frameworks")
        assert result.exit_code == 0
        assert "SOC2" in result.output
        assert "HIPAA" in result.output

    def test_frameworks_json(self, run):
        result = run("--json", "frameworks")
        data = json.loads(result.output)
        assert {"SOC2", "ISO27001", "HIPAA", "PCI_DSS"} <= {f["id"] for f in data}

    def test_coverage_json(self, run):
        result = run("--json", "coverage", "--framework", "SOC2")
        data = json.loads(result.output)
        assert data["SOC2"]["mapped"] > 0


class TestAnswers:
    def test_answer_persists_between_invocations(self, run, tmp_path: Path):
        assert run("answer", "AC-001", "yes").exit_code == 0
        result = run("--json", "score")
        data = json.loads(result.output)
        assert data["overall"]["implemented"] == 1
        assert (tmp_path / ".grcscope" / "data" / "default" / "responses.json").exists()

    def test_tenant_option(self, run):
        run("--tenant", "acme", "answer", "AC-001", "yes")
        data = json.loads(run("--json", "score").output)
        assert data["overall"]["implemented"] == 0

    def test_unknown_control(self, run):
        result = run("answer", "XX-999", "yes")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_invalid_answer_choice(self, run):
        result = run("answer", "AC-001", "maybe")
        assert result.exit_code == 2

    def test_gaps(self, run):
        run("answer", "AC-001", "no")
        result = run("--json", "gaps")
        assert [g["control_id"] for g in json.loads(result.output)] == ["AC-001"]


class TestCustomControls:
    def test_add_and_remove(self, run):
        result = run("--json", "custom", "add", "--title", "Badge audit", "--map", "SOC2:CC6.4")
        control = json.loads(result.output)
        assert control["domain"] == "company_specific"

        domains = json.loads(run("--json", "domains").output)
        assert "company_specific" in [d["id"] for d in domains]

        assert run("custom", "remove", control["id"]).exit_code == 0
        domains = json.loads(run("--json", "domains").output)
        assert "company_specific" not in [d["id"] for d in domains]

    def test_bad_mapping(self, run):
        result = run("custom", "add", "--title", "Badge audit", "--map", "SOC2")
        assert result.exit_code == 1

    def test_empty_title(self, run):
        result = run("custom", "add", "--title", "")
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Error: title" in result.output


class TestAssessCommands:
    def test_set_and_summary(self, run):
        assert run("assess", "set", "SOC2", "CC6.1", "compliant", "--note", "MFA everywhere").exit_code == 0
        data = json.loads(run("--json", "assess", "summary", "SOC2").output)
        assert data["compliance_by_status"]["compliant"] == 1
        assert data["progress"]["assessed"] == 1

    def test_skip(self, run):
        result = run("assess", "skip", "SOC2", "CC6.1")
        assert result.exit_code == 0
        assert "Skipped" in result.output
        data = json.loads(run("--json", "assess", "summary", "SOC2").output)
        assert data["skipped_requirements"] == 1
        assert data["progress"]["assessed"] == 1

    def test_decide_on_required_requirement(self, run):
        result = run("assess", "decide", "HIPAA", "164.312(d)", "implemented")
        assert result.exit_code == 1
        assert "required" in result.output

    def test_decide_addressable(self, run):
        result = run(
            "assess", "decide", "HIPAA", "164.312(a)(2)(iv)", "not_reasonable",
            "--justification", "No ePHI stored at rest",
        )
        assert result.exit_code == 0
        assert "not_applicable" in result.output

    def test_reset(self, run):
        run("assess", "set", "SOC2", "CC6.1", "compliant")
        result = run("assess", "reset", "SOC2", "--yes")
        assert result.exit_code == 0
        assert "Reset 1" in result.output
        data = json.loads(run("--json", "assess", "summary", "SOC2").output)
        assert data["compliance_by_status"]["compliant"] == 0

    def test_reset_unknown_framework(self, run):
        result = run("assess", "reset", "NIST", "--yes")
        assert result.exit_code == 1

    def test_group_requirement_rejected(self, run):
        result = run("assess", "set", "SOC2", "CC6", "compliant")
        assert result.exit_code == 1


class TestAnalyticsCommands:
    def test_snapshot_and_trend(self, run):
        run("answer", "AC-001", "yes")
        assert run("snapshot").exit_code == 0
        points = json.loads(run("--json", "trend").output)
        assert len(points) == 1

    def test_delta_without_history(self, run):
        data = json.loads(run("--json", "delta", "30").output)
        assert data == {"days": 30, "delta": None}

    def test_export(self, run, tmp_path: Path):
        target = tmp_path / "export.json"
        result = run("export", "--output", str(target))
        assert result.exit_code == 0
        bundle = json.loads(target.read_text(encoding="utf-8"))
        assert bundle["tenant_id"] == "default"
        assert "gap_analysis" in bundle

    def test_analysis_and_dashboard(self, run):
        run("answer", "AC-001", "no")
        assert run("analysis").exit_code == 0
        data = json.loads(run("--json", "dashboard").output)
        assert data["critical_gaps"] >= 1
        assert data["score_change_7d"] is None


class TestConfiguration:
    def test_bad_backend_reported(self, run, tmp_path: Path):
        (tmp_path / ".grcscope").mkdir()
        (tmp_path / ".grcscope" / "config.yaml").write_text("store:\n  backend: mongo\n", encoding="utf-8")
        result = run("frameworks")
        assert result.exit_code == 2
        assert "Unknown store backend" in result.output
