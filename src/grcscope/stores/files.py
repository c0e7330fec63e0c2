"""JSON file store: one directory per tenant, one document per record family."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from ..core.errors import StoreUnavailableError, ValidationError
from ..models.catalog import Control
from ..models.records import ComplianceSnapshot, ControlResponse, RequirementAssessment
from .base import in_window, parse_record, parse_records


class FileStore:
    """Persist tenant records as JSON under ``root/<tenant>/``.

    Writes go to a temporary file in the same directory followed by
    ``os.replace``, so a document is always either the old or the new version.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._lock = threading.RLock()

    def _tenant_dir(self, tenant_id: str) -> Path:
        if not tenant_id:
            raise ValidationError("Tenant id must not be empty")
        # Dots are encoded too, so "." and ".." stay inside root.
        return self.root / quote(tenant_id, safe="@-_").replace(".", "%2E")

    def _read(self, tenant_id: str, name: str) -> dict:
        path = self._tenant_dir(tenant_id) / f"{name}.json"
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8")) or {}
        except OSError as e:
            raise StoreUnavailableError(f"Cannot read {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StoreUnavailableError(f"Corrupt store document {path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreUnavailableError(f"Corrupt store document {path}: expected an object")
        return data

    def _write(self, tenant_id: str, name: str, data: dict) -> None:
        directory = self._tenant_dir(tenant_id)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, indent=2)
                os.replace(tmp, directory / f"{name}.json")
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write {directory / name}.json: {e}") from e

    def _source(self, tenant_id: str, name: str) -> str:
        return str(self._tenant_dir(tenant_id) / f"{name}.json")

    # responses

    def get_response(self, tenant_id: str, control_id: str) -> Optional[ControlResponse]:
        raw = self._read(tenant_id, "responses").get(control_id)
        return parse_record(ControlResponse, raw, self._source(tenant_id, "responses")) if raw else None

    def save_response(self, response: ControlResponse) -> None:
        with self._lock:
            data = self._read(response.tenant_id, "responses")
            data[response.control_id] = response.model_dump(mode="json")
            self._write(response.tenant_id, "responses", data)

    def list_responses(self, tenant_id: str) -> list[ControlResponse]:
        rows = self._read(tenant_id, "responses").values()
        return parse_records(ControlResponse, rows, self._source(tenant_id, "responses"))

    # assessments

    def get_assessment(
        self, tenant_id: str, framework_id: str, requirement_id: str
    ) -> Optional[RequirementAssessment]:
        raw = self._read(tenant_id, "assessments").get(framework_id, {}).get(requirement_id)
        return parse_record(RequirementAssessment, raw, self._source(tenant_id, "assessments")) if raw else None

    def save_assessment(self, assessment: RequirementAssessment) -> None:
        with self._lock:
            data = self._read(assessment.tenant_id, "assessments")
            data.setdefault(assessment.framework_id, {})[assessment.requirement_id] = assessment.model_dump(mode="json")
            self._write(assessment.tenant_id, "assessments", data)

    def list_assessments(self, tenant_id: str, framework_id: str) -> list[RequirementAssessment]:
        records = self._read(tenant_id, "assessments").get(framework_id, {})
        return parse_records(RequirementAssessment, records.values(), self._source(tenant_id, "assessments"))

    def delete_assessments(self, tenant_id: str, framework_id: str) -> int:
        with self._lock:
            data = self._read(tenant_id, "assessments")
            removed = data.pop(framework_id, {})
            if removed:
                self._write(tenant_id, "assessments", data)
            return len(removed)

    # snapshots

    def add_snapshot(self, snapshot: ComplianceSnapshot) -> None:
        with self._lock:
            data = self._read(snapshot.tenant_id, "snapshots")
            data.setdefault("snapshots", []).append(snapshot.model_dump(mode="json"))
            self._write(snapshot.tenant_id, "snapshots", data)

    def list_snapshots(
        self,
        tenant_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[ComplianceSnapshot]:
        snapshots = parse_records(
            ComplianceSnapshot,
            self._read(tenant_id, "snapshots").get("snapshots", []),
            self._source(tenant_id, "snapshots"),
        )
        return sorted(
            (s for s in snapshots if in_window(s.taken_at, since, until)),
            key=lambda s: s.taken_at,
        )

    # custom controls

    def list_custom_controls(self, tenant_id: str) -> list[Control]:
        rows = self._read(tenant_id, "custom_controls").values()
        return parse_records(Control, rows, self._source(tenant_id, "custom_controls"))

    def save_custom_control(self, tenant_id: str, control: Control) -> None:
        with self._lock:
            data = self._read(tenant_id, "custom_controls")
            data[control.id] = control.model_dump(mode="json")
            self._write(tenant_id, "custom_controls", data)

    def delete_custom_control(self, tenant_id: str, control_id: str) -> bool:
        with self._lock:
            data = self._read(tenant_id, "custom_controls")
            if data.pop(control_id, None) is None:
                return False
            self._write(tenant_id, "custom_controls", data)
            return True
