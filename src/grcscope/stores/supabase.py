"""Hosted Postgres store accessed through the PostgREST API (Supabase).

Tables: ``control_responses``, ``requirement_assessments``,
``compliance_snapshots`` and ``custom_controls``. Each row carries an
``organization_id`` column and every request filters on it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from ..core.errors import StoreUnavailableError, ValidationError
from ..models.catalog import Control
from ..models.records import ComplianceSnapshot, ControlResponse, RequirementAssessment
from ..utils.sanitize import sanitize_error
from .base import parse_record, parse_records

logger = logging.getLogger(__name__)


def _to_row(model, tenant_id: str) -> dict:
    row = model.model_dump(mode="json")
    row.pop("tenant_id", None)
    row["organization_id"] = tenant_id
    return row


def _from_row(row: dict) -> dict:
    data = dict(row)
    data["tenant_id"] = data.pop("organization_id", "")
    return data


class SupabaseStore:
    """Store backed by PostgREST over a synchronous ``httpx.Client``."""

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 10,
        schema: str = "public",
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Accept-Profile": schema,
            "Content-Profile": schema,
            "content-type": "application/json",
        }
        self.client = httpx.Client(
            base_url=url.rstrip("/") + "/rest/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def _request(
        self,
        method: str,
        table: str,
        params: Any = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = self.client.request(method, f"/{table}", params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            message = sanitize_error(f"{table}: {e}")
            logger.warning("Store request failed: %s", message)
            raise StoreUnavailableError(message) from e

        if response.status_code < 400:
            return response
        message = sanitize_error(f"{response.status_code} | {table} | {response.text}")
        # Reads fail the same way for a down server, a rejected key or a missing table.
        if response.status_code >= 500 or method == "GET":
            logger.warning("Store request failed: %s", message)
            raise StoreUnavailableError(message)
        raise ValidationError(message)

    def _select(self, table: str, params: Any) -> list[dict]:
        response = self._request("GET", table, params=params)
        return response.json() if response.content else []

    def _upsert(self, table: str, row: dict, conflict: str) -> None:
        self._request(
            "POST",
            table,
            params={"on_conflict": conflict},
            json=row,
            prefer="resolution=merge-duplicates,return=minimal",
        )

    # responses

    def get_response(self, tenant_id: str, control_id: str) -> Optional[ControlResponse]:
        rows = self._select("control_responses", {
            "organization_id": f"eq.{tenant_id}",
            "control_id": f"eq.{control_id}",
            "select": "*",
        })
        return parse_record(ControlResponse, _from_row(rows[0]), "control_responses") if rows else None

    def save_response(self, response: ControlResponse) -> None:
        self._upsert("control_responses", _to_row(response, response.tenant_id), "organization_id,control_id")

    def list_responses(self, tenant_id: str) -> list[ControlResponse]:
        rows = self._select("control_responses", {"organization_id": f"eq.{tenant_id}", "select": "*"})
        return parse_records(ControlResponse, map(_from_row, rows), "control_responses")

    # assessments

    def get_assessment(
        self, tenant_id: str, framework_id: str, requirement_id: str
    ) -> Optional[RequirementAssessment]:
        rows = self._select("requirement_assessments", {
            "organization_id": f"eq.{tenant_id}",
            "framework_id": f"eq.{framework_id}",
            "requirement_id": f"eq.{requirement_id}",
            "select": "*",
        })
        return parse_record(RequirementAssessment, _from_row(rows[0]), "requirement_assessments") if rows else None

    def save_assessment(self, assessment: RequirementAssessment) -> None:
        self._upsert(
            "requirement_assessments",
            _to_row(assessment, assessment.tenant_id),
            "organization_id,framework_id,requirement_id",
        )

    def list_assessments(self, tenant_id: str, framework_id: str) -> list[RequirementAssessment]:
        rows = self._select("requirement_assessments", {
            "organization_id": f"eq.{tenant_id}",
            "framework_id": f"eq.{framework_id}",
            "select": "*",
        })
        return parse_records(RequirementAssessment, map(_from_row, rows), "requirement_assessments")

    def delete_assessments(self, tenant_id: str, framework_id: str) -> int:
        # A single DELETE runs in one transaction on the server.
        response = self._request(
            "DELETE",
            "requirement_assessments",
            params={"organization_id": f"eq.{tenant_id}", "framework_id": f"eq.{framework_id}"},
            prefer="return=representation",
        )
        return len(response.json()) if response.content else 0

    # snapshots

    def add_snapshot(self, snapshot: ComplianceSnapshot) -> None:
        self._request(
            "POST",
            "compliance_snapshots",
            json=_to_row(snapshot, snapshot.tenant_id),
            prefer="return=minimal",
        )

    def list_snapshots(
        self,
        tenant_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[ComplianceSnapshot]:
        params: list[tuple[str, str]] = [
            ("organization_id", f"eq.{tenant_id}"),
            ("select", "*"),
            ("order", "taken_at.asc"),
        ]
        if since is not None:
            params.append(("taken_at", f"gte.{since.isoformat()}"))
        if until is not None:
            params.append(("taken_at", f"lte.{until.isoformat()}"))
        rows = self._select("compliance_snapshots", params)
        return parse_records(ComplianceSnapshot, map(_from_row, rows), "compliance_snapshots")

    # custom controls

    def list_custom_controls(self, tenant_id: str) -> list[Control]:
        rows = self._select("custom_controls", {
            "organization_id": f"eq.{tenant_id}",
            "select": "*",
            "order": "created_at.asc",
        })
        stripped = []
        for row in rows:
            data = dict(row)
            data.pop("organization_id", None)
            data.pop("created_at", None)
            stripped.append(data)
        return parse_records(Control, stripped, "custom_controls")

    def save_custom_control(self, tenant_id: str, control: Control) -> None:
        row = control.model_dump(mode="json")
        row["organization_id"] = tenant_id
        self._upsert("custom_controls", row, "organization_id,id")

    def delete_custom_control(self, tenant_id: str, control_id: str) -> bool:
        response = self._request(
            "DELETE",
            "custom_controls",
            params={"organization_id": f"eq.{tenant_id}", "id": f"eq.{control_id}"},
            prefer="return=representation",
        )
        return bool(response.json()) if response.content else False
