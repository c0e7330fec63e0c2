"""Persistence protocols for tenant-owned records.

Every method takes the tenant id first; no method reads or writes across
tenants. Implementations raise ``StoreUnavailableError`` when the backing
service cannot be reached.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Protocol, TypeVar, runtime_checkable

import pydantic

from ..core.errors import ConfigurationError
from ..models.catalog import Control
from ..models.records import ComplianceSnapshot, ControlResponse, RequirementAssessment

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=pydantic.BaseModel)


@runtime_checkable
class ResponseStore(Protocol):
    def get_response(self, tenant_id: str, control_id: str) -> Optional[ControlResponse]: ...

    def save_response(self, response: ControlResponse) -> None: ...

    def list_responses(self, tenant_id: str) -> list[ControlResponse]: ...


@runtime_checkable
class AssessmentStore(Protocol):
    def get_assessment(
        self, tenant_id: str, framework_id: str, requirement_id: str
    ) -> Optional[RequirementAssessment]: ...

    def save_assessment(self, assessment: RequirementAssessment) -> None: ...

    def list_assessments(self, tenant_id: str, framework_id: str) -> list[RequirementAssessment]: ...

    def delete_assessments(self, tenant_id: str, framework_id: str) -> int:
        """Remove every record for (tenant, framework) in one atomic step."""
        ...


@runtime_checkable
class SnapshotStore(Protocol):
    def add_snapshot(self, snapshot: ComplianceSnapshot) -> None: ...

    def list_snapshots(
        self,
        tenant_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[ComplianceSnapshot]:
        """Snapshots with ``since <= taken_at <= until``, oldest first."""
        ...


@runtime_checkable
class CustomControlStore(Protocol):
    def list_custom_controls(self, tenant_id: str) -> list[Control]: ...

    def save_custom_control(self, tenant_id: str, control: Control) -> None: ...

    def delete_custom_control(self, tenant_id: str, control_id: str) -> bool: ...


def in_window(
    taken_at: datetime, since: Optional[datetime], until: Optional[datetime]
) -> bool:
    if since is not None and taken_at < since:
        return False
    if until is not None and taken_at > until:
        return False
    return True


def parse_record(model: type[T], raw, source: str) -> Optional[T]:
    """Validate one stored row; rows with the wrong shape are logged and dropped."""
    try:
        return model.model_validate(raw)
    except pydantic.ValidationError as e:
        logger.warning(
            "Ignoring malformed %s in %s: %d validation error(s)",
            model.__name__, source, e.error_count(),
        )
        return None


def parse_records(model: type[T], rows: Iterable, source: str) -> list[T]:
    parsed = (parse_record(model, raw, source) for raw in rows)
    return [record for record in parsed if record is not None]


def get_store(config: dict, workspace: Optional[Path] = None):
    """Factory function to create the configured store backend."""
    store_config = config.get("store", {})
    backend = store_config.get("backend", "files")

    if backend == "memory":
        from .memory import MemoryStore
        return MemoryStore()
    elif backend == "files":
        from .files import FileStore
        root = store_config.get("files", {}).get("root") or ""
        base = workspace or Path.cwd()
        if not root:
            return FileStore(base / ".grcscope" / "data")
        root = Path(root).expanduser()
        return FileStore(root if root.is_absolute() else base / root)
    elif backend == "supabase":
        from .supabase import SupabaseStore
        sb = store_config.get("supabase", {})
        url = sb.get("url") or ""
        env_var = sb.get("api_key_env", "SUPABASE_KEY")
        api_key = os.environ.get(env_var)
        if not url:
            raise ConfigurationError("store.supabase.url is not set")
        if not api_key:
            raise ConfigurationError(f"API key not found in environment variable: {env_var}")
        return SupabaseStore(
            url=url,
            api_key=api_key,
            timeout=sb.get("timeout_seconds", 10),
            schema=sb.get("schema", "public"),
        )
    else:
        raise ConfigurationError(f"Unknown store backend: {backend}")
