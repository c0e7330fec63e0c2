"""Exception hierarchy shared by the catalog, engine and stores.

Aggregate reads (scores, trends, gap analysis) never raise for missing or
empty data. Mutations raise one of the types below so callers can react.
"""

from __future__ import annotations

from typing import Optional


class GRCScopeError(Exception):
    """Base class for every error raised by grcscope."""


class ConfigurationError(GRCScopeError):
    """Configuration is unusable (bad file, unknown backend, missing setting)."""


class CatalogError(ConfigurationError):
    """Catalog feed is missing or malformed. Fatal at load time."""


class StoreUnavailableError(ConfigurationError):
    """The persistence collaborator could not be reached."""


class ValidationError(GRCScopeError):
    """Input was well-formed but violates a business rule.

    Args:
        message: Human-readable description of the rule that was broken.
        details: Optional field -> problem mapping for callers that render forms.
    """

    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NotFoundError(ValidationError):
    """A mutation referenced a framework, requirement or record that does not exist."""

    def __init__(
        self,
        resource: str,
        resource_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = resource
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


def require_tenant(tenant_id: str) -> str:
    """Reject empty tenant identifiers before they reach a store query."""
    if not tenant_id or not str(tenant_id).strip():
        raise ValidationError("Tenant id is required", details={"tenant_id": "empty"})
    return str(tenant_id)
