"""Control catalog: immutable base reference data plus per-tenant custom controls."""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Iterable, Optional

from pydantic import BaseModel, ConfigDict

from ..core.errors import CatalogError, NotFoundError, ValidationError, require_tenant
from ..models.catalog import (
    CUSTOM_DOMAIN,
    CUSTOM_DOMAIN_ID,
    Control,
    CustomControlInput,
    Domain,
    FrameworkInfo,
)
from .requirements import RequirementTree

logger = logging.getLogger(__name__)


class Framework(BaseModel):
    """A regulatory standard and its requirement tree."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    name: str
    full_name: str = ""
    version: str = ""
    color: str = ""
    tree: RequirementTree

    def info(self) -> FrameworkInfo:
        return FrameworkInfo(
            id=self.id,
            name=self.name,
            full_name=self.full_name,
            version=self.version,
            color=self.color,
            leaf_count=len(self.tree.leaves()),
        )


class Catalog:
    """Process-wide, read-only reference data shared by every tenant."""

    def __init__(
        self,
        domains: Iterable[Domain],
        controls: Iterable[Control],
        frameworks: Iterable[Framework],
    ) -> None:
        self._domains: dict[str, Domain] = {}
        for domain in domains:
            if domain.id in self._domains:
                raise CatalogError(f"Duplicate domain id {domain.id!r}")
            if domain.id == CUSTOM_DOMAIN_ID:
                raise CatalogError(f"Domain id {CUSTOM_DOMAIN_ID!r} is reserved for custom controls")
            self._domains[domain.id] = domain

        self._controls: dict[str, Control] = {}
        for control in controls:
            if control.id in self._controls:
                raise CatalogError(f"Duplicate control id {control.id!r}")
            if control.domain not in self._domains:
                raise CatalogError(f"Control {control.id} references unknown domain {control.domain!r}")
            self._controls[control.id] = control

        self._frameworks: dict[str, Framework] = {}
        for framework in frameworks:
            if framework.id in self._frameworks:
                raise CatalogError(f"Duplicate framework id {framework.id!r}")
            self._frameworks[framework.id] = framework

    def domains(self) -> list[Domain]:
        return list(self._domains.values())

    def domain(self, domain_id: str) -> Optional[Domain]:
        if domain_id == CUSTOM_DOMAIN_ID:
            return CUSTOM_DOMAIN
        return self._domains.get(domain_id)

    def controls(self) -> list[Control]:
        return list(self._controls.values())

    def control(self, control_id: str) -> Optional[Control]:
        return self._controls.get(control_id)

    def frameworks(self) -> list[Framework]:
        return list(self._frameworks.values())

    def framework(self, framework_id: str) -> Optional[Framework]:
        return self._frameworks.get(framework_id)

    def require_framework(self, framework_id: str) -> Framework:
        framework = self._frameworks.get(framework_id)
        if framework is None:
            raise NotFoundError("Framework", framework_id)
        return framework

    def framework_ids(self) -> list[str]:
        return list(self._frameworks)


class CustomControlRegistry:
    """Per-tenant overlay of custom controls on top of the shared catalog.

    The base catalog is never mutated; "all controls for a tenant" is the base
    list followed by that tenant's custom controls, read from the store on
    every call. Listeners are notified with the tenant id after each change so
    cached mapping and scoring results can be dropped.
    """

    def __init__(self, catalog: Catalog, store) -> None:
        self.catalog = catalog
        self.store = store
        self._listeners: list[Callable[[str], None]] = []

    def subscribe(self, listener: Callable[[str], None]) -> None:
        self._listeners.append(listener)

    def _changed(self, tenant_id: str) -> None:
        for listener in self._listeners:
            listener(tenant_id)

    # -- reads ------------------------------------------------------------

    def custom_controls(self, tenant_id: str) -> list[Control]:
        return list(self.store.list_custom_controls(require_tenant(tenant_id)))

    def control(self, tenant_id: str, control_id: str) -> Optional[Control]:
        base = self.catalog.control(control_id)
        if base is not None:
            return base
        return next((c for c in self.custom_controls(tenant_id) if c.id == control_id), None)

    # -- mutations --------------------------------------------------------

    def _new_id(self, tenant_id: str) -> str:
        taken = {c.id for c in self.custom_controls(tenant_id)}
        while True:
            candidate = f"CTRL-{uuid.uuid4().hex[:12].upper()}"
            if candidate not in taken and self.catalog.control(candidate) is None:
                return candidate

    def _check_mappings(self, data: CustomControlInput) -> None:
        known = set(self.catalog.framework_ids())
        for mapping in data.mappings:
            if mapping.framework_id not in known:
                logger.warning(
                    "Custom control mapping references unknown framework %s (clause %s)",
                    mapping.framework_id, mapping.clause_id,
                )

    def add(self, tenant_id: str, data: CustomControlInput) -> Control:
        """Create a tenant custom control. The domain is always the custom domain."""
        tenant_id = require_tenant(tenant_id)
        if not data.title.strip():
            raise ValidationError("Custom control title is required", details={"title": "empty"})
        if data.domain and data.domain != CUSTOM_DOMAIN_ID:
            logger.debug("Ignoring requested domain %s for custom control", data.domain)
        self._check_mappings(data)

        control = Control(
            id=self._new_id(tenant_id),
            domain=CUSTOM_DOMAIN_ID,
            title=data.title.strip(),
            description=data.description,
            question=data.question or data.title.strip(),
            risk_level=data.risk_level,
            mappings=tuple(data.mappings),
            guidance=data.guidance,
            remediation_tip=data.remediation_tip,
            custom=True,
        )
        self.store.save_custom_control(tenant_id, control)
        logger.info("Tenant %s added custom control %s", tenant_id, control.id)
        self._changed(tenant_id)
        return control

    def update(self, tenant_id: str, control_id: str, data: CustomControlInput) -> Control:
        tenant_id = require_tenant(tenant_id)
        existing = next((c for c in self.custom_controls(tenant_id) if c.id == control_id), None)
        if existing is None:
            raise NotFoundError("Custom control", control_id, tenant_id)
        if not data.title.strip():
            raise ValidationError("Custom control title is required", details={"title": "empty"})
        self._check_mappings(data)

        control = existing.model_copy(update={
            "title": data.title.strip(),
            "description": data.description,
            "question": data.question or data.title.strip(),
            "risk_level": data.risk_level,
            "mappings": tuple(data.mappings),
            "guidance": data.guidance,
            "remediation_tip": data.remediation_tip,
        })
        self.store.save_custom_control(tenant_id, control)
        self._changed(tenant_id)
        return control

    def remove(self, tenant_id: str, control_id: str) -> None:
        """Delete a custom control. Responses that referenced it become orphaned."""
        tenant_id = require_tenant(tenant_id)
        if not self.store.delete_custom_control(tenant_id, control_id):
            raise NotFoundError("Custom control", control_id, tenant_id)
        logger.info("Tenant %s removed custom control %s", tenant_id, control_id)
        self._changed(tenant_id)
