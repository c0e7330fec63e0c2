"""Tests for compliance/catalog.py."""

from __future__ import annotations

import re

import pytest

from grcscope.compliance.catalog import CustomControlRegistry
from grcscope.core.errors import NotFoundError, ValidationError
from grcscope.models.catalog import CUSTOM_DOMAIN_ID, CustomControlInput, FrameworkMapping


class TestCatalog:
    def test_lookups(self, catalog):
        assert catalog.control("AC-001").title == "Multi-factor authentication"
        assert catalog.control("missing") is None
        assert catalog.framework_ids() == ["SOC2", "HIPAA", "PCI_DSS"]

    def test_custom_domain_resolves(self, catalog):
        assert catalog.domain(CUSTOM_DOMAIN_ID).title == "Company Specific"
        assert catalog.domain("unknown") is None

    def test_require_framework(self, catalog):
        assert catalog.require_framework("SOC2").name == "SOC 2"
        with pytest.raises(NotFoundError):
            catalog.require_framework("NIST")

    def test_framework_info_counts_leaves(self, catalog):
        info = catalog.framework("HIPAA").info()
        assert info.leaf_count == 2
        assert info.version == "2013"

    def test_domains_returns_copy(self, catalog):
        catalog.domains().clear()
        assert len(catalog.domains()) == 2


class TestCustomControlRegistry:
    def test_add_forces_custom_domain(self, catalog, store):
        registry = CustomControlRegistry(catalog, store)
        control = registry.add("acme", CustomControlInput(title="Badge audit", domain="access_control"))
        assert control.domain == CUSTOM_DOMAIN_ID
        assert control.custom is True
        assert control.question == "Badge audit"
        assert re.fullmatch(r"CTRL-[0-9A-F]{12}", control.id)

    def test_overlay_does_not_touch_base(self, catalog, store):
        registry = CustomControlRegistry(catalog, store)
        registry.add("acme", CustomControlInput(title="Badge audit"))
        assert len(catalog.controls()) == 4
        assert len(registry.custom_controls("acme")) == 1
        assert registry.custom_controls("other") == []
        assert registry.control("acme", "AC-001") is catalog.control("AC-001")

    def test_unknown_framework_mapping_accepted(self, catalog, store, caplog):
        registry = CustomControlRegistry(catalog, store)
        control = registry.add("acme", CustomControlInput(
            title="Vendor SLA",
            mappings=[FrameworkMapping(framework_id="NIST", clause_id="AC-2")],
        ))
        assert control.maps_to("NIST")
        assert "unknown framework NIST" in caplog.text

    def test_blank_title_rejected(self, catalog, store):
        registry = CustomControlRegistry(catalog, store)
        with pytest.raises(ValidationError):
            registry.add("acme", CustomControlInput(title="   "))

    def test_update(self, catalog, store):
        registry = CustomControlRegistry(catalog, store)
        control = registry.add("acme", CustomControlInput(title="Badge audit"))
        updated = registry.update("acme", control.id, CustomControlInput(title="Badge review", risk_level="high"))
        assert updated.id == control.id
        assert updated.title == "Badge review"
        assert registry.control("acme", control.id).risk_level.value == "high"

    def test_update_unknown(self, catalog, store):
        registry = CustomControlRegistry(catalog, store)
        with pytest.raises(NotFoundError):
            registry.update("acme", "CTRL-000000000000", CustomControlInput(title="x"))

    def test_remove_notifies_listeners(self, catalog, store):
        registry = CustomControlRegistry(catalog, store)
        seen: list[str] = []
        registry.subscribe(seen.append)
        control = registry.add("acme", CustomControlInput(title="Badge audit"))
        registry.remove("acme", control.id)
        assert seen == ["acme", "acme"]
        assert registry.custom_controls("acme") == []

    def test_remove_unknown(self, catalog, store):
        registry = CustomControlRegistry(catalog, store)
        with pytest.raises(NotFoundError):
            registry.remove("acme", "CTRL-000000000000")

    def test_empty_tenant_rejected(self, catalog, store):
        registry = CustomControlRegistry(catalog, store)
        with pytest.raises(ValidationError):
            registry.add("", CustomControlInput(title="Badge audit"))
