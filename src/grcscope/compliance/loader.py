"""Catalog YAML loading.

A catalog directory holds ``domains.yaml``, ``controls.yaml`` and one file per
framework under ``frameworks/``. Without an explicit directory the catalog
bundled with the package is used.
"""

from __future__ import annotations

import logging
from importlib.resources import files
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from ..core.errors import CatalogError
from ..models.catalog import Control, Domain, FrameworkMapping, RiskLevel
from .catalog import Catalog, Framework
from .requirements import RequirementTree

logger = logging.getLogger(__name__)

BUNDLED_CATALOG = "grcscope.data.catalog"


def _catalog_root(catalog_dir: Optional[Union[str, Path]]) -> Any:
    if catalog_dir:
        root = Path(catalog_dir)
        if not root.is_dir():
            raise CatalogError(f"Catalog directory not found: {root}")
        return root
    return files(BUNDLED_CATALOG)


def _read_yaml(node: Any) -> Any:
    try:
        return yaml.safe_load(node.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise CatalogError(f"Catalog file missing: {node.name}") from e
    except yaml.YAMLError as e:
        raise CatalogError(f"Catalog file {node.name} is not valid YAML: {e}") from e


def get_available_frameworks(catalog_dir: Optional[Union[str, Path]] = None) -> list[dict]:
    """List framework files in a catalog without building their trees."""
    root = _catalog_root(catalog_dir)
    frameworks_dir = root.joinpath("frameworks")
    if not frameworks_dir.is_dir():
        return []

    found: list[dict] = []
    for node in sorted(frameworks_dir.iterdir(), key=lambda n: n.name):
        if not node.name.endswith((".yaml", ".yml")):
            continue
        content = _read_yaml(node)
        if content and content.get("id"):
            found.append({
                "id": content["id"],
                "name": content.get("name", ""),
                "version": content.get("version", ""),
                "file": node.name,
            })
    return found


def read_catalog_feed(catalog_dir: Optional[Union[str, Path]] = None) -> dict:
    """Read the raw catalog feed: ``{"domains": [...], "controls": [...], "frameworks": [...]}``."""
    root = _catalog_root(catalog_dir)

    domains_doc = _read_yaml(root.joinpath("domains.yaml")) or {}
    controls_doc = _read_yaml(root.joinpath("controls.yaml")) or {}
    for name, doc in (("domains.yaml", domains_doc), ("controls.yaml", controls_doc)):
        if not isinstance(doc, dict):
            raise CatalogError(f"Catalog file {name} must contain a mapping at the top level")

    frameworks: list[dict] = []
    frameworks_dir = root.joinpath("frameworks")
    if frameworks_dir.is_dir():
        for node in sorted(frameworks_dir.iterdir(), key=lambda n: n.name):
            if node.name.endswith((".yaml", ".yml")):
                doc = _read_yaml(node)
                if doc:
                    frameworks.append(doc)

    return {
        "domains": domains_doc.get("domains") or [],
        "controls": controls_doc.get("controls") or [],
        "frameworks": frameworks,
    }


def _parse_mapping(raw: dict, control_id: str) -> FrameworkMapping:
    framework_id = raw.get("framework") or raw.get("framework_id")
    clause_id = raw.get("clause") or raw.get("clause_id")
    if not framework_id or not clause_id:
        raise CatalogError(f"Control {control_id} has a mapping without framework or clause")
    return FrameworkMapping(
        framework_id=str(framework_id),
        clause_id=str(clause_id),
        clause_title=raw.get("title") or raw.get("clause_title") or "",
    )


def parse_control(raw: dict) -> Control:
    """Build a Control from one catalog entry."""
    if not isinstance(raw, dict) or not raw.get("id"):
        raise CatalogError("Control entry without id")
    control_id = str(raw["id"])
    try:
        risk = RiskLevel(raw.get("risk_level", "medium"))
    except ValueError as e:
        raise CatalogError(f"Control {control_id} has unknown risk level {raw.get('risk_level')!r}") from e
    return Control(
        id=control_id,
        domain=raw.get("domain", ""),
        title=raw.get("title", ""),
        description=raw.get("description", ""),
        question=raw.get("question", ""),
        risk_level=risk,
        mappings=tuple(_parse_mapping(m, control_id) for m in raw.get("mappings") or []),
        guidance=raw.get("guidance", ""),
        evidence_examples=tuple(raw.get("evidence_examples") or ()),
        remediation_tip=raw.get("remediation_tip", ""),
        custom=bool(raw.get("custom", False)),
    )


def parse_framework(raw: dict) -> Framework:
    """Build a Framework and its requirement tree.

    ``requirements`` holds a nested tree; ``requirement_paths`` holds a flat
    list of dotted ids whose parentage is implied by the path.
    """
    if not isinstance(raw, dict) or not raw.get("id"):
        raise CatalogError("Framework entry without id")
    framework_id = str(raw["id"])

    if raw.get("requirements") is not None:
        tree = RequirementTree.from_nested(framework_id, raw["requirements"])
    else:
        tree = RequirementTree.from_paths(framework_id, raw.get("requirement_paths") or [])

    if len(tree) == 0:
        logger.warning("Framework %s has no requirements", framework_id)

    return Framework(
        id=framework_id,
        name=raw.get("name", framework_id),
        full_name=raw.get("full_name", ""),
        version=str(raw.get("version", "")),
        color=raw.get("color", ""),
        tree=tree,
    )


def parse_domain(raw: dict) -> Domain:
    if not isinstance(raw, dict) or not raw.get("id"):
        raise CatalogError("Domain entry without id")
    domain_id = str(raw["id"])
    return Domain(id=domain_id, title=raw.get("title") or domain_id, description=raw.get("description", ""))


def build_catalog(feed: dict) -> Catalog:
    """Build an immutable Catalog from a feed dict."""
    domains = [parse_domain(d) for d in feed.get("domains") or []]
    controls = [parse_control(c) for c in feed.get("controls") or []]
    frameworks = [parse_framework(f) for f in feed.get("frameworks") or []]
    catalog = Catalog(domains=domains, controls=controls, frameworks=frameworks)
    logger.debug(
        "Catalog built: %d domains, %d controls, %d frameworks",
        len(domains), len(controls), len(frameworks),
    )
    return catalog


def load_catalog(catalog_dir: Optional[Union[str, Path]] = None) -> Catalog:
    """Load and build the catalog from a directory, or the bundled one."""
    return build_catalog(read_catalog_feed(catalog_dir))
