"""Control-to-requirement mapping index.

Edges are built once per control set: each control mapping whose clause id
equals a leaf requirement id becomes a direct edge. Clauses that name a group
node or a finer-grained sub-clause are kept as related (partial/supportive)
edges; they inform the requirement detail view but not coverage.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable

from ..models.catalog import Control, Requirement
from ..models.results import CoverageStats
from .catalog import Framework

logger = logging.getLogger(__name__)

DIRECT = "direct"
PARTIAL = "partial"
SUPPORTIVE = "supportive"


def _nearest_declared(tree, clause_id: str) -> Requirement | None:
    segments = clause_id.split(".")
    while len(segments) > 1:
        segments.pop()
        node = tree.get(".".join(segments))
        if node is not None:
            return node
    return None


class MappingIndex:
    """Many-to-many index between controls and leaf requirements."""

    def __init__(self) -> None:
        self._frameworks: dict[str, Framework] = {}
        self._direct: dict[tuple[str, str], list[Control]] = defaultdict(list)
        self._related: dict[tuple[str, str], list[tuple[Control, str, str]]] = defaultdict(list)
        self._by_control: dict[str, list[tuple[str, str]]] = defaultdict(list)
        self.unmatched: list[tuple[str, str, str]] = []

    @classmethod
    def build(cls, controls: Iterable[Control], frameworks: Iterable[Framework]) -> MappingIndex:
        index = cls()
        index._frameworks = {f.id: f for f in frameworks}
        leaf_sets = {fid: set(f.tree.leaf_ids()) for fid, f in index._frameworks.items()}

        for control in controls:
            for mapping in control.mappings:
                framework = index._frameworks.get(mapping.framework_id)
                if framework is None:
                    index.unmatched.append((control.id, mapping.framework_id, mapping.clause_id))
                    logger.debug(
                        "Control %s maps to unknown framework %s", control.id, mapping.framework_id
                    )
                    continue
                key = (mapping.framework_id, mapping.clause_id)
                if mapping.clause_id in leaf_sets[mapping.framework_id]:
                    if all(c.id != control.id for c in index._direct[key]):
                        index._direct[key].append(control)
                        index._by_control[control.id].append(key)
                    continue
                if not index._add_related(framework, control, mapping.clause_id):
                    index.unmatched.append((control.id, mapping.framework_id, mapping.clause_id))
                    logger.debug(
                        "Control %s clause %s does not resolve to a %s requirement",
                        control.id, mapping.clause_id, mapping.framework_id,
                    )
        return index

    def _add_related(self, framework: Framework, control: Control, clause_id: str) -> bool:
        tree = framework.tree
        if clause_id in tree:
            targets = [(leaf, PARTIAL) for leaf in tree.descendant_leaves(clause_id)]
        else:
            anchor = _nearest_declared(tree, clause_id)
            if anchor is None or not tree.is_leaf(anchor.id):
                return False
            targets = [(anchor, SUPPORTIVE)]
        for leaf, kind in targets:
            bucket = self._related[(framework.id, leaf.id)]
            if not any(c.id == control.id and k == kind for c, k, _ in bucket):
                bucket.append((control, kind, clause_id))
        return bool(targets)

    # -- queries ----------------------------------------------------------

    def controls_for(self, framework_id: str, requirement_id: str) -> list[Control]:
        """Controls mapped directly to a leaf requirement (possibly empty)."""
        return list(self._direct.get((framework_id, requirement_id), []))

    def related_controls(self, framework_id: str, requirement_id: str) -> list[tuple[Control, str, str]]:
        """(control, mapping type, clause id) for controls mapped at another granularity."""
        return list(self._related.get((framework_id, requirement_id), []))

    def requirements_for_control(self, control_id: str) -> list[tuple[str, str]]:
        """(framework id, leaf requirement id) pairs a control maps to directly."""
        return list(self._by_control.get(control_id, []))

    def coverage(self, framework_id: str) -> CoverageStats:
        """Leaf coverage stats; a framework without leaves reports zeros."""
        framework = self._frameworks.get(framework_id)
        if framework is None:
            return CoverageStats(framework_id=framework_id)
        leaves = framework.tree.leaf_ids()
        total = len(leaves)
        counts = [len(self._direct.get((framework_id, leaf), [])) for leaf in leaves]
        mapped = sum(1 for n in counts if n > 0)
        return CoverageStats(
            framework_id=framework_id,
            total=total,
            mapped=mapped,
            unmapped=total - mapped,
            average_coverage=round(sum(counts) / total, 2) if total > 0 else 0.0,
        )

    def coverage_all(self) -> dict[str, CoverageStats]:
        return {fid: self.coverage(fid) for fid in self._frameworks}
