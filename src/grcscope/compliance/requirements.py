"""Framework requirement hierarchies.

Trees are built once at catalog load, either from nested YAML (parentage given
by nesting) or from a flat list of dotted ids such as ``3.2.1`` (parentage
given by dropping the last segment; missing ancestors are created as implicit
grouping nodes). Queries never re-parse ids.
"""

from __future__ import annotations

from typing import Iterable, Optional

from ..core.errors import CatalogError
from ..models.catalog import Requirement


class RequirementTree:
    """Explicit ownership tree of one framework's requirements."""

    def __init__(self, framework_id: str) -> None:
        self.framework_id = framework_id
        self._nodes: dict[str, Requirement] = {}
        self._children: dict[str, list[str]] = {}
        self._roots: list[str] = []
        self._leaves: Optional[list[Requirement]] = None

    # -- construction -----------------------------------------------------

    def add(self, requirement: Requirement) -> None:
        if requirement.id in self._nodes:
            raise CatalogError(
                f"Duplicate requirement id {requirement.id!r} in framework {self.framework_id}"
            )
        parent_id = requirement.parent_id
        if parent_id is not None and parent_id not in self._nodes:
            raise CatalogError(
                f"Requirement {requirement.id!r} references unknown parent {parent_id!r} "
                f"in framework {self.framework_id}"
            )
        self._nodes[requirement.id] = requirement
        self._children[requirement.id] = []
        if parent_id is None:
            self._roots.append(requirement.id)
        else:
            self._children[parent_id].append(requirement.id)
        self._leaves = None

    @classmethod
    def from_nested(cls, framework_id: str, nodes: Iterable[dict]) -> RequirementTree:
        """Build from ``[{id, title, required, children: [...]}, ...]``."""
        tree = cls(framework_id)

        def walk(items: Iterable[dict], parent: Optional[Requirement], level: int) -> None:
            for item in items or []:
                if not isinstance(item, dict) or not item.get("id"):
                    raise CatalogError(f"Requirement without id in framework {framework_id}")
                required = item.get("required")
                if required is None:
                    required = parent.required if parent is not None else True
                node = Requirement(
                    id=str(item["id"]),
                    framework_id=framework_id,
                    title=item.get("title", ""),
                    description=item.get("description", ""),
                    level=level,
                    required=bool(required),
                    parent_id=parent.id if parent is not None else None,
                )
                tree.add(node)
                walk(item.get("children") or [], node, level + 1)

        walk(nodes, None, 0)
        return tree

    @classmethod
    def from_paths(cls, framework_id: str, entries: Iterable[dict]) -> RequirementTree:
        """Build from flat ``[{id: "3.2.1", title, required}, ...]`` dotted paths.

        Ancestors that are not declared are inserted as implicit nodes at the
        point where a descendant first needs them, so declaration order is kept.
        """
        tree = cls(framework_id)
        declared: dict[str, dict] = {}
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("id"):
                raise CatalogError(f"Requirement without id in framework {framework_id}")
            entry_id = str(entry["id"])
            if entry_id in declared:
                raise CatalogError(f"Duplicate requirement id {entry_id!r} in framework {framework_id}")
            declared[entry_id] = entry

        def ensure(path: str) -> Requirement:
            existing = tree._nodes.get(path)
            if existing is not None:
                return existing
            segments = path.split(".")
            parent = ensure(".".join(segments[:-1])) if len(segments) > 1 else None
            entry = declared.get(path)
            required = entry.get("required") if entry else None
            node = Requirement(
                id=path,
                framework_id=framework_id,
                title=(entry or {}).get("title", ""),
                description=(entry or {}).get("description", ""),
                level=len(segments) - 1,
                required=bool(True if required is None else required),
                parent_id=parent.id if parent is not None else None,
                implicit=entry is None,
            )
            tree.add(node)
            return node

        for entry_id in declared:
            if entry_id in tree._nodes:
                # Declared after an implicit stand-in was created for a child.
                tree._replace_implicit(entry_id, declared[entry_id])
            else:
                ensure(entry_id)
        return tree

    def _replace_implicit(self, node_id: str, entry: dict) -> None:
        node = self._nodes[node_id]
        required = entry.get("required")
        self._nodes[node_id] = node.model_copy(update={
            "title": entry.get("title", ""),
            "description": entry.get("description", ""),
            "required": bool(True if required is None else required),
            "implicit": False,
        })
        self._leaves = None

    # -- queries ----------------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, requirement_id: object) -> bool:
        return requirement_id in self._nodes

    def get(self, requirement_id: str) -> Optional[Requirement]:
        return self._nodes.get(requirement_id)

    def roots(self) -> list[Requirement]:
        return [self._nodes[r] for r in self._roots]

    def children(self, requirement_id: str) -> list[Requirement]:
        return [self._nodes[c] for c in self._children.get(requirement_id, [])]

    def parent(self, requirement_id: str) -> Optional[Requirement]:
        node = self._nodes.get(requirement_id)
        if node is None or node.parent_id is None:
            return None
        return self._nodes[node.parent_id]

    def ancestors(self, requirement_id: str) -> list[Requirement]:
        """Ancestors from the immediate parent up to the root."""
        result: list[Requirement] = []
        current = self.parent(requirement_id)
        while current is not None:
            result.append(current)
            current = self.parent(current.id)
        return result

    def is_leaf(self, requirement_id: str) -> bool:
        return requirement_id in self._nodes and not self._children[requirement_id]

    def leaves(self) -> list[Requirement]:
        """Childless nodes in depth-first declaration order."""
        if self._leaves is None:
            self._leaves = list(self._iter_leaves(self._roots))
        return list(self._leaves)

    def leaf_ids(self) -> list[str]:
        return [leaf.id for leaf in self.leaves()]

    def descendant_leaves(self, requirement_id: str) -> list[Requirement]:
        if requirement_id not in self._nodes:
            return []
        if self.is_leaf(requirement_id):
            return [self._nodes[requirement_id]]
        return list(self._iter_leaves(self._children[requirement_id]))

    def _iter_leaves(self, node_ids: list[str]):
        stack = list(reversed(node_ids))
        while stack:
            node_id = stack.pop()
            kids = self._children[node_id]
            if kids:
                stack.extend(reversed(kids))
            else:
                yield self._nodes[node_id]
