"""Tests for compliance/requirements.py."""

from __future__ import annotations

import pytest

from grcscope.compliance.requirements import RequirementTree
from grcscope.core.errors import CatalogError
from grcscope.models.catalog import Requirement


class TestFromNested:
    def test_leaves_in_declaration_order(self):
        tree = RequirementTree.from_nested("F", [
            {"id": "A", "children": [{"id": "A.2"}, {"id": "A.1"}]},
            {"id": "B"},
        ])
        assert tree.leaf_ids() == ["A.2", "A.1", "B"]

    def test_levels_and_parents(self):
        tree = RequirementTree.from_nested("F", [
            {"id": "A", "children": [{"id": "A.1", "children": [{"id": "A.1.x"}]}]},
        ])
        assert tree.get("A").level == 0
        assert tree.get("A.1.x").level == 2
        assert tree.parent("A.1.x").id == "A.1"
        assert [a.id for a in tree.ancestors("A.1.x")] == ["A.1", "A"]

    def test_required_inherited_from_parent(self):
        tree = RequirementTree.from_nested("F", [
            {"id": "A", "required": False, "children": [{"id": "A.1"}, {"id": "A.2", "required": True}]},
        ])
        assert tree.get("A.1").required is False
        assert tree.get("A.2").required is True

    def test_duplicate_id_rejected(self):
        with pytest.raises(CatalogError):
            RequirementTree.from_nested("F", [{"id": "A"}, {"id": "A"}])

    def test_missing_id_rejected(self):
        with pytest.raises(CatalogError):
            RequirementTree.from_nested("F", [{"title": "no id"}])

    def test_non_alphanumeric_ids_kept_verbatim(self):
        tree = RequirementTree.from_nested("HIPAA", [
            {"id": "164.312(a)(1)", "children": [{"id": "164.312(a)(2)(i)"}]},
        ])
        assert tree.leaf_ids() == ["164.312(a)(2)(i)"]


class TestFromPaths:
    def test_implicit_ancestors_created(self):
        tree = RequirementTree.from_paths("PCI", [{"id": "3.5.1", "title": "PAN"}])
        assert "3" in tree
        assert "3.5" in tree
        assert tree.get("3.5").implicit is True
        assert tree.get("3.5.1").implicit is False
        assert tree.leaf_ids() == ["3.5.1"]

    def test_ancestor_declared_after_child(self):
        tree = RequirementTree.from_paths("PCI", [
            {"id": "3.5.1", "title": "PAN"},
            {"id": "3", "title": "Protect stored data"},
        ])
        node = tree.get("3")
        assert node.implicit is False
        assert node.title == "Protect stored data"
        assert tree.leaf_ids() == ["3.5.1"]

    def test_declared_parent_is_not_a_leaf(self):
        tree = RequirementTree.from_paths("PCI", [{"id": "4"}, {"id": "4.2.1"}])
        assert tree.is_leaf("4") is False
        assert tree.is_leaf("4.2.1") is True

    def test_duplicate_path_rejected(self):
        with pytest.raises(CatalogError):
            RequirementTree.from_paths("PCI", [{"id": "3.5.1"}, {"id": "3.5.1"}])


class TestQueries:
    def test_descendant_leaves(self):
        tree = RequirementTree.from_nested("F", [
            {"id": "A", "children": [{"id": "A.1"}, {"id": "A.2", "children": [{"id": "A.2.a"}]}]},
        ])
        assert [r.id for r in tree.descendant_leaves("A")] == ["A.1", "A.2.a"]
        assert [r.id for r in tree.descendant_leaves("A.1")] == ["A.1"]
        assert tree.descendant_leaves("missing") == []

    def test_empty_tree(self):
        tree = RequirementTree("EMPTY")
        assert len(tree) == 0
        assert tree.leaves() == []
        assert tree.roots() == []

    def test_add_unknown_parent_rejected(self):
        tree = RequirementTree("F")
        with pytest.raises(CatalogError):
            tree.add(Requirement(id="A.1", framework_id="F", parent_id="A"))

    def test_leaf_cache_refreshed_after_add(self):
        tree = RequirementTree("F")
        tree.add(Requirement(id="A", framework_id="F"))
        assert tree.leaf_ids() == ["A"]
        tree.add(Requirement(id="A.1", framework_id="F", parent_id="A"))
        assert tree.leaf_ids() == ["A.1"]
