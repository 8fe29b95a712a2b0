"""Tests for hierarchical memory namespaces."""

from __future__ import annotations

import pytest

from agent_memory.memory.namespace import Namespace, NamespaceTemplate, common_ancestors


def test_of_without_parts_is_global():
    namespace = Namespace.of()

    assert namespace.is_global
    assert namespace == Namespace.global_()
    assert namespace.to_path() == "__global__"


def test_from_path_splits_segments():
    namespace = Namespace.from_path("user/alice/project")

    assert namespace.segments == ("user", "alice", "project")
    assert namespace.depth == 3
    assert namespace.first == "user"
    assert namespace.last == "project"
    assert str(namespace) == "user/alice/project"


def test_equality_and_hash_follow_segments():
    left = Namespace.of("user", "alice")
    right = Namespace.from_path("user/alice")

    assert left == right
    assert len({left, right}) == 1
    assert Namespace.of("user", "bob") != left


@pytest.mark.parametrize("parts", [("user", ""), ("user", "   "), ("a/b",)])
def test_invalid_segments_are_rejected(parts):
    with pytest.raises(ValueError):
        Namespace.of(*parts)


def test_from_path_rejects_empty_segment():
    with pytest.raises(ValueError):
        Namespace.from_path("user//alice")


def test_parent_and_child_navigation():
    namespace = Namespace.for_user("alice")

    assert namespace.to_path() == "user/alice"
    assert namespace.parent() == Namespace.of("user")
    assert Namespace.of("user").parent().is_global
    assert namespace.child("project").to_path() == "user/alice/project"
    with pytest.raises(ValueError):
        namespace.child("bad/segment")


def test_prefix_relationships():
    parent = Namespace.from_path("org/acme")
    child = Namespace.from_path("org/acme/user/bob")

    assert child.starts_with(parent)
    assert parent.contains(child)
    assert not parent.starts_with(child)
    assert not Namespace.from_path("org/acmeco").starts_with(parent)


def test_common_ancestors_walks_to_root():
    ancestors = [ns.to_path() for ns in common_ancestors(Namespace.from_path("a/b/c"))]

    assert ancestors == ["a/b/c", "a/b", "a"]


def test_template_resolves_variables():
    template = NamespaceTemplate(NamespaceTemplate.ORG_USER)

    namespace = template.resolve({"org_id": "acme"}, user_id="bob")

    assert template.variables == ("org_id", "user_id")
    assert namespace.to_path() == "org/acme/user/bob"


def test_template_missing_variable_raises():
    template = NamespaceTemplate(NamespaceTemplate.USER_SESSION)

    with pytest.raises(ValueError):
        template.resolve(user_id="alice")
