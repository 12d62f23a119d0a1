import pytest
from sqlalchemy.dialects import sqlite

from models import Node

ALL_IDS = {1, 2, 3, 4, 10, 11, 12, 13}


def ids(query):
    return {node.id for node in query.all()}


def test_is_root(session, tree):
    assert ids(Node.query_tree(session).is_root()) == {1, 10}


def test_has_parent(session, tree):
    assert ids(Node.query_tree(session).has_parent()) == ALL_IDS - {1, 10}


def test_has_children(session, tree):
    assert ids(Node.query_tree(session).has_children()) == {1, 2, 10, 11, 12}


def test_is_leaf(session, tree):
    assert ids(Node.query_tree(session).is_leaf()) == {3, 4, 13}


def test_has_children_and_is_leaf_partition_the_table(session, tree):
    parents = ids(Node.query_tree(session).has_children())
    leaves = ids(Node.query_tree(session).is_leaf())

    assert parents | leaves == ALL_IDS
    assert not parents & leaves


def test_root_is_root_and_not_descendant(session, tree):
    assert tree[1].ancestors().all() == []
    assert 1 in ids(Node.query_tree(session).is_root())


def test_scopes_apply_to_expressions(session, tree):
    assert ids(tree[1].descendants_and_self().is_leaf()) == {3, 4}
    assert ids(tree[1].descendants_and_self().has_children()) == {1, 2}
    assert ids(Node.tree(session).is_root()) == {1, 10}
    assert ids(tree[13].ancestors_and_self().has_parent()) == {11, 12, 13}


def test_scopes_chain(session, tree):
    query = Node.tree(session).has_parent().is_leaf().where_depth(">", 1)

    assert ids(query) == {4, 13}


def test_leaf_subquery_reads_base_table(session, tree):
    query = Node.tree(session).is_leaf()

    sql = str(query.statement.compile(dialect=sqlite.dialect()))

    assert "FROM nodes AS children" in sql


def test_base_query_has_no_depth(session, tree):
    with pytest.raises(AssertionError):
        Node.query_tree(session).where_depth(1)

    with pytest.raises(AssertionError):
        Node.query_tree(session).depth_first()


def test_scopes_are_generative(session, tree):
    base = Node.query_tree(session)
    roots = base.is_root()

    assert roots is not base
    assert ids(base) == ALL_IDS
    assert ids(roots) == {1, 10}


def test_unbound_query_cannot_execute():
    with pytest.raises(AssertionError):
        Node.query_tree().is_root().all()


def test_source_switches_to_expression(session, tree):
    assert Node.query_tree(session).source is Node.__table__
    assert tree[1].descendants().source.name == "tree_cte"
