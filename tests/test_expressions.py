from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import mssql, mysql, postgresql, sqlite

from exceptions import UnsupportedDatabaseError
from expressions import (
    ANCESTORS,
    DESCENDANTS,
    TraversalSpec,
    build_expression,
    resolve_source,
)
from models import Node

nodes = Node.__table__


def anchored_at(key):
    return lambda source: source.c.id == key


def make_spec(**overrides):
    options = dict(local_key="id", parent_key="parent_id", constraint=anchored_at(1))
    options.update(overrides)
    return TraversalSpec(**options)


def compile_sql(spec, dialect, source=nodes):
    compiled = build_expression(spec, source, dialect)
    statement = select(compiled.cte)
    return str(statement.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))


def test_spec_rejects_unknown_direction():
    with pytest.raises(AssertionError):
        make_spec(direction="sideways")


def test_spec_requires_key_names():
    with pytest.raises(AssertionError):
        make_spec(parent_key="")


def test_spec_requires_constraint():
    with pytest.raises(AssertionError):
        make_spec(constraint=None)


def test_spec_is_immutable():
    spec = make_spec()

    with pytest.raises(AttributeError):
        spec.direction = ANCESTORS


def test_resolve_source_defaults_to_table():
    assert resolve_source(nodes) is nodes
    assert resolve_source(nodes, "nodes") is nodes


def test_resolve_source_extracts_alias():
    source = resolve_source(nodes, "nodes as n")

    assert source.name == "n"
    assert source.element is nodes


def test_resolve_source_rejects_other_table():
    with pytest.raises(ValueError):
        resolve_source(nodes, "users as u")


def test_descendant_expression_walks_down():
    sql = compile_sql(make_spec(direction=DESCENDANTS, initial_depth=1), postgresql.dialect())

    assert sql.startswith("WITH RECURSIVE tree_cte")
    assert "UNION ALL" in sql
    assert "1 AS depth" in sql
    assert 'cast("id" as text) AS path' in sql
    assert "tree_cte.depth + 1" in sql
    assert "JOIN tree_cte ON tree_cte.id = nodes.parent_id" in sql
    assert '"tree_cte"."path" || \'.\' || "nodes"."id"' in sql


def test_ancestor_expression_walks_up():
    sql = compile_sql(make_spec(direction=ANCESTORS, initial_depth=-1), postgresql.dialect())

    assert "-1 AS depth" in sql
    assert "tree_cte.depth - 1" in sql
    assert "JOIN tree_cte ON tree_cte.parent_id = nodes.id" in sql


def test_anchor_uses_constraint():
    compiled = build_expression(make_spec(), nodes, sqlite.dialect())

    sql = str(compiled.anchor.compile(compile_kwargs={"literal_binds": True}))

    assert "WHERE nodes.id = 1" in sql
    assert compiled.name == "tree_cte"


def test_recursive_query_selects_source_rows():
    compiled = build_expression(make_spec(), nodes, sqlite.dialect())

    selected = [column.name for column in compiled.recursive.selected_columns]

    assert selected == ["id", "label", "parent_id", "meta", "depth", "path"]


def test_aliased_source_qualifies_recursive_join():
    source = resolve_source(nodes, "nodes as n")

    sql = compile_sql(make_spec(), postgresql.dialect(), source=source)

    assert "FROM nodes AS n" in sql
    assert "tree_cte.id = n.parent_id" in sql
    assert '"n"."id"' in sql


def test_custom_names_and_separator():
    spec = make_spec(
        expression_name="walk",
        depth_name="level",
        path_name="trail",
        path_separator="/",
    )

    sql = compile_sql(spec, sqlite.dialect())

    assert sql.startswith("WITH RECURSIVE walk")
    assert "walk.level + 1" in sql
    assert '"walk"."trail" || \'/\' || "nodes"."id"' in sql


def test_max_depth_bounds_recursive_step():
    down = compile_sql(make_spec(max_depth=3), sqlite.dialect())
    up = compile_sql(make_spec(direction=ANCESTORS, max_depth=3), sqlite.dialect())

    assert "tree_cte.depth < 3" in down
    assert "tree_cte.depth > -3" in up


def test_sql_server_expression_has_no_recursive_keyword():
    sql = compile_sql(make_spec(), mssql.dialect())

    assert sql.startswith("WITH tree_cte")
    assert "cast([id] as varchar(max))" in sql


def test_mysql_expression_uses_concat():
    sql = compile_sql(make_spec(), mysql.dialect())

    assert "concat(`tree_cte`.`path`, '.', `nodes`.`id`)" in sql


def test_unsupported_dialect_fails_before_building():
    dialect = SimpleNamespace(name="firebird")

    with pytest.raises(UnsupportedDatabaseError):
        build_expression(make_spec(), nodes, dialect)
