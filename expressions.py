"""Recursive common table expressions for adjacency-list trees.

A traversal is described by a ``TraversalSpec`` and compiled into an anchor
query unioned with a recursive query that joins the source table against the
expression itself. Every row carries two computed columns: ``depth`` (signed
hop count from the anchor) and ``path`` (the separator-joined keys from the
anchor to the row).

``TreeQuery`` is the query a caller works with afterwards. It knows whether it
currently selects from the base table or from a compiled expression, so the
scopes (root/leaf filters, depth filters, orderings) resolve their columns
against the right source without mutating the model.
"""
import logging
import operator
import re
from dataclasses import dataclass, field
from typing import Any, Callable, List, NamedTuple, Optional

from sqlalchemy import Integer, func, literal_column, select
from sqlalchemy.orm import aliased, with_expression

from grammars import get_expression_grammar

logger = logging.getLogger(__name__)

ANCESTORS = "asc"
DESCENDANTS = "desc"

_MISSING = object()

_OPERATORS = {
    "=": operator.eq,
    "==": operator.eq,
    "!=": operator.ne,
    "<>": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True)
class TraversalSpec:
    """Everything needed to compile one traversal.

    ``constraint`` receives the source selectable (table or alias) and returns
    the WHERE criterion selecting the anchor rows. ``max_depth`` bounds the
    absolute depth the recursive step may extend; ``None`` leaves it unbounded.
    """

    local_key: str
    parent_key: str
    constraint: Callable[[Any], Any] = field(compare=False)
    direction: str = DESCENDANTS
    initial_depth: int = 0
    include_self: bool = False
    depth_name: str = "depth"
    path_name: str = "path"
    path_separator: str = "."
    expression_name: str = "tree_cte"
    max_depth: Optional[int] = None

    def __post_init__(self):
        assert self.direction in (ANCESTORS, DESCENDANTS), (
            f"invalid traversal direction {self.direction!r}"
        )
        assert self.local_key and self.parent_key, "key column names are required"
        assert callable(self.constraint), "an anchor constraint is required"

    @property
    def ascending(self) -> bool:
        return self.direction == ANCESTORS


class CompiledExpression(NamedTuple):
    name: str
    anchor: Any
    recursive: Any
    cte: Any


def resolve_source(table, from_=None):
    """Return the selectable to traverse: the table, an alias, or ``from_`` itself.

    ``from_`` may be a selectable or a string such as ``"nodes as n"``.
    """
    if from_ is None:
        return table
    if not isinstance(from_, str):
        return from_

    parts = re.split(r"\s+as\s+", from_.strip(), maxsplit=1, flags=re.IGNORECASE)
    if parts[0] != table.name:
        raise ValueError(f"{from_!r} does not refer to table {table.name!r}")
    if len(parts) == 2:
        return table.alias(parts[1])
    return table


def build_expression(spec: TraversalSpec, source, dialect) -> CompiledExpression:
    """Compile ``spec`` over ``source`` into a recursive CTE for ``dialect``.

    Raises ``UnsupportedDatabaseError`` before anything is built when the
    dialect has no grammar.
    """
    grammar = get_expression_grammar(dialect)

    initial_depth = literal_column(str(int(spec.initial_depth)), Integer)
    anchor = select(
        *source.c,
        initial_depth.label(spec.depth_name),
        grammar.compile_initial_path(spec.local_key, spec.path_name),
    ).where(spec.constraint(source))

    cte = anchor.cte(spec.expression_name, recursive=True)

    depth = cte.c[spec.depth_name]
    step = literal_column("1", Integer)
    recursive_depth = depth - step if spec.ascending else depth + step
    recursive_path = grammar.compile_recursive_path(
        f"{source.name}.{spec.local_key}",
        f"{spec.expression_name}.{spec.path_name}",
        spec.path_separator,
    )

    if spec.ascending:
        onclause = cte.c[spec.parent_key] == source.c[spec.local_key]
    else:
        onclause = cte.c[spec.local_key] == source.c[spec.parent_key]

    recursive = select(
        *source.c,
        recursive_depth.label(spec.depth_name),
        recursive_path.label(spec.path_name),
    ).select_from(source.join(cte, onclause))

    if spec.max_depth is not None:
        if spec.ascending:
            recursive = recursive.where(depth > -spec.max_depth)
        else:
            recursive = recursive.where(depth < spec.max_depth)

    logger.debug(
        "Built %s expression %r over %s (initial depth %d, max depth %s)",
        "ancestor" if spec.ascending else "descendant",
        spec.expression_name,
        source.name,
        spec.initial_depth,
        spec.max_depth,
    )

    return CompiledExpression(
        spec.expression_name, anchor, recursive, cte.union_all(recursive)
    )


class TreeQuery:
    """A generative select over a tree model.

    ``expression`` is the compiled CTE the query reads from, or ``None`` when
    it reads the model's base table. Instances loaded from an expression get
    their ``depth`` and ``path`` attributes filled in.
    """

    def __init__(self, model, session=None, expression=None, statement=None):
        self.model = model
        self.session = session
        self.expression = expression

        if expression is not None:
            self.entity = aliased(model, expression)
        else:
            self.entity = model

        if statement is None:
            statement = select(self.entity)
            if expression is not None:
                statement = statement.options(
                    with_expression(self.entity.depth, expression.c[model.__depth_name__]),
                    with_expression(self.entity.path, expression.c[model.__path_name__]),
                )
        self.statement = statement

    def __repr__(self):
        return f"<TreeQuery {self.model.__name__} from {self.source.name}>"

    @property
    def source(self):
        """The selectable the query currently reads: expression or base table."""
        if self.expression is not None:
            return self.expression
        return self.model.__table__

    @property
    def depth_column(self):
        assert self.expression is not None, "depth is only available on a recursive expression"
        return self.expression.c[self.model.__depth_name__]

    @property
    def path_column(self):
        assert self.expression is not None, "path is only available on a recursive expression"
        return self.expression.c[self.model.__path_name__]

    def column(self, name: str):
        return self.source.c[name]

    def _clone(self, statement) -> "TreeQuery":
        query = TreeQuery.__new__(TreeQuery)
        query.__dict__.update(self.__dict__)
        query.statement = statement
        return query

    def where(self, *criteria) -> "TreeQuery":
        return self._clone(self.statement.where(*criteria))

    def order_by(self, *clauses) -> "TreeQuery":
        return self._clone(self.statement.order_by(*clauses))

    # scopes

    def is_root(self) -> "TreeQuery":
        return self.where(self.column(self.model.__parent_key__).is_(None))

    def has_parent(self) -> "TreeQuery":
        return self.where(self.column(self.model.__parent_key__).is_not(None))

    def _parent_keys(self):
        children = self.model.__table__.alias("children")
        parent_key = children.c[self.model.__parent_key__]
        return select(parent_key).where(parent_key.is_not(None))

    def has_children(self) -> "TreeQuery":
        local_key = self.column(self.model.get_key_name())
        return self.where(local_key.in_(self._parent_keys()))

    def is_leaf(self) -> "TreeQuery":
        local_key = self.column(self.model.get_key_name())
        return self.where(local_key.not_in(self._parent_keys()))

    def where_depth(self, op, value=_MISSING) -> "TreeQuery":
        """Filter on depth: ``where_depth("<=", 2)`` or ``where_depth(1)``."""
        if value is _MISSING:
            op, value = "=", op
        try:
            compare = _OPERATORS[op]
        except KeyError:
            raise ValueError(f"Unsupported depth operator {op!r}") from None
        return self.where(compare(self.depth_column, value))

    def breadth_first(self) -> "TreeQuery":
        return self.order_by(self.depth_column)

    def depth_first(self) -> "TreeQuery":
        return self.order_by(self.path_column)

    # execution

    def _get_session(self):
        assert self.session is not None, "TreeQuery is not bound to a session"
        if self.expression is not None:
            # pending edits must reach the database before rows are repopulated
            self.session.flush()
        return self.session

    def _execute(self, statement):
        session = self._get_session()
        if self.expression is not None:
            # refresh depth/path on instances already in the identity map
            statement = statement.execution_options(populate_existing=True)
        return session.execute(statement)

    def all(self) -> List[Any]:
        return list(self._execute(self.statement).scalars().all())

    def first(self):
        return self._execute(self.statement.limit(1)).scalars().first()

    def count(self) -> int:
        subquery = self.statement.order_by(None).subquery()
        return self._get_session().execute(
            select(func.count()).select_from(subquery)
        ).scalar_one()
