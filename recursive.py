"""Mixin giving adjacency-list models recursive tree relations.

A model that stores its parent as a single foreign key gets ancestors,
descendants and siblings computed by one recursive query each, plus the scopes
of ``TreeQuery`` on its base table.

Example:
    >>> class Category(Base, HasRecursiveRelationships):
    ...     __tablename__ = "categories"
    ...     id = Column(Integer, primary_key=True)
    ...     parent_id = Column(Integer, ForeignKey("categories.id"))
    >>>
    >>> category = session.get(Category, 4)
    >>> [c.id for c in category.ancestors().breadth_first().all()]
    [1, 2]
    >>> Category.query_tree(session).is_leaf().all()

Note:
    - The column names below are class attributes and can be overridden per model
    - ``depth`` and ``path`` are only populated on instances loaded through
      a recursive expression
"""
from typing import Any, Callable, ClassVar, Optional

from sqlalchemy import inspect
from sqlalchemy.orm import declared_attr, object_session, query_expression

from exceptions import PathNotLoadedError, TreeQueryError
from expressions import (
    DESCENDANTS,
    TraversalSpec,
    TreeQuery,
    build_expression,
    resolve_source,
)
from relations import Ancestors, Descendants, Siblings


class HasRecursiveRelationships:
    __parent_key__: ClassVar[str] = "parent_id"
    __depth_name__: ClassVar[str] = "depth"
    __path_name__: ClassVar[str] = "path"
    __path_separator__: ClassVar[str] = "."
    __expression_name__: ClassVar[str] = "tree_cte"

    @declared_attr
    def depth(cls):
        return query_expression()

    @declared_attr
    def path(cls):
        return query_expression()

    @classmethod
    def get_key_name(cls) -> str:
        return inspect(cls).primary_key[0].name

    @classmethod
    def get_traversal_spec(
        cls,
        direction: str,
        constraint: Callable[[Any], Any],
        initial_depth: int,
        include_self: bool = False,
        max_depth: Optional[int] = None,
    ) -> TraversalSpec:
        return TraversalSpec(
            local_key=cls.get_key_name(),
            parent_key=cls.__parent_key__,
            constraint=constraint,
            direction=direction,
            initial_depth=initial_depth,
            include_self=include_self,
            depth_name=cls.__depth_name__,
            path_name=cls.__path_name__,
            path_separator=cls.__path_separator__,
            expression_name=cls.__expression_name__,
            max_depth=max_depth,
        )

    @classmethod
    def query_traversal(cls, session, spec: TraversalSpec, from_=None) -> TreeQuery:
        """Compile ``spec`` for the session's database and select from it."""
        source = resolve_source(cls.__table__, from_)
        dialect = session.get_bind(mapper=cls).dialect
        compiled = build_expression(spec, source, dialect)
        return TreeQuery(cls, session, expression=compiled.cte)

    @classmethod
    def with_relationship_expression(
        cls,
        session,
        direction: str,
        constraint: Callable[[Any], Any],
        initial_depth: int,
        from_=None,
        max_depth: Optional[int] = None,
    ) -> TreeQuery:
        spec = cls.get_traversal_spec(
            direction, constraint, initial_depth, max_depth=max_depth
        )
        return cls.query_traversal(session, spec, from_)

    @classmethod
    def query_tree(cls, session=None) -> TreeQuery:
        """Plain query on the base table, for the root/leaf scopes."""
        return TreeQuery(cls, session)

    @classmethod
    def tree(cls, session, max_depth: Optional[int] = None) -> TreeQuery:
        """Every root and its descendants, roots at depth 0."""

        def constraint(source):
            return source.c[cls.__parent_key__].is_(None)

        return cls.with_relationship_expression(
            session, DESCENDANTS, constraint, 0, max_depth=max_depth
        )

    def _get_session(self, session):
        if session is None:
            session = object_session(self)
        if session is None:
            raise TreeQueryError(
                f"{type(self).__name__} is not attached to a session",
                details={"key": getattr(self, self.get_key_name(), None)},
            )
        return session

    def ancestors(self, session=None, max_depth: Optional[int] = None) -> TreeQuery:
        return Ancestors(self, max_depth=max_depth).get_query(self._get_session(session))

    def ancestors_and_self(self, session=None, max_depth: Optional[int] = None) -> TreeQuery:
        relation = Ancestors(self, and_self=True, max_depth=max_depth)
        return relation.get_query(self._get_session(session))

    def descendants(self, session=None, max_depth: Optional[int] = None) -> TreeQuery:
        return Descendants(self, max_depth=max_depth).get_query(self._get_session(session))

    def descendants_and_self(self, session=None, max_depth: Optional[int] = None) -> TreeQuery:
        relation = Descendants(self, and_self=True, max_depth=max_depth)
        return relation.get_query(self._get_session(session))

    def children_and_self(self, session=None) -> TreeQuery:
        return self.descendants_and_self(session).where_depth("<=", 1)

    def parent_and_self(self, session=None) -> TreeQuery:
        return self.ancestors_and_self(session).where_depth(">=", -1)

    def siblings(self, session=None) -> TreeQuery:
        return Siblings(self).get_query(self._get_session(session))

    def siblings_and_self(self, session=None) -> TreeQuery:
        return Siblings(self, and_self=True).get_query(self._get_session(session))

    def _loaded_path(self) -> str:
        path = self.path
        if path is None:
            raise PathNotLoadedError(type(self).__name__, self.__path_name__)
        return str(path)

    def get_first_path_segment(self) -> str:
        """First key on the path, e.g. the sibling group an ancestor walk started from."""
        return self._loaded_path().split(self.__path_separator__)[0]

    def has_nested_path(self) -> bool:
        """True when the row was reached through at least one recursive step."""
        return self.__path_separator__ in self._loaded_path()
