"""Ancestors, descendants and siblings of a single tree node.

Each relation fixes the traversal direction, the depth of the anchor rows and
the anchor constraint, then hands the resulting ``TraversalSpec`` to the
model's expression compiler.

+----------------------+--------------+---------------------------------+-------+
| relation             | direction    | anchor                          | depth |
+======================+==============+=================================+=======+
| ancestors            | toward parent| id = node.parent_id             |  -1   |
| ancestors and self   | toward parent| id = node.id                    |   0   |
| descendants          | toward child | parent_id = node.id             |   1   |
| descendants and self | toward child | id = node.id                    |   0   |
| siblings             | toward child | parent_id = node.parent_id,     |   0   |
|                      |              | id != node.id                   |       |
| siblings and self    | toward child | parent_id = node.parent_id      |   0   |
+----------------------+--------------+---------------------------------+-------+
"""
from typing import Optional

from expressions import ANCESTORS, DESCENDANTS, TraversalSpec


class RecursiveRelation:
    direction = DESCENDANTS

    def __init__(self, node, and_self: bool = False, max_depth: Optional[int] = None):
        self.node = node
        self.model = type(node)
        self.and_self = and_self
        self.max_depth = max_depth

    def __repr__(self):
        return f"<{type(self).__name__} of {self.node!r} and_self={self.and_self}>"

    @property
    def initial_depth(self) -> int:
        return 0

    @property
    def node_key(self):
        return getattr(self.node, self.model.get_key_name())

    @property
    def node_parent_key(self):
        return getattr(self.node, self.model.__parent_key__)

    def constraint(self, source):
        raise NotImplementedError

    def get_spec(self) -> TraversalSpec:
        return self.model.get_traversal_spec(
            self.direction,
            self.constraint,
            self.initial_depth,
            include_self=self.and_self,
            max_depth=self.max_depth,
        )

    def get_query(self, session):
        return self.model.query_traversal(session, self.get_spec())


class Ancestors(RecursiveRelation):
    direction = ANCESTORS

    @property
    def initial_depth(self):
        return 0 if self.and_self else -1

    def constraint(self, source):
        key = source.c[self.model.get_key_name()]
        if self.and_self:
            return key == self.node_key
        return key == self.node_parent_key


class Descendants(RecursiveRelation):
    direction = DESCENDANTS

    @property
    def initial_depth(self):
        return 0 if self.and_self else 1

    def constraint(self, source):
        if self.and_self:
            return source.c[self.model.get_key_name()] == self.node_key
        return source.c[self.model.__parent_key__] == self.node_key


class Siblings(RecursiveRelation):
    """Nodes sharing the node's parent; the roots when the node is a root.

    The expression never recurses past the anchor rows, so every sibling is
    returned at depth 0.
    """

    direction = DESCENDANTS

    def __init__(self, node, and_self: bool = False):
        super().__init__(node, and_self, max_depth=0)

    def constraint(self, source):
        # comparing against None compiles to IS NULL, so roots see other roots
        criterion = source.c[self.model.__parent_key__] == self.node_parent_key
        if not self.and_self:
            criterion = criterion & (source.c[self.model.get_key_name()] != self.node_key)
        return criterion
