"""Per-engine SQL fragments for the materialized path of a recursive expression.

Every supported database gets one grammar with two operations: casting the
anchor row's key into the path's storage type, and appending a key to a
running path. Grammars are picked from a registry keyed on the SQLAlchemy
dialect name; an unknown engine is rejected before any statement is built.
"""
import logging
from typing import Dict, Type

from sqlalchemy import String, literal_column

from exceptions import UnsupportedDatabaseError

logger = logging.getLogger(__name__)


class ExpressionGrammar:
    """Base grammar: quoting plus the two path operations."""

    def __init__(self, dialect):
        self.dialect = dialect
        self.preparer = dialect.identifier_preparer

    def wrap(self, value: str) -> str:
        # "nodes.id" -> "nodes"."id" with the dialect's own quoting
        return ".".join(
            self.preparer.quote_identifier(segment) for segment in value.split(".")
        )

    def quote_string(self, value: str) -> str:
        return "'" + value.replace("'", "''") + "'"

    def compile_initial_path(self, column: str, alias: str):
        raise NotImplementedError

    def compile_recursive_path(self, column: str, alias: str, separator: str):
        raise NotImplementedError

    def _fragment(self, sql: str):
        return literal_column(sql, String)


class MySqlGrammar(ExpressionGrammar):
    def quote_string(self, value):
        # backslash is an escape character unless NO_BACKSLASH_ESCAPES is set
        return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"

    def compile_initial_path(self, column, alias):
        return self._fragment(f"cast({self.wrap(column)} as char(65535))").label(alias)

    def compile_recursive_path(self, column, alias, separator):
        return self._fragment(
            f"concat({self.wrap(alias)}, {self.quote_string(separator)}, {self.wrap(column)})"
        )


class PostgresGrammar(ExpressionGrammar):
    def compile_initial_path(self, column, alias):
        return self._fragment(f"cast({self.wrap(column)} as text)").label(alias)

    def compile_recursive_path(self, column, alias, separator):
        return self._fragment(
            f"{self.wrap(alias)} || {self.quote_string(separator)} || {self.wrap(column)}"
        )


class SQLiteGrammar(ExpressionGrammar):
    # Integer keys are cast so that anchor and recursive rows both sort as text.
    def compile_initial_path(self, column, alias):
        return self._fragment(f"cast({self.wrap(column)} as text)").label(alias)

    def compile_recursive_path(self, column, alias, separator):
        return self._fragment(
            f"{self.wrap(alias)} || {self.quote_string(separator)} || {self.wrap(column)}"
        )


class SqlServerGrammar(ExpressionGrammar):
    def compile_initial_path(self, column, alias):
        return self._fragment(f"cast({self.wrap(column)} as varchar(max))").label(alias)

    def compile_recursive_path(self, column, alias, separator):
        return self._fragment(
            f"cast({self.wrap(alias)} + {self.quote_string(separator)} + "
            f"cast({self.wrap(column)} as varchar(max)) as varchar(max))"
        )


GRAMMARS: Dict[str, Type[ExpressionGrammar]] = {
    "mysql": MySqlGrammar,
    "mariadb": MySqlGrammar,
    "postgresql": PostgresGrammar,
    "sqlite": SQLiteGrammar,
    "mssql": SqlServerGrammar,
}


def register_grammar(name: str, grammar: Type[ExpressionGrammar]) -> None:
    GRAMMARS[name] = grammar


def get_expression_grammar(dialect) -> ExpressionGrammar:
    """Return the grammar for ``dialect`` or raise ``UnsupportedDatabaseError``."""
    grammar = GRAMMARS.get(dialect.name)
    if grammar is None:
        logger.error("No expression grammar registered for dialect %r", dialect.name)
        raise UnsupportedDatabaseError(dialect.name)
    return grammar(dialect)
