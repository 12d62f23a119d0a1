"""Errors raised while building tree queries."""
from typing import Any, Dict, Optional


class TreeQueryError(Exception):
    """Base exception for recursive tree queries.

    Raised for configuration problems and misuse of loaded rows. Errors
    coming from the database driver itself are never wrapped.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class UnsupportedDatabaseError(TreeQueryError):
    """No expression grammar is registered for the active database engine."""

    def __init__(self, dialect_name: str):
        self.dialect_name = dialect_name
        super().__init__(
            "This database is not supported.", details={"dialect": dialect_name}
        )


class PathNotLoadedError(TreeQueryError):
    """The instance was not loaded from a recursive expression, so it has no path."""

    def __init__(self, model_name: str, path_name: str):
        self.model_name = model_name
        super().__init__(
            f"{model_name} has no '{path_name}' value loaded",
            details={"model": model_name},
        )
