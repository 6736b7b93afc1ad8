"""Exception hierarchy shared by the search, graph, and ingest layers."""

from __future__ import annotations

from typing import Any, Dict, Optional


class CodeSearchError(Exception):
    """Base class for every error raised by ``codegraph_search``."""

    code = "CODE_SEARCH_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class BackendConnectionError(CodeSearchError, ConnectionError):
    """The backing search engine is unreachable.  Retried by the adapter."""

    code = "BACKEND_CONNECTION_ERROR"


class SchemaError(CodeSearchError):
    """Index mapping is incompatible (e.g. vector dimension mismatch).

    Fatal at initialisation; never retried or degraded.
    """

    code = "SCHEMA_ERROR"


class ExtractionError(CodeSearchError):
    """A single file could not be parsed by its extractor."""

    code = "EXTRACTION_ERROR"

    def __init__(self, message: str, path: str = "", language: str = "") -> None:
        super().__init__(message, {"path": path, "language": language})
        self.path = path
        self.language = language


class InvalidQueryError(CodeSearchError, ValueError):
    """Empty or malformed query, rejected before any backend call."""

    code = "INVALID_QUERY"


class SearchUnavailableError(CodeSearchError):
    """Every retrieval channel failed for one search call."""

    code = "SEARCH_UNAVAILABLE"


class UnknownNodeError(CodeSearchError, KeyError):
    """A node id or symbol is not present in the current graph snapshot."""

    code = "UNKNOWN_NODE"

    def __str__(self) -> str:
        return self.message


class ResolutionWarning(UserWarning):
    """A symbolic relation could not be bound to a node id.

    Logged and recorded in the build report; the edge is dropped.
    """

    def __init__(
        self,
        message: str,
        source: str = "",
        target: str = "",
        relation_type: str = "",
        file_path: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.source = source
        self.target = target
        self.relation_type = relation_type
        self.file_path = file_path

    def __str__(self) -> str:
        return self.message


def format_error(error: BaseException) -> str:
    """Render an error as ``[CODE] message`` for CLI output."""
    if isinstance(error, CodeSearchError):
        return f"[{error.code}] {error.message}"
    return str(error) or type(error).__name__
