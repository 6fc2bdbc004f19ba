#!/usr/bin/env python3
"""
errors.py

Typed error taxonomy for graph-kg.

Callers branch on three families:

* connectivity  — the driver's own exceptions, re-exported as
  :data:`CONNECTIVITY_ERRORS` and never wrapped or retried here
* validation    — :class:`QueryValidationError`, raised before any network call
* provider      — :class:`EmbeddingProviderError` / :class:`VectorSearchError`

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from neo4j.exceptions import AuthError, ServiceUnavailable, SessionExpired

if TYPE_CHECKING:
    from graph_kg.ingest import IngestionReport

CONNECTIVITY_ERRORS: tuple[type[Exception], ...] = (
    ServiceUnavailable,
    SessionExpired,
    AuthError,
)


class GraphKGError(Exception):
    """Base class for all errors raised by graph-kg."""


class QueryValidationError(GraphKGError, ValueError):
    """A query, predicate or identifier is malformed. Never sent to the store."""


class EmbeddingProviderError(GraphKGError):
    """
    The embedding provider failed or returned a malformed vector.

    :param message: Human-readable description.
    :param text: The input text that failed (if attributable).
    :param index: Position of *text* within a batch (if attributable).
    """

    def __init__(self, message: str, *, text: str | None = None, index: int | None = None) -> None:
        super().__init__(message)
        self.text = text
        self.index = index


class VectorSearchError(GraphKGError):
    """The store rejected a vector-index query (missing index, bad dimension…)."""


class IngestionError(GraphKGError):
    """
    An ingestion run failed in a given stage.

    :param stage: Stage that failed (``IngestionState`` value).
    :param report: Partial report, including ``pending`` entity uuids.
    """

    def __init__(self, message: str, *, stage: str, report: "IngestionReport") -> None:
        super().__init__(message)
        self.stage = stage
        self.report = report


class DegradedQueryWarning(UserWarning):
    """A combined query fell back to filter-only scoring."""
