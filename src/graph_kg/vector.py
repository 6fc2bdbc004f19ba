#!/usr/bin/env python3
"""
vector.py

VectorSearchService — query embeddings + nearest-neighbour lookup against
the graph store's native vector indexes.

Also keeps stored embeddings current: :meth:`VectorSearchService.index_entities`
re-embeds only the nodes an ingestion run created or updated.

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from neo4j.exceptions import AuthError, ClientError

from graph_kg.config import VectorIndexDescriptor
from graph_kg.embedding import EmbeddingProvider, validate_vector
from graph_kg.errors import EmbeddingProviderError, QueryValidationError, VectorSearchError
from graph_kg.ratelimit import TokenBucket

# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class VectorHit:
    """
    A single nearest-neighbour match.

    :param id: Entity ``uuid``.
    :param score: Similarity in ``[0, 1]`` (higher = more similar).
    :param properties: Node properties without embedding vectors.
    :param labels: Node labels.
    """

    id: str
    score: float
    properties: dict
    labels: list[str] = field(default_factory=list)


@dataclass
class EmbeddingFailure:
    """One input of a batch that could not be embedded."""

    index: int
    text: str
    error: str


@dataclass
class BatchEmbedding:
    """
    Result of :meth:`VectorSearchService.embed_batch`.

    ``vectors`` is aligned with the input; failed positions hold ``None``.
    """

    vectors: list[list[float] | None] = field(default_factory=list)
    failures: list[EmbeddingFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def succeeded(self) -> list[tuple[int, list[float]]]:
        return [(i, v) for i, v in enumerate(self.vectors) if v is not None]


@dataclass
class IndexReport:
    """Outcome of re-embedding a set of entities for one vector index."""

    index_name: str
    embedded: int = 0
    skipped: int = 0
    failures: list[EmbeddingFailure] = field(default_factory=list)


# ---------------------------------------------------------------------------
# VectorSearchService
# ---------------------------------------------------------------------------


class VectorSearchService:
    """
    Embeds text and runs vector-index lookups.

    Example::

        svc = VectorSearchService(client, SentenceTransformerEmbedder())
        hits = svc.search("parse file", "scopeEmbeddings", top_k=5)

    :param client: :class:`~graph_kg.store.GraphStoreClient` (or compatible).
    :param provider: Default :class:`~graph_kg.embedding.EmbeddingProvider`.
    :param providers: Per-index provider overrides, keyed by index name.
    :param descriptors: Known vector indexes (for dimension checks and
        embedding-property stripping).
    :param rate_limiter: Paces outbound embedding calls.
    """

    def __init__(
        self,
        client: Any,
        provider: EmbeddingProvider,
        *,
        providers: Mapping[str, EmbeddingProvider] | None = None,
        descriptors: Iterable[VectorIndexDescriptor] = (),
        rate_limiter: TokenBucket | None = None,
    ) -> None:
        self.client = client
        self.provider = provider
        self.providers = dict(providers or {})
        self.descriptors = {d.name: d for d in descriptors}
        self.rate_limiter = rate_limiter

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    def provider_for(self, index_name: str | None) -> EmbeddingProvider:
        if index_name and index_name in self.providers:
            return self.providers[index_name]
        return self.provider

    def _expected_dim(self, index_name: str | None) -> int | None:
        if index_name and index_name in self.descriptors:
            return self.descriptors[index_name].dimension
        return getattr(self.provider_for(index_name), "dim", None)

    def embed(self, text: str, *, index_name: str | None = None) -> list[float]:
        """
        Embed one string.

        :param text: Input text.
        :param index_name: Select the provider/dimension of this index.
        :raises EmbeddingProviderError: on transport failure or a malformed vector.
        """
        provider = self.provider_for(index_name)
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()
        try:
            raw = provider.embed_query(text)
        except EmbeddingProviderError:
            raise
        except Exception as exc:
            raise EmbeddingProviderError(f"embedding provider failed: {exc}", text=text) from exc

        try:
            return validate_vector(raw, self._expected_dim(index_name))
        except ValueError as exc:
            raise EmbeddingProviderError(f"malformed embedding: {exc}", text=text) from exc

    def embed_batch(self, texts: Sequence[str], *, index_name: str | None = None) -> BatchEmbedding:
        """
        Embed inputs one at a time, paced by the rate limiter.

        A failure at item *i* never discards items ``0..i-1``; each failure
        records its input position and text.
        """
        out = BatchEmbedding()
        for i, text in enumerate(texts):
            try:
                out.vectors.append(self.embed(text, index_name=index_name))
            except EmbeddingProviderError as exc:
                logger.warning("embedding failed for item {}: {}", i, exc)
                out.vectors.append(None)
                out.failures.append(EmbeddingFailure(index=i, text=text, error=str(exc)))
        return out

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        text: str,
        index_name: str,
        *,
        top_k: int = 10,
        min_score: float = 0.0,
    ) -> list[VectorHit]:
        """
        Embed *text* and return the nearest entities of *index_name*.

        :param text: Query text.
        :param index_name: Vector index to search (required).
        :param top_k: Maximum hits (``>= 1``).
        :param min_score: Drop hits scoring below this (``0..1``).
        :return: Hits sorted by score descending.
        :raises QueryValidationError: on bad arguments (before any call).
        :raises EmbeddingProviderError: if the query cannot be embedded.
        :raises VectorSearchError: if the store rejects the vector query.
        """
        validate_search_args(index_name, top_k, min_score)

        embedding = self.embed(text, index_name=index_name)
        try:
            rows = self.client.vector_query(index_name, embedding, top_k, min_score=min_score)
        except AuthError:
            raise
        except ClientError as exc:
            raise VectorSearchError(f"vector query on {index_name!r} failed: {exc}") from exc

        strip = self._embedding_fields(index_name)
        hits: list[VectorHit] = []
        for props, labels, score in rows:
            score = min(1.0, max(0.0, float(score)))
            if score < min_score:
                continue
            clean = {k: v for k, v in props.items() if k not in strip and not k.startswith("embedding")}
            hits.append(VectorHit(id=props.get("uuid"), score=score, properties=clean, labels=list(labels)))

        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]

    def _embedding_fields(self, index_name: str) -> set[str]:
        d = self.descriptors.get(index_name)
        if d is None:
            return {desc.field for desc in self.descriptors.values()}
        return {desc.field for desc in self.descriptors.values() if desc.label == d.label}

    # ------------------------------------------------------------------
    # Selective re-embedding
    # ------------------------------------------------------------------

    def index_entities(self, descriptor: VectorIndexDescriptor, uuids: Sequence[str]) -> IndexReport:
        """
        Recompute ``descriptor.field`` for the given entities.

        Reads each node's ``descriptor.source_field``, embeds it and writes
        the vector back. Nodes without source text are skipped.

        :param descriptor: Vector index to refresh.
        :param uuids: Entities to re-embed (typically created + updated).
        """
        report = IndexReport(index_name=descriptor.name)
        if not uuids:
            return report

        self.descriptors.setdefault(descriptor.name, descriptor)
        texts = self.client.node_texts(descriptor.label, descriptor.source_field, list(uuids))
        todo = [(u, t) for u, t in texts.items() if isinstance(t, str) and t.strip()]
        report.skipped = len(uuids) - len(todo)

        batch = self.embed_batch([t for _, t in todo], index_name=descriptor.name)
        rows = [
            {"uuid": todo[i][0], "props": {descriptor.field: vec}}
            for i, vec in batch.succeeded()
        ]
        report.embedded = self.client.set_properties(descriptor.label, rows)
        report.failures = batch.failures

        logger.info(
            "{}: embedded {} / skipped {} / failed {}",
            descriptor.name,
            report.embedded,
            report.skipped,
            len(report.failures),
        )
        return report


def validate_search_args(index_name: str | None, top_k: int, min_score: float) -> None:
    """Reject malformed vector-search arguments locally."""
    if not index_name:
        raise QueryValidationError("a vector index name is required for semantic search")
    if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1:
        raise QueryValidationError(f"top_k must be an integer >= 1, got {top_k!r}")
    if not 0.0 <= float(min_score) <= 1.0:
        raise QueryValidationError(f"min_score must be within [0, 1], got {min_score!r}")
