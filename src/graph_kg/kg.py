#!/usr/bin/env python3
"""
kg.py

GraphKG — top-level orchestrator for graph-kg.

Owns the full pipeline:
    source tree → SourceParser → IncrementalIngestionPipeline → Neo4j
    Neo4j → QueryExecutionEngine (+ VectorSearchService) → SearchResults

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from loguru import logger

from graph_kg.changes import ChangeTracker
from graph_kg.config import IngestionConfig, default_code_config
from graph_kg.embedding import EmbeddingProvider, SentenceTransformerEmbedder
from graph_kg.errors import EmbeddingProviderError
from graph_kg.ingest import IncrementalIngestionPipeline, IngestionReport
from graph_kg.model import ChangeRecord
from graph_kg.parser import PythonSourceParser, SourceParser
from graph_kg.query import Query, QueryExecutionEngine
from graph_kg.ratelimit import TokenBucket
from graph_kg.schema import GraphSchema, SchemaIntrospector
from graph_kg.settings import GraphKGSettings
from graph_kg.store import GraphStoreClient
from graph_kg.vector import VectorSearchService


class GraphKG:
    """
    Top-level orchestrator.

    Owns and coordinates the layers:

    * :class:`~graph_kg.store.GraphStoreClient` — Neo4j access
    * :class:`~graph_kg.vector.VectorSearchService` — embeddings + vector lookup
    * :class:`~graph_kg.ingest.IncrementalIngestionPipeline` — diff + batched writes
    * :class:`~graph_kg.query.QueryExecutionEngine` — filter / semantic / expand

    Typical usage::

        with GraphKG() as kg:
            kg.ensure_schema()
            report = kg.ingest("/path/to/repo")
            print(report)

            results = (
                kg.query("Scope")
                .semantic("parse file", vector_index="scopeEmbeddings", top_k=5)
                .execute()
            )

    :param settings: Environment settings (read once, here).
    :param config: Ingestion config; defaults to :func:`default_code_config`.
    :param client: Pre-built store client (otherwise built from *settings*).
    :param embedder: Default embedding provider (lazy sentence-transformers
        model otherwise).
    :param providers: Per-vector-index provider overrides.
    """

    def __init__(
        self,
        settings: GraphKGSettings | None = None,
        *,
        config: IngestionConfig | None = None,
        client: GraphStoreClient | None = None,
        embedder: EmbeddingProvider | None = None,
        providers: Mapping[str, EmbeddingProvider] | None = None,
    ) -> None:
        self.settings = settings or GraphKGSettings()
        self.config = config or default_code_config(model=self.settings.embedding_model)
        self._providers = dict(providers or {})

        # Lazy-initialised layers
        self._client: GraphStoreClient | None = client
        self._embedder: EmbeddingProvider | None = embedder
        self._vector: VectorSearchService | None = None
        self._tracker: ChangeTracker | None = None
        self._pipeline: IncrementalIngestionPipeline | None = None
        self._engine: QueryExecutionEngine | None = None

    # ------------------------------------------------------------------
    # Layer accessors (lazy init)
    # ------------------------------------------------------------------

    @property
    def client(self) -> GraphStoreClient:
        """Graph store client (lazy)."""
        if self._client is None:
            self._client = GraphStoreClient.from_settings(self.settings)
        return self._client

    @property
    def embedder(self) -> EmbeddingProvider:
        """Default embedding backend (lazy)."""
        if self._embedder is None:
            try:
                self._embedder = SentenceTransformerEmbedder(self.settings.embedding_model)
            except Exception as exc:
                raise EmbeddingProviderError(
                    f"cannot load embedding model {self.settings.embedding_model!r}: {exc}"
                ) from exc
        return self._embedder

    @property
    def vector(self) -> VectorSearchService:
        """Vector search service (lazy)."""
        if self._vector is None:
            self._vector = VectorSearchService(
                self.client,
                self.embedder,
                providers=self._providers,
                descriptors=self.config.vector_indexes,
                rate_limiter=TokenBucket(self.settings.embedding_rate, self.settings.embedding_burst),
            )
        return self._vector

    @property
    def tracker(self) -> ChangeTracker:
        if self._tracker is None:
            self._tracker = ChangeTracker(self.client)
        return self._tracker

    @property
    def pipeline(self) -> IncrementalIngestionPipeline:
        if self._pipeline is None:
            self._pipeline = IncrementalIngestionPipeline(
                self.client,
                self.tracker,
                config=self.config,
                relationship_batch_size=self.settings.relationship_batch_size,
                change_concurrency=self.settings.change_concurrency,
            )
        return self._pipeline

    @property
    def engine(self) -> QueryExecutionEngine:
        if self._engine is None:
            self._engine = QueryExecutionEngine(
                self.client,
                _LazyVector(self),
                filter_weight=self.settings.filter_weight,
                semantic_weight=self.settings.semantic_weight,
                max_candidates=self.settings.max_candidates,
                expand_concurrency=self.settings.expand_concurrency,
                config=self.config,
            )
        return self._engine

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def ensure_schema(self) -> None:
        """Create uniqueness constraints and vector indexes declared in the config."""
        for entity in self.config.entities:
            self.client.ensure_unique_constraint(entity.name, entity.unique_field)
        for descriptor in self.config.vector_indexes:
            self.client.ensure_vector_index(descriptor)
        self.tracker.ensure_schema()
        logger.info("schema ensured for {} label(s)", len(self.config.entities))

    def introspect(self, database: str | None = None, *, sample_size: int = 100) -> GraphSchema:
        """Discover the live schema (see :class:`~graph_kg.schema.SchemaIntrospector`)."""
        return SchemaIntrospector(self.client, self.config.vector_indexes).introspect(
            database, sample_size=sample_size
        )

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def ingest(
        self,
        root: str | Path,
        parser: SourceParser | None = None,
        *,
        project_id: str | None = None,
        dry_run: bool = False,
        embed: bool = True,
    ) -> IngestionReport:
        """
        Incrementally synchronize the graph with *root*.

        :param root: Source tree root.
        :param parser: Source parser (defaults to :class:`PythonSourceParser`).
        :param project_id: Diff scope (defaults to the root directory name).
        :param dry_run: Report the diff without writing.
        :param embed: Re-embed created/updated entities for every configured
            vector index.
        :return: :class:`~graph_kg.ingest.IngestionReport`
        """
        report = self.pipeline.run(
            Path(root),
            parser or PythonSourceParser(),
            project_id=project_id,
            dry_run=dry_run,
        )
        if embed and not dry_run:
            for descriptor in self.config.vector_indexes:
                uuids = report.changed_uuids(descriptor.label)
                if uuids:
                    report.index_reports.append(self.vector.index_entities(descriptor, uuids))
        return report

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def query(self, label: str) -> Query:
        """Start a fluent query over *label*."""
        return self.engine.query(label)

    def history(self, entity_id: str) -> list[ChangeRecord]:
        """Change history of one entity, oldest first."""
        return self.tracker.history(entity_id)

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    def stats(self) -> dict:
        """Return store statistics (node/relationship counts)."""
        return self.client.stats()

    def close(self) -> None:
        """Close the driver and the embedding provider."""
        if self._embedder is not None:
            self._embedder.close()
        if self._client is not None:
            self._client.close()

    def __enter__(self) -> GraphKG:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"GraphKG(uri={self.settings.neo4j_uri!r}, "
            f"database={self.settings.neo4j_database!r}, "
            f"labels={self.config.labels!r})"
        )


class _LazyVector:
    """Defers embedding-model loading until a query actually needs it."""

    def __init__(self, kg: GraphKG) -> None:
        self._kg = kg

    def search(self, *args, **kwargs):
        return self._kg.vector.search(*args, **kwargs)
