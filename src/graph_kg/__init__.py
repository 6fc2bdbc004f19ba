"""
graph_kg: incremental code knowledge graph on Neo4j with hybrid retrieval.

Source tree → deterministic parse → incremental diff → batched upserts
(Neo4j) → filter / semantic / expand queries.

Public API
----------
Primary entry point::

    from graph_kg import GraphKG

    with GraphKG() as kg:
        kg.ensure_schema()
        report = kg.ingest("/path/to/repo")
        results = (
            kg.query("Scope")
            .where(type="function")
            .semantic("parse file", vector_index="scopeEmbeddings", top_k=5)
            .expand("CONSUMES", depth=2)
            .execute()
        )

Individual layers::

    from graph_kg import (
        GraphStoreClient, VectorSearchService, ChangeTracker,
        IncrementalIngestionPipeline, QueryExecutionEngine, SchemaIntrospector,
    )
"""

__version__ = "0.1.0"
__author__ = "Eric G. Suchanek, PhD"

# Primitives
from graph_kg.model import (
    ChangeKind,
    ChangeRecord,
    ParsedGraph,
    ParsedNode,
    ParsedRelationship,
    content_hash,
    deterministic_uuid,
)

# Errors and configuration
from graph_kg.errors import (
    CONNECTIVITY_ERRORS,
    DegradedQueryWarning,
    EmbeddingProviderError,
    GraphKGError,
    IngestionError,
    QueryValidationError,
    VectorSearchError,
)
from graph_kg.config import (
    EntityConfig,
    IngestionConfig,
    VectorIndexDescriptor,
    default_code_config,
    load_ingestion_config,
)
from graph_kg.settings import GraphKGSettings

# Layers
from graph_kg.store import GraphStoreClient, QueryPlan
from graph_kg.embedding import EmbeddingProvider, SentenceTransformerEmbedder
from graph_kg.ratelimit import TokenBucket
from graph_kg.vector import BatchEmbedding, VectorHit, VectorSearchService
from graph_kg.changes import ChangeFailure, ChangeTracker
from graph_kg.parser import PythonSourceParser, SourceParser
from graph_kg.ingest import IncrementalIngestionPipeline, IngestionReport, IngestionState
from graph_kg.ingestion_queue import IngestionQueue
from graph_kg.query import (
    FieldPredicate,
    Query,
    QueryExecutionEngine,
    QuerySpec,
    RelatedEntity,
    SearchResult,
    SearchResults,
)
from graph_kg.rerank import LLMReranker, RerankContext, RerankStrategy, StructuredGenerationProvider
from graph_kg.schema import GraphSchema, SchemaIntrospector

# Orchestrator
from graph_kg.kg import GraphKG

__all__ = [
    # primitives
    "ChangeKind",
    "ChangeRecord",
    "ParsedGraph",
    "ParsedNode",
    "ParsedRelationship",
    "content_hash",
    "deterministic_uuid",
    # errors / config
    "CONNECTIVITY_ERRORS",
    "DegradedQueryWarning",
    "EmbeddingProviderError",
    "GraphKGError",
    "IngestionError",
    "QueryValidationError",
    "VectorSearchError",
    "EntityConfig",
    "IngestionConfig",
    "VectorIndexDescriptor",
    "default_code_config",
    "load_ingestion_config",
    "GraphKGSettings",
    # layers
    "GraphStoreClient",
    "QueryPlan",
    "EmbeddingProvider",
    "SentenceTransformerEmbedder",
    "TokenBucket",
    "BatchEmbedding",
    "VectorHit",
    "VectorSearchService",
    "ChangeFailure",
    "ChangeTracker",
    "PythonSourceParser",
    "SourceParser",
    "IncrementalIngestionPipeline",
    "IngestionReport",
    "IngestionState",
    "IngestionQueue",
    "FieldPredicate",
    "Query",
    "QueryExecutionEngine",
    "QuerySpec",
    "RelatedEntity",
    "SearchResult",
    "SearchResults",
    "LLMReranker",
    "RerankContext",
    "RerankStrategy",
    "StructuredGenerationProvider",
    "GraphSchema",
    "SchemaIntrospector",
    # orchestrator
    "GraphKG",
]
