"""Environment configuration for graph-kg."""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GraphKGSettings(BaseSettings):
    """
    Connection and runtime settings.

    Connection values come from ``NEO4J_*`` variables; runtime knobs use the
    ``GRAPH_KG_`` prefix. Read once when a client is constructed.
    """

    model_config = SettingsConfigDict(
        env_prefix="GRAPH_KG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # --- Graph store ---
    neo4j_uri: str = Field(default="bolt://localhost:7687", alias="NEO4J_URI")
    neo4j_username: str = Field(default="neo4j", alias="NEO4J_USERNAME")
    neo4j_password: str = Field(default="", alias="NEO4J_PASSWORD")
    neo4j_database: str | None = Field(default=None, alias="NEO4J_DATABASE")
    max_connection_pool_size: int = Field(default=50, ge=1)
    connection_timeout: float = Field(default=30.0, gt=0, description="Seconds")

    # --- Query merging ---
    filter_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    semantic_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    max_candidates: int = Field(
        default=10_000,
        ge=1,
        description="Cap on filter matches fetched when results are merged or reranked in memory.",
    )
    expand_concurrency: int = Field(default=8, ge=1)

    # --- Ingestion ---
    relationship_batch_size: int = Field(default=500, ge=1)
    change_concurrency: int = Field(default=10, ge=1)
    batch_interval: float = Field(default=1.0, gt=0, description="Watch debounce, seconds")

    # --- Embeddings ---
    embedding_model: str = Field(default="all-MiniLM-L6-v2")
    embedding_rate: float = Field(default=5.0, gt=0, description="Requests per second")
    embedding_burst: int = Field(default=5, ge=1)

    log_level: str = Field(default="INFO")

    @model_validator(mode="after")
    def _check_weights(self) -> "GraphKGSettings":
        if self.filter_weight + self.semantic_weight <= 0:
            raise ValueError("filter_weight + semantic_weight must be positive")
        return self
