#!/usr/bin/env python3
"""
store.py

GraphStoreClient — Neo4j access layer for graph-kg.

The graph database is the authoritative, canonical store. Every operation
opens its own session and releases it on every exit path; sessions are
never shared between logically distinct operations. Connectivity errors
propagate unmodified.

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from loguru import logger
from neo4j import Driver, GraphDatabase, ManagedTransaction
from neo4j.exceptions import ServiceUnavailable

from graph_kg.config import VectorIndexDescriptor
from graph_kg.errors import QueryValidationError
from graph_kg.model import NodeState
from graph_kg.settings import GraphKGSettings

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Neo4j vector indexes only know cosine and euclidean; dot products over
# normalized embeddings rank like cosine.
_SIMILARITY_FUNCTIONS = {"cosine": "cosine", "euclidean": "euclidean", "dot": "cosine"}


def quote_identifier(name: str) -> str:
    """
    Validate and back-quote a label, relationship type or property name.

    Identifiers cannot be Cypher parameters, so they are checked against a
    conservative pattern before being inlined.

    :param name: Identifier to quote.
    :raises QueryValidationError: if *name* is not a plain identifier.
    """
    if not isinstance(name, str) or not _IDENT_RE.match(name):
        raise QueryValidationError(f"invalid identifier: {name!r}")
    return f"`{name}`"


def label_expr(labels: Iterable[str]) -> str:
    """``["Scope", "Code"]`` -> ``:`Scope`:`Code```."""
    parts = [quote_identifier(lbl) for lbl in labels]
    if not parts:
        raise QueryValidationError("at least one label is required")
    return ":" + ":".join(parts)


# ---------------------------------------------------------------------------
# Query plans
# ---------------------------------------------------------------------------


@dataclass
class QueryPlan:
    """
    Summary of an ``EXPLAIN`` plan.

    :param estimated_rows: Planner estimate at the root operator.
    :param indexes_used: Details of every index-backed operator.
    :param steps: Operator types in pre-order.
    """

    estimated_rows: float | None = None
    indexes_used: list[str] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)

    @classmethod
    def from_plan(cls, plan: Mapping[str, Any] | None) -> "QueryPlan":
        out = cls()
        if not plan:
            return out

        args = plan.get("args") or plan.get("arguments") or {}
        out.estimated_rows = args.get("EstimatedRows")

        stack = [plan]
        while stack:
            op = stack.pop()
            op_type = str(op.get("operatorType", "")).split("@")[0]
            out.steps.append(op_type)
            if "Index" in op_type:
                op_args = op.get("args") or op.get("arguments") or {}
                out.indexes_used.append(str(op_args.get("Details", op_type)))
            stack.extend(reversed(op.get("children") or []))
        return out

    def to_dict(self) -> dict:
        return {
            "estimated_rows": self.estimated_rows,
            "indexes_used": list(self.indexes_used),
            "steps": list(self.steps),
        }


# ---------------------------------------------------------------------------
# GraphStoreClient
# ---------------------------------------------------------------------------


class GraphStoreClient:
    """
    Neo4j-backed client for the knowledge graph.

    Owns the driver (connection pool) and exposes query, transaction,
    vector and full-text primitives plus the batched writes used by the
    ingestion pipeline.

    Example::

        with GraphStoreClient.from_settings() as client:
            client.verify_connectivity()
            rows = client.run("MATCH (n:Scope) RETURN n.name AS name LIMIT 5")

    :param uri: Bolt / neo4j URI.
    :param username: Database user.
    :param password: Database password.
    :param database: Optional named database (``None`` = server default).
    :param max_connection_pool_size: Driver pool size.
    :param connection_timeout: Seconds to wait when opening a connection.
    :param driver: Pre-built driver (tests); skips lazy construction.
    """

    def __init__(
        self,
        uri: str,
        username: str,
        password: str,
        *,
        database: str | None = None,
        max_connection_pool_size: int = 50,
        connection_timeout: float = 30.0,
        driver: Driver | None = None,
    ) -> None:
        self.uri = uri
        self.username = username
        self.database = database
        self.max_connection_pool_size = max_connection_pool_size
        self.connection_timeout = connection_timeout
        self._password = password
        self._driver: Driver | None = driver

    @classmethod
    def from_settings(cls, settings: GraphKGSettings | None = None) -> "GraphStoreClient":
        """Build a client from ``NEO4J_*`` / ``GRAPH_KG_*`` environment settings."""
        s = settings or GraphKGSettings()
        return cls(
            s.neo4j_uri,
            s.neo4j_username,
            s.neo4j_password,
            database=s.neo4j_database,
            max_connection_pool_size=s.max_connection_pool_size,
            connection_timeout=s.connection_timeout,
        )

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @property
    def driver(self) -> Driver:
        """Lazy Neo4j driver (created on first access)."""
        if self._driver is None:
            self._driver = GraphDatabase.driver(
                self.uri,
                auth=(self.username, self._password),
                max_connection_pool_size=self.max_connection_pool_size,
                connection_timeout=self.connection_timeout,
            )
        return self._driver

    def verify_connectivity(self) -> bool:
        """
        Check that the server is reachable.

        :return: ``True`` if reachable, ``False`` if the service is unavailable.
        :raises neo4j.exceptions.AuthError: on bad credentials.
        """
        try:
            self.driver.verify_connectivity()
        except ServiceUnavailable as exc:
            logger.warning("graph store unreachable at {}: {}", self.uri, exc)
            return False
        return True

    def close(self) -> None:
        """Close the driver and its pool."""
        if self._driver is not None:
            self._driver.close()
            self._driver = None

    def __enter__(self) -> "GraphStoreClient":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Core primitives
    # ------------------------------------------------------------------

    def run(
        self,
        query: str,
        params: Mapping[str, Any] | None = None,
        *,
        database: str | None = None,
    ) -> list[dict]:
        """
        Run a single auto-commit query and return its records as dicts.

        :param query: Cypher text.
        :param params: Query parameters.
        :param database: Override the configured database.
        """
        with self.driver.session(database=database or self.database) as session:
            result = session.run(query, dict(params or {}))
            return [record.data() for record in result]

    def transaction(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run *fn(tx, ...)* in a managed write transaction.

        The driver retries *fn* on transient errors, so it must be idempotent.
        """
        with self.driver.session(database=self.database) as session:
            return session.execute_write(fn, *args, **kwargs)

    def read_only_transaction(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run *fn(tx, ...)* in a managed read transaction."""
        with self.driver.session(database=self.database) as session:
            return session.execute_read(fn, *args, **kwargs)

    def vector_query(
        self,
        index_name: str,
        embedding: Sequence[float],
        top_k: int,
        *,
        min_score: float = 0.0,
    ) -> list[tuple[dict, list[str], float]]:
        """
        Nearest-neighbour lookup against a named vector index.

        :param index_name: Vector index name.
        :param embedding: Query vector (must match the index dimension).
        :param top_k: Number of neighbours requested from the index.
        :param min_score: Rows scoring below this are dropped.
        :return: ``[(node_properties, labels, score)]``, best first.
        """

        def _tx(tx: ManagedTransaction) -> list[dict]:
            result = tx.run(
                """
                CALL db.index.vector.queryNodes($indexName, $topK, $embedding)
                YIELD node, score
                WHERE score >= $minScore
                RETURN node {.*} AS node, labels(node) AS labels, score
                ORDER BY score DESC
                """,
                indexName=index_name,
                topK=int(top_k),
                embedding=[float(x) for x in embedding],
                minScore=float(min_score),
            )
            return result.data()

        rows = self.read_only_transaction(_tx)
        return [(r["node"], list(r["labels"]), float(r["score"])) for r in rows]

    def fulltext_query(self, index_name: str, text: str, limit: int = 10) -> list[tuple[dict, list[str], float]]:
        """
        Lucene full-text lookup against a named full-text index.

        :return: ``[(node_properties, labels, score)]``, best first.
        """
        rows = self.run(
            """
            CALL db.index.fulltext.queryNodes($indexName, $text)
            YIELD node, score
            RETURN node {.*} AS node, labels(node) AS labels, score
            ORDER BY score DESC
            LIMIT $limit
            """,
            {"indexName": index_name, "text": text, "limit": int(limit)},
        )
        return [(r["node"], list(r["labels"]), float(r["score"])) for r in rows]

    def explain(self, query: str, params: Mapping[str, Any] | None = None) -> QueryPlan:
        """
        Ask the planner for the plan of *query* without executing it.

        :return: :class:`QueryPlan` summary.
        """
        with self.driver.session(database=self.database) as session:
            summary = session.run("EXPLAIN " + query, dict(params or {})).consume()
            return QueryPlan.from_plan(summary.plan)

    # ------------------------------------------------------------------
    # Schema bootstrap
    # ------------------------------------------------------------------

    def ensure_unique_constraint(self, label: str, field_name: str = "uuid") -> None:
        """Create a uniqueness constraint on ``label.field_name`` if absent."""
        name = quote_identifier(f"{label}_{field_name}_unique")
        self.run(
            f"CREATE CONSTRAINT {name} IF NOT EXISTS "
            f"FOR (n:{quote_identifier(label)}) REQUIRE n.{quote_identifier(field_name)} IS UNIQUE"
        )

    def ensure_vector_index(self, descriptor: VectorIndexDescriptor) -> None:
        """Create the vector index described by *descriptor* if absent."""
        similarity = _SIMILARITY_FUNCTIONS[descriptor.similarity]
        self.run(
            f"CREATE VECTOR INDEX {quote_identifier(descriptor.name)} IF NOT EXISTS "
            f"FOR (n:{quote_identifier(descriptor.label)}) ON (n.{quote_identifier(descriptor.field)}) "
            "OPTIONS {indexConfig: {"
            f"`vector.dimensions`: {int(descriptor.dimension)}, "
            f"`vector.similarity_function`: '{similarity}'"
            "}}"
        )
        logger.debug("vector index {} ensured on {}.{}", descriptor.name, descriptor.label, descriptor.field)

    # ------------------------------------------------------------------
    # Ingestion reads
    # ------------------------------------------------------------------

    def content_hashes(self, labels: Iterable[str], project_id: str | None = None) -> dict[str, NodeState]:
        """
        Snapshot ``uuid -> NodeState`` for every stored node of *labels*.

        :param labels: Labels to scan.
        :param project_id: Restrict to nodes of one ingestion root.
        """

        def _tx(tx: ManagedTransaction, label: str) -> list[dict]:
            result = tx.run(
                f"""
                MATCH (n:{quote_identifier(label)})
                WHERE n.uuid IS NOT NULL
                  AND ($projectId IS NULL OR n.projectId = $projectId)
                RETURN n.uuid AS uuid, labels(n) AS labels, n.contentHash AS hash
                """,
                projectId=project_id,
            )
            return result.data()

        snapshot: dict[str, NodeState] = {}
        for label in labels:
            for row in self.read_only_transaction(_tx, label):
                snapshot[row["uuid"]] = NodeState(tuple(row["labels"]), row["hash"])
        return snapshot

    def node_texts(self, label: str, field_name: str, uuids: Sequence[str]) -> dict[str, str | None]:
        """Return ``uuid -> node[field_name]`` for the given nodes."""
        rows = self.run(
            f"""
            MATCH (n:{quote_identifier(label)})
            WHERE n.uuid IN $uuids
            RETURN n.uuid AS uuid, n.{quote_identifier(field_name)} AS text
            """,
            {"uuids": list(uuids)},
        )
        return {r["uuid"]: r["text"] for r in rows}

    # ------------------------------------------------------------------
    # Ingestion writes
    # ------------------------------------------------------------------

    def upsert_nodes(self, labels: Sequence[str], rows: Sequence[Mapping[str, Any]]) -> int:
        """
        Insert-or-update nodes keyed by ``uuid`` in one batched statement.

        :param labels: Labels of every row; the first is the merge label.
        :param rows: ``{"uuid": ..., "props": {...}}`` dicts.
        :return: Number of nodes written.
        """
        if not rows:
            return 0
        primary, *extra = labels
        extra_set = f"SET n{label_expr(extra)}" if extra else ""

        def _tx(tx: ManagedTransaction) -> int:
            record = tx.run(
                f"""
                UNWIND $rows AS row
                MERGE (n:{quote_identifier(primary)} {{uuid: row.uuid}})
                SET n += row.props
                {extra_set}
                RETURN count(n) AS n
                """,
                rows=[dict(r) for r in rows],
            ).single()
            return int(record["n"]) if record else 0

        return self.transaction(_tx)

    def upsert_relationships(
        self,
        rel_type: str,
        source_label: str,
        target_label: str,
        rows: Sequence[Mapping[str, Any]],
    ) -> int:
        """
        Merge relationships of one type between two labels.

        :param rows: ``{"source": uuid, "target": uuid, "props": {...}}`` dicts.
        :return: Number of relationships written.
        """
        if not rows:
            return 0

        def _tx(tx: ManagedTransaction) -> int:
            record = tx.run(
                f"""
                UNWIND $rows AS row
                MATCH (a:{quote_identifier(source_label)} {{uuid: row.source}})
                MATCH (b:{quote_identifier(target_label)} {{uuid: row.target}})
                MERGE (a)-[r:{quote_identifier(rel_type)}]->(b)
                SET r += row.props
                RETURN count(r) AS n
                """,
                rows=[dict(r) for r in rows],
            ).single()
            return int(record["n"]) if record else 0

        return self.transaction(_tx)

    def delete_nodes(self, label: str, uuids: Sequence[str]) -> int:
        """``DETACH DELETE`` nodes of *label* with the given uuids."""
        if not uuids:
            return 0

        def _tx(tx: ManagedTransaction) -> int:
            record = tx.run(
                f"""
                MATCH (n:{quote_identifier(label)})
                WHERE n.uuid IN $uuids
                DETACH DELETE n
                RETURN count(*) AS n
                """,
                uuids=list(uuids),
            ).single()
            return int(record["n"]) if record else 0

        return self.transaction(_tx)

    def prune_outgoing(
        self,
        label: str,
        uuids: Sequence[str],
        rel_types: Sequence[str] | None = None,
    ) -> int:
        """
        Delete outgoing relationships of the given nodes.

        :param rel_types: Only prune these types (``None`` = all types).
        """
        if not uuids:
            return 0
        type_filter = ""
        if rel_types:
            type_filter = "AND type(r) IN $types"
            for t in rel_types:
                quote_identifier(t)

        def _tx(tx: ManagedTransaction) -> int:
            record = tx.run(
                f"""
                MATCH (n:{quote_identifier(label)})-[r]->()
                WHERE n.uuid IN $uuids {type_filter}
                DELETE r
                RETURN count(r) AS n
                """,
                uuids=list(uuids),
                types=list(rel_types or []),
            ).single()
            return int(record["n"]) if record else 0

        return self.transaction(_tx)

    def set_properties(self, label: str, rows: Sequence[Mapping[str, Any]]) -> int:
        """
        Set properties on existing nodes (no create).

        :param rows: ``{"uuid": ..., "props": {...}}`` dicts.
        """
        if not rows:
            return 0

        def _tx(tx: ManagedTransaction) -> int:
            record = tx.run(
                f"""
                UNWIND $rows AS row
                MATCH (n:{quote_identifier(label)} {{uuid: row.uuid}})
                SET n += row.props
                RETURN count(n) AS n
                """,
                rows=[dict(r) for r in rows],
            ).single()
            return int(record["n"]) if record else 0

        return self.transaction(_tx)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> dict:
        """
        Return node counts by label and relationship counts by type.

        :return: dict with ``total_nodes``, ``total_relationships``,
                 ``node_counts``, ``relationship_counts``.
        """
        node_rows = self.run(
            "MATCH (n) UNWIND labels(n) AS label RETURN label, count(*) AS count ORDER BY label"
        )
        rel_rows = self.run(
            "MATCH ()-[r]->() RETURN type(r) AS type, count(*) AS count ORDER BY type"
        )
        total = self.run("MATCH (n) RETURN count(n) AS count")
        node_counts = {r["label"]: r["count"] for r in node_rows}
        rel_counts = {r["type"]: r["count"] for r in rel_rows}
        return {
            "uri": self.uri,
            "database": self.database,
            "total_nodes": total[0]["count"] if total else 0,
            "total_relationships": sum(rel_counts.values()),
            "node_counts": node_counts,
            "relationship_counts": rel_counts,
        }

    def __repr__(self) -> str:
        return f"GraphStoreClient(uri={self.uri!r}, database={self.database!r})"
