#!/usr/bin/env python3
"""
schema.py

SchemaIntrospector — discover labels, relationship types, indexes,
constraints and vector indexes of a live graph.

Property types are inferred from a bounded sample per label and are always
reported as nullable. Vector-index dimension / similarity are read from the
index options when the server exposes them, otherwise taken from the
configured descriptors.

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import datetime as dt
from collections import Counter
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from typing import Any

from loguru import logger
from neo4j.spatial import Point
from neo4j.time import Date, DateTime, Duration, Time

from graph_kg.config import VectorIndexDescriptor
from graph_kg.store import quote_identifier

DEFAULT_SAMPLE_SIZE = 100


def infer_type(value: Any) -> str:
    """Map a sampled property value to a schema type name."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, DateTime | dt.datetime):
        return "datetime"
    if isinstance(value, Date | dt.date):
        return "date"
    if isinstance(value, Time | dt.time):
        return "time"
    if isinstance(value, Duration | dt.timedelta):
        return "duration"
    if isinstance(value, Point):
        return "point"
    if isinstance(value, list | tuple):
        inner = {infer_type(v) for v in value} - {"null"}
        if len(inner) == 1:
            return f"array<{inner.pop()}>"
        return "array"
    return "unknown"


def merge_types(types: Iterable[str]) -> str:
    """Most common non-null type; ``unknown`` when nothing was observed."""
    counts = Counter(t for t in types if t != "null")
    if not counts:
        return "unknown"
    return counts.most_common(1)[0][0]


# ---------------------------------------------------------------------------
# Schema value types
# ---------------------------------------------------------------------------


@dataclass
class PropertySchema:
    name: str
    type: str
    nullable: bool = True


@dataclass
class NodeSchema:
    label: str
    count: int
    properties: list[PropertySchema] = field(default_factory=list)

    def property(self, name: str) -> PropertySchema | None:
        return next((p for p in self.properties if p.name == name), None)


@dataclass
class RelationshipSchema:
    type: str
    source_labels: list[str] = field(default_factory=list)
    target_labels: list[str] = field(default_factory=list)
    properties: list[PropertySchema] = field(default_factory=list)


@dataclass
class IndexSchema:
    name: str
    type: str
    entity_type: str | None
    labels: list[str]
    properties: list[str]
    state: str | None = None


@dataclass
class ConstraintSchema:
    name: str
    type: str
    labels: list[str]
    properties: list[str]


@dataclass
class VectorIndexSchema:
    """
    Vector index metadata.

    :param origin: ``store`` when read from the live index options,
        ``config`` when taken from a configured descriptor.
    """

    name: str
    label: str | None
    property: str | None
    dimension: int | None
    similarity: str | None
    origin: str
    source_field: str | None = None


@dataclass
class GraphSchema:
    nodes: list[NodeSchema] = field(default_factory=list)
    relationships: list[RelationshipSchema] = field(default_factory=list)
    indexes: list[IndexSchema] = field(default_factory=list)
    constraints: list[ConstraintSchema] = field(default_factory=list)
    vector_indexes: list[VectorIndexSchema] = field(default_factory=list)

    def node(self, label: str) -> NodeSchema | None:
        return next((n for n in self.nodes if n.label == label), None)

    def vector_index(self, name: str) -> VectorIndexSchema | None:
        return next((v for v in self.vector_indexes if v.name == name), None)

    def to_dict(self) -> dict:
        """Plain-data form consumed by code generators."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Introspector
# ---------------------------------------------------------------------------


class SchemaIntrospector:
    """
    Reads the live schema of the graph.

    :param client: :class:`~graph_kg.store.GraphStoreClient` (or compatible).
    :param descriptors: Configured vector indexes; used when the server does
        not report dimension or similarity.
    """

    def __init__(self, client: Any, descriptors: Iterable[VectorIndexDescriptor] = ()) -> None:
        self.client = client
        self.descriptors = {d.name: d for d in descriptors}

    def introspect(self, database: str | None = None, sample_size: int = DEFAULT_SAMPLE_SIZE) -> GraphSchema:
        """
        Build a :class:`GraphSchema`.

        :param database: Named database (``None`` = the client's default).
        :param sample_size: Nodes / relationships sampled per label / type.
        """
        schema = GraphSchema()
        schema.nodes = self._nodes(database, sample_size)
        schema.relationships = self._relationships(database, sample_size)
        schema.indexes = self._indexes(database)
        schema.constraints = self._constraints(database)
        schema.vector_indexes = self._vector_indexes(database)
        logger.info(
            "introspected {} label(s), {} relationship type(s), {} index(es)",
            len(schema.nodes),
            len(schema.relationships),
            len(schema.indexes),
        )
        return schema

    # ------------------------------------------------------------------

    def _run(self, query: str, params: dict | None, database: str | None) -> list[dict]:
        return self.client.run(query, params or {}, database=database)

    def _nodes(self, database: str | None, sample_size: int) -> list[NodeSchema]:
        labels = [r["label"] for r in self._run("CALL db.labels() YIELD label RETURN label ORDER BY label", None, database)]
        out = []
        for label in labels:
            q = quote_identifier(label)
            count_rows = self._run(f"MATCH (n:{q}) RETURN count(n) AS count", None, database)
            samples = self._run(
                f"MATCH (n:{q}) WITH n LIMIT $limit RETURN properties(n) AS props",
                {"limit": int(sample_size)},
                database,
            )
            out.append(
                NodeSchema(
                    label=label,
                    count=int(count_rows[0]["count"]) if count_rows else 0,
                    properties=_properties(r["props"] for r in samples),
                )
            )
        return out

    def _relationships(self, database: str | None, sample_size: int) -> list[RelationshipSchema]:
        types = [
            r["relationshipType"]
            for r in self._run(
                "CALL db.relationshipTypes() YIELD relationshipType RETURN relationshipType ORDER BY relationshipType",
                None,
                database,
            )
        ]
        out = []
        for rel_type in types:
            samples = self._run(
                f"MATCH (a)-[r:{quote_identifier(rel_type)}]->(b) WITH a, r, b LIMIT $limit "
                "RETURN labels(a) AS source, labels(b) AS target, properties(r) AS props",
                {"limit": int(sample_size)},
                database,
            )
            out.append(
                RelationshipSchema(
                    type=rel_type,
                    source_labels=sorted({lbl for r in samples for lbl in r["source"]}),
                    target_labels=sorted({lbl for r in samples for lbl in r["target"]}),
                    properties=_properties(r["props"] for r in samples),
                )
            )
        return out

    def _index_rows(self, database: str | None) -> list[dict]:
        return self._run(
            "SHOW INDEXES YIELD name, type, entityType, labelsOrTypes, properties, state, options",
            None,
            database,
        )

    def _indexes(self, database: str | None) -> list[IndexSchema]:
        return [
            IndexSchema(
                name=r["name"],
                type=r["type"],
                entity_type=r.get("entityType"),
                labels=list(r.get("labelsOrTypes") or []),
                properties=list(r.get("properties") or []),
                state=r.get("state"),
            )
            for r in self._index_rows(database)
        ]

    def _constraints(self, database: str | None) -> list[ConstraintSchema]:
        rows = self._run("SHOW CONSTRAINTS YIELD name, type, labelsOrTypes, properties", None, database)
        return [
            ConstraintSchema(
                name=r["name"],
                type=r["type"],
                labels=list(r.get("labelsOrTypes") or []),
                properties=list(r.get("properties") or []),
            )
            for r in rows
        ]

    def _vector_indexes(self, database: str | None) -> list[VectorIndexSchema]:
        out: list[VectorIndexSchema] = []
        seen: set[str] = set()

        for r in self._index_rows(database):
            if str(r.get("type", "")).upper() != "VECTOR":
                continue
            name = r["name"]
            seen.add(name)
            labels = list(r.get("labelsOrTypes") or [])
            props = list(r.get("properties") or [])
            config = ((r.get("options") or {}).get("indexConfig")) or {}
            descriptor = self.descriptors.get(name)

            dimension = config.get("vector.dimensions")
            similarity = config.get("vector.similarity_function")
            origin = "store"
            if dimension is None or similarity is None:
                if descriptor is not None:
                    dimension = dimension if dimension is not None else descriptor.dimension
                    similarity = similarity or descriptor.similarity
                    origin = "config"
                else:
                    logger.debug("vector index {} exposes no dimension/similarity", name)

            out.append(
                VectorIndexSchema(
                    name=name,
                    label=labels[0] if labels else (descriptor.label if descriptor else None),
                    property=props[0] if props else (descriptor.field if descriptor else None),
                    dimension=int(dimension) if dimension is not None else None,
                    similarity=str(similarity).lower() if similarity else None,
                    origin=origin,
                    source_field=descriptor.source_field if descriptor else None,
                )
            )

        for name, d in sorted(self.descriptors.items()):
            if name in seen:
                continue
            out.append(
                VectorIndexSchema(
                    name=name,
                    label=d.label,
                    property=d.field,
                    dimension=d.dimension,
                    similarity=d.similarity,
                    origin="config",
                    source_field=d.source_field,
                )
            )
        return out


def _properties(samples: Iterable[dict]) -> list[PropertySchema]:
    observed: dict[str, list[str]] = {}
    for props in samples:
        for key, value in (props or {}).items():
            observed.setdefault(key, []).append(infer_type(value))
    return [PropertySchema(name=k, type=merge_types(v)) for k, v in sorted(observed.items())]
