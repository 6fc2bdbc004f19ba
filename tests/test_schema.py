"""
test_schema.py

Tests for SchemaIntrospector: label / relationship discovery, type
inference and vector-index metadata.
"""

from __future__ import annotations

import datetime as dt
from unittest.mock import MagicMock

from graph_kg.config import VectorIndexDescriptor
from graph_kg.schema import SchemaIntrospector, infer_type, merge_types

DESC = VectorIndexDescriptor(
    name="scopeEmbeddings", label="Scope", field="embedding_signature", source_field="signature", dimension=384
)
SOURCE_DESC = VectorIndexDescriptor(
    name="scopeSourceEmbeddings", label="Scope", field="embedding_source", source_field="source", dimension=384
)

INDEX_ROWS = [
    {
        "name": "scope_uuid",
        "type": "RANGE",
        "entityType": "NODE",
        "labelsOrTypes": ["Scope"],
        "properties": ["uuid"],
        "state": "ONLINE",
        "options": {},
    },
    {
        "name": "scopeEmbeddings",
        "type": "VECTOR",
        "entityType": "NODE",
        "labelsOrTypes": ["Scope"],
        "properties": ["embedding_signature"],
        "state": "ONLINE",
        "options": {"indexConfig": {"vector.dimensions": 384, "vector.similarity_function": "COSINE"}},
    },
    {
        "name": "legacyEmbeddings",
        "type": "VECTOR",
        "entityType": "NODE",
        "labelsOrTypes": ["File"],
        "properties": ["embedding"],
        "state": "ONLINE",
        "options": {},
    },
]


def _fake_run(query, params=None, *, database=None):
    if query.startswith("CALL db.labels()"):
        return [{"label": "File"}, {"label": "Scope"}]
    if query.startswith("CALL db.relationshipTypes()"):
        return [{"relationshipType": "DEFINED_IN"}]
    if "RETURN count(n) AS count" in query:
        return [{"count": 2 if "`File`" in query else 3}]
    if "RETURN properties(n) AS props" in query:
        if "`File`" in query:
            return [{"props": {"path": "a.py", "lineCount": 3}}, {"props": {"path": "b.py", "lineCount": 5}}]
        return [
            {"props": {"name": "f", "startLine": 1, "docstring": None, "embedding_signature": [0.1, 0.2]}},
            {"props": {"name": "g", "startLine": 9, "async": True}},
        ]
    if "properties(r) AS props" in query:
        return [{"source": ["Scope"], "target": ["File"], "props": {}}]
    if query.startswith("SHOW INDEXES"):
        return INDEX_ROWS
    if query.startswith("SHOW CONSTRAINTS"):
        return [{"name": "Scope_uuid_unique", "type": "UNIQUENESS", "labelsOrTypes": ["Scope"], "properties": ["uuid"]}]
    return []


def _introspect(descriptors=(DESC, SOURCE_DESC), database=None):
    client = MagicMock()
    client.run.side_effect = _fake_run
    return client, SchemaIntrospector(client, descriptors).introspect(database, sample_size=10)


# ---------------------------------------------------------------------------
# Type inference
# ---------------------------------------------------------------------------


def test_infer_type():
    assert infer_type(True) == "boolean"
    assert infer_type(3) == "number"
    assert infer_type(2.5) == "number"
    assert infer_type("x") == "string"
    assert infer_type(dt.datetime(2024, 1, 1)) == "datetime"
    assert infer_type(dt.date(2024, 1, 1)) == "date"
    assert infer_type([1.0, 2.0]) == "array<number>"
    assert infer_type(["a", 1]) == "array"
    assert infer_type(None) == "null"


def test_merge_types():
    assert merge_types(["string", "null", "string", "number"]) == "string"
    assert merge_types(["null"]) == "unknown"


# ---------------------------------------------------------------------------
# Introspection
# ---------------------------------------------------------------------------


def test_nodes_and_properties():
    _, schema = _introspect()
    assert [n.label for n in schema.nodes] == ["File", "Scope"]
    scope = schema.node("Scope")
    assert scope.count == 3
    assert scope.property("startLine").type == "number"
    assert scope.property("async").type == "boolean"
    assert scope.property("docstring").type == "unknown"
    assert scope.property("embedding_signature").type == "array<number>"
    assert all(p.nullable for p in scope.properties)
    assert schema.node("File").property("lineCount").type == "number"


def test_relationships():
    _, schema = _introspect()
    (rel,) = schema.relationships
    assert rel.type == "DEFINED_IN"
    assert rel.source_labels == ["Scope"]
    assert rel.target_labels == ["File"]


def test_indexes_and_constraints():
    _, schema = _introspect()
    assert [i.name for i in schema.indexes] == ["scope_uuid", "scopeEmbeddings", "legacyEmbeddings"]
    assert schema.constraints[0].properties == ["uuid"]


def test_vector_index_from_store_options():
    _, schema = _introspect()
    v = schema.vector_index("scopeEmbeddings")
    assert v.origin == "store"
    assert v.dimension == 384
    assert v.similarity == "cosine"
    assert v.label == "Scope"
    assert v.source_field == "signature"


def test_vector_index_without_options_or_descriptor():
    _, schema = _introspect()
    v = schema.vector_index("legacyEmbeddings")
    assert v.origin == "store"
    assert v.dimension is None
    assert v.label == "File"


def test_configured_but_missing_vector_index():
    _, schema = _introspect()
    v = schema.vector_index("scopeSourceEmbeddings")
    assert v.origin == "config"
    assert v.property == "embedding_source"
    assert v.dimension == 384


def test_vector_index_falls_back_to_descriptor():
    legacy = VectorIndexDescriptor(
        name="legacyEmbeddings", label="File", field="embedding", source_field="path", dimension=64, similarity="euclidean"
    )
    _, schema = _introspect(descriptors=(legacy,))
    v = schema.vector_index("legacyEmbeddings")
    assert v.origin == "config"
    assert v.dimension == 64
    assert v.similarity == "euclidean"


def test_database_and_sample_size_passed_through():
    client, _ = _introspect(database="code")
    assert all(c.kwargs["database"] == "code" for c in client.run.call_args_list)
    sample_calls = [c for c in client.run.call_args_list if "LIMIT $limit" in c.args[0]]
    assert sample_calls and all(c.args[1] == {"limit": 10} for c in sample_calls)


def test_to_dict():
    _, schema = _introspect()
    d = schema.to_dict()
    assert d["nodes"][0]["label"] == "File"
    assert {v["name"] for v in d["vector_indexes"]} == {"scopeEmbeddings", "legacyEmbeddings", "scopeSourceEmbeddings"}
