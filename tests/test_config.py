"""
test_config.py

Tests for the ingestion config models, YAML loading and environment settings.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from graph_kg.config import (
    EntityConfig,
    IngestionConfig,
    VectorIndexDescriptor,
    default_code_config,
    load_ingestion_config,
)
from graph_kg.settings import GraphKGSettings

YAML = """\
name: docs
project_id: handbook
entities:
  - name: Page
    searchable_fields:
      - name: title
        indexed: true
      - name: words
        type: number
    relationships:
      - type: LINKS_TO
        target: Page
        enrich: true
    vector_indexes:
      - name: pageEmbeddings
        field: embedding
        source_field: body
        dimension: 8
"""


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


def test_default_code_config_labels():
    cfg = default_code_config()
    assert cfg.labels == ["Scope", "File"]
    assert {d.name for d in cfg.vector_indexes} == {"scopeEmbeddings", "scopeSourceEmbeddings"}


def test_nested_descriptor_binds_label():
    cfg = default_code_config(dimension=16)
    d = cfg.vector_index("scopeEmbeddings")
    assert d.label == "Scope"
    assert d.dimension == 16
    assert d.source_field == "signature"
    assert cfg.vector_indexes_for("File") == []


def test_descriptor_label_mismatch_rejected():
    with pytest.raises(ValidationError):
        EntityConfig(
            name="Scope",
            vector_indexes=[
                VectorIndexDescriptor(name="x", label="File", field="e", source_field="s", dimension=4)
            ],
        )


def test_descriptor_dimension_bounds():
    with pytest.raises(ValidationError):
        VectorIndexDescriptor(name="x", field="e", source_field="s", dimension=0)


def test_duplicate_index_names_rejected():
    d = {"name": "dup", "field": "e", "source_field": "s", "dimension": 4}
    with pytest.raises(ValidationError):
        IngestionConfig(
            entities=[
                {"name": "A", "vector_indexes": [d]},
                {"name": "B", "vector_indexes": [d]},
            ]
        )


def test_relationship_result_field():
    cfg = default_code_config()
    rel = next(r for r in cfg.entity("Scope").relationships if r.type == "CONSUMES")
    assert rel.enrich
    assert rel.result_field == "consumes"


def test_entity_lookup_missing():
    assert default_code_config().entity("Nope") is None


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------


def test_load_ingestion_config(tmp_path):
    path = tmp_path / "kg.yaml"
    path.write_text(YAML)
    cfg = load_ingestion_config(path)
    assert cfg.project_id == "handbook"
    assert cfg.labels == ["Page"]
    page = cfg.entity("Page")
    assert page.searchable_fields[1].type == "number"
    assert cfg.vector_index("pageEmbeddings").label == "Page"
    (rel,) = page.relationships
    assert rel.enrich
    assert rel.result_field == "links_to"


def test_load_missing_config(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_ingestion_config(tmp_path / "nope.yaml")


def test_load_non_mapping_config(tmp_path):
    path = tmp_path / "kg.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_ingestion_config(path)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def test_settings_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for var in ("NEO4J_URI", "NEO4J_USERNAME", "NEO4J_PASSWORD", "NEO4J_DATABASE", "GRAPH_KG_FILTER_WEIGHT"):
        monkeypatch.delenv(var, raising=False)
    s = GraphKGSettings()
    assert s.neo4j_uri == "bolt://localhost:7687"
    assert s.filter_weight == pytest.approx(0.3)
    assert s.semantic_weight == pytest.approx(0.7)
    assert s.relationship_batch_size == 500
    assert s.change_concurrency == 10
    assert s.batch_interval == pytest.approx(1.0)


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NEO4J_URI", "neo4j://db:7687")
    monkeypatch.setenv("NEO4J_DATABASE", "code")
    monkeypatch.setenv("GRAPH_KG_MAX_CANDIDATES", "50")
    s = GraphKGSettings()
    assert s.neo4j_uri == "neo4j://db:7687"
    assert s.neo4j_database == "code"
    assert s.max_candidates == 50


def test_settings_from_dotenv(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("NEO4J_USERNAME", raising=False)
    (tmp_path / ".env").write_text("NEO4J_USERNAME=reader\nGRAPH_KG_EXPAND_CONCURRENCY=2\n")
    s = GraphKGSettings()
    assert s.neo4j_username == "reader"
    assert s.expand_concurrency == 2


def test_settings_reject_zero_weights(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ValidationError):
        GraphKGSettings(filter_weight=0.0, semantic_weight=0.0)
