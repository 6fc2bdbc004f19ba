"""Declarative ingestion configuration (entities, relationships, vector indexes)."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

import yaml
from pydantic import BaseModel, Field, model_validator

FieldType = Literal[
    "string",
    "number",
    "boolean",
    "datetime",
    "enum",
    "array<string>",
    "array<number>",
]
Direction = Literal["outgoing", "incoming", "both"]
Similarity = Literal["cosine", "euclidean", "dot"]


class FieldConfig(BaseModel):
    """A searchable scalar property of an entity."""

    name: str
    type: FieldType = "string"
    indexed: bool = False
    description: str | None = None
    values: list[str] | None = None


class RelationshipConfig(BaseModel):
    """A relationship an entity takes part in."""

    type: str
    direction: Direction = "outgoing"
    target: str
    description: str | None = None
    enrich: bool = False
    enrich_field: str | None = None

    @property
    def result_field(self) -> str:
        return self.enrich_field or self.type.lower()


class VectorIndexDescriptor(BaseModel):
    """
    Binds a label's embedding property to the text property it is computed from.

    ``label`` may be omitted when the descriptor is nested under an entity.
    """

    name: str
    label: str = ""
    field: str
    source_field: str
    dimension: Annotated[int, Field(ge=1, le=4096)]
    similarity: Similarity = "cosine"
    provider: str = "sentence-transformers"
    model: str | None = None


class EntityConfig(BaseModel):
    """Per-label configuration."""

    name: str
    description: str | None = None
    unique_field: str = "uuid"
    display_name_field: str = "name"
    searchable_fields: list[FieldConfig] = Field(default_factory=list)
    relationships: list[RelationshipConfig] = Field(default_factory=list)
    vector_indexes: list[VectorIndexDescriptor] = Field(default_factory=list)

    @model_validator(mode="after")
    def _bind_vector_labels(self) -> "EntityConfig":
        for descriptor in self.vector_indexes:
            if not descriptor.label:
                descriptor.label = self.name
            elif descriptor.label != self.name:
                raise ValueError(
                    f"vector index {descriptor.name!r} targets {descriptor.label!r} "
                    f"but is declared under entity {self.name!r}"
                )
        return self


class IngestionConfig(BaseModel):
    """Root configuration consumed by the pipeline, engine and introspector."""

    name: str = "graph-kg"
    project_id: str | None = None
    entities: list[EntityConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_index_names(self) -> "IngestionConfig":
        seen: set[str] = set()
        for descriptor in self.vector_indexes:
            if descriptor.name in seen:
                raise ValueError(f"duplicate vector index name {descriptor.name!r}")
            seen.add(descriptor.name)
        return self

    @property
    def labels(self) -> list[str]:
        return [e.name for e in self.entities]

    @property
    def vector_indexes(self) -> list[VectorIndexDescriptor]:
        return [d for e in self.entities for d in e.vector_indexes]

    def entity(self, label: str) -> EntityConfig | None:
        for e in self.entities:
            if e.name == label:
                return e
        return None

    def vector_index(self, name: str) -> VectorIndexDescriptor | None:
        for d in self.vector_indexes:
            if d.name == name:
                return d
        return None

    def vector_indexes_for(self, label: str) -> list[VectorIndexDescriptor]:
        return [d for d in self.vector_indexes if d.label == label]


def load_ingestion_config(path: str | Path) -> IngestionConfig:
    """
    Load and validate an ingestion config from YAML.

    :param path: Path to the YAML file.
    :raises FileNotFoundError: if the file does not exist.
    :raises ValueError: if the YAML root is not a mapping.
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Ingestion config not found: {file_path}")

    data = yaml.safe_load(file_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Ingestion config root must be a mapping")

    return IngestionConfig.model_validate(data)


def default_code_config(*, dimension: int = 384, model: str = "all-MiniLM-L6-v2") -> IngestionConfig:
    """Configuration matching the labels emitted by :class:`~graph_kg.parser.PythonSourceParser`."""
    return IngestionConfig(
        name="code",
        entities=[
            EntityConfig(
                name="Scope",
                description="Function, class or method",
                searchable_fields=[
                    FieldConfig(name="name", indexed=True),
                    FieldConfig(name="type", type="enum", values=["function", "class", "method"]),
                    FieldConfig(name="file", indexed=True),
                    FieldConfig(name="signature"),
                    FieldConfig(name="source"),
                    FieldConfig(name="startLine", type="number"),
                    FieldConfig(name="endLine", type="number"),
                ],
                relationships=[
                    RelationshipConfig(type="DEFINED_IN", target="File"),
                    RelationshipConfig(type="CONSUMES", target="Scope", enrich=True),
                    RelationshipConfig(type="HAS_PARENT", target="Scope"),
                    RelationshipConfig(type="INHERITS_FROM", target="Scope"),
                ],
                vector_indexes=[
                    VectorIndexDescriptor(
                        name="scopeEmbeddings",
                        field="embedding_signature",
                        source_field="signature",
                        dimension=dimension,
                        model=model,
                    ),
                    VectorIndexDescriptor(
                        name="scopeSourceEmbeddings",
                        field="embedding_source",
                        source_field="source",
                        dimension=dimension,
                        model=model,
                    ),
                ],
            ),
            EntityConfig(
                name="File",
                display_name_field="path",
                searchable_fields=[
                    FieldConfig(name="path", indexed=True),
                    FieldConfig(name="name"),
                    FieldConfig(name="extension"),
                ],
            ),
        ],
    )
