#!/usr/bin/env python3
"""
model.py

Graph primitives shared by the parser, the ingestion pipeline and the
change tracker.

Identity is content-addressed:
    project id + identity key -> uuid          (stable across runs)
    full content              -> contentHash   (changes on any edit)

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

# ============================================================================
# Identity helpers
# ============================================================================


def deterministic_uuid(identity_key: str) -> str:
    """
    Derive a stable UUID-formatted id from an identity key.

    The id is the first 32 hex digits of the SHA-256 of *identity_key*,
    upper-cased and grouped 8-4-4-4-12.

    :param identity_key: String built from stable attributes only.
    :return: e.g. ``"9F86D081-884C-7D65-9A2F-EAA0C55AD015"``
    """
    h = hashlib.sha256(identity_key.encode("utf-8")).hexdigest()[:32].upper()
    return f"{h[0:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"


def content_hash(content: str) -> str:
    """
    Hex SHA-256 of the full content.

    :param content: Complete entity text (body included, not just signature).
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def identity_key(*parts: object) -> str:
    """Join identity attributes in a fixed order."""
    return ":".join("" if p is None else str(p) for p in parts)


def utc_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


# ============================================================================
# Parsed graph
# ============================================================================


@dataclass(frozen=True)
class ParsedNode:
    """
    A node as produced by a :class:`~graph_kg.parser.SourceParser`.

    :param labels: Node labels; the first one is the primary label.
    :param identity: Identity key (see :func:`identity_key`).
    :param content: Full content hashed for change detection.
    :param properties: Scalar properties written to the node.
    """

    labels: tuple[str, ...]
    identity: str
    content: str
    properties: Mapping[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.labels[0]

    @property
    def uuid(self) -> str:
        return deterministic_uuid(self.identity)

    def scoped_uuid(self, project_id: str | None) -> str:
        """
        uuid of this node inside *project_id*.

        The same relative path ingested under two projects yields two
        distinct nodes. Without a project the unscoped :attr:`uuid` is used.
        """
        if project_id is None:
            return self.uuid
        return deterministic_uuid(identity_key(project_id, self.identity))

    @property
    def content_hash(self) -> str:
        return content_hash(self.content)


@dataclass(frozen=True)
class ParsedRelationship:
    """
    A relationship between two parsed nodes, referenced by identity key.

    :param type: Relationship type, e.g. ``DEFINED_IN``.
    :param source: Identity key of the source node.
    :param target: Identity key of the target node.
    :param properties: Optional scalar properties.
    """

    type: str
    source: str
    target: str
    properties: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class ParsedGraph:
    """Output of one parser pass: the complete current entity set."""

    nodes: list[ParsedNode] = field(default_factory=list)
    relationships: list[ParsedRelationship] = field(default_factory=list)

    def __iter__(self):
        # allows ``nodes, rels = parser.parse(root)``
        yield self.nodes
        yield self.relationships


# ============================================================================
# Stored state and history
# ============================================================================


@dataclass(frozen=True)
class NodeState:
    """Last-known state of a stored node, used for diffing."""

    labels: tuple[str, ...]
    content_hash: str | None

    @property
    def label(self) -> str:
        return self.labels[0] if self.labels else ""


class ChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeRecord:
    """
    Immutable history entry for one detected entity change.

    :param entity_id: ``uuid`` of the changed entity.
    :param kind: created | updated | deleted
    :param previous_hash: Hash before the change (``None`` when created).
    :param new_hash: Hash after the change (``None`` when deleted).
    :param timestamp: ISO-8601 UTC timestamp.
    :param label: Primary label of the entity.
    :param project_id: Ingestion root scope (if any).
    :param run_id: Id of the ingestion run that detected the change.
    """

    entity_id: str
    kind: ChangeKind
    previous_hash: str | None
    new_hash: str | None
    timestamp: str = field(default_factory=utc_now)
    label: str | None = None
    project_id: str | None = None
    run_id: str | None = None

    @property
    def change_id(self) -> str:
        """Deterministic id; retrying the same record never duplicates it."""
        return deterministic_uuid(
            identity_key(
                self.entity_id,
                self.kind.value,
                self.previous_hash,
                self.new_hash,
                self.run_id,
            )
        )

    def to_dict(self) -> dict:
        return {
            "changeId": self.change_id,
            "entityId": self.entity_id,
            "kind": self.kind.value,
            "previousHash": self.previous_hash,
            "newHash": self.new_hash,
            "timestamp": self.timestamp,
            "label": self.label,
            "projectId": self.project_id,
            "runId": self.run_id,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ChangeRecord":
        return cls(
            entity_id=d["entityId"],
            kind=ChangeKind(d["kind"]),
            previous_hash=d.get("previousHash"),
            new_hash=d.get("newHash"),
            timestamp=str(d.get("timestamp")),
            label=d.get("label"),
            project_id=d.get("projectId"),
            run_id=d.get("runId"),
        )
