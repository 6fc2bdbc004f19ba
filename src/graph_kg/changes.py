#!/usr/bin/env python3
"""
changes.py

ChangeTracker — append-only per-entity change history.

Each record is stored as a ``:ChangeRecord`` node merged on a deterministic
``changeId``, so writing the same record twice leaves one node.

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from loguru import logger
from neo4j import ManagedTransaction

from graph_kg.model import ChangeKind, ChangeRecord

_RECORD_CYPHER = """
MERGE (c:ChangeRecord {changeId: $rec.changeId})
ON CREATE SET
  c.entityId     = $rec.entityId,
  c.kind         = $rec.kind,
  c.previousHash = $rec.previousHash,
  c.newHash      = $rec.newHash,
  c.timestamp    = $rec.timestamp,
  c.label        = $rec.label,
  c.projectId    = $rec.projectId,
  c.runId        = $rec.runId
"""

_HISTORY_CYPHER = """
MATCH (c:ChangeRecord {entityId: $entityId})
RETURN c {.*} AS record
ORDER BY c.timestamp ASC, c.changeId ASC
"""

DEFAULT_CONCURRENCY = 10


@dataclass
class ChangeFailure:
    """A change record that could not be written."""

    record: ChangeRecord
    error: str

    @property
    def entity_id(self) -> str:
        return self.record.entity_id


class ChangeTracker:
    """
    Persists :class:`~graph_kg.model.ChangeRecord` history in the graph store.

    :param client: :class:`~graph_kg.store.GraphStoreClient` (or compatible).
    """

    def __init__(self, client: Any) -> None:
        self.client = client

    def ensure_schema(self) -> None:
        """Unique ``changeId`` plus a lookup index on ``entityId``."""
        self.client.ensure_unique_constraint("ChangeRecord", "changeId")
        self.client.run(
            "CREATE INDEX change_record_entity IF NOT EXISTS "
            "FOR (c:ChangeRecord) ON (c.entityId)"
        )

    def record(
        self,
        entity_id: str,
        kind: ChangeKind | str,
        prev_hash: str | None,
        new_hash: str | None,
        **extra: Any,
    ) -> ChangeRecord:
        """
        Append one change record.

        :param entity_id: ``uuid`` of the changed entity.
        :param kind: created | updated | deleted
        :param prev_hash: Content hash before the change.
        :param new_hash: Content hash after the change.
        :param extra: ``label``, ``project_id``, ``run_id``, ``timestamp``.
        :return: The written record.
        """
        rec = ChangeRecord(entity_id, ChangeKind(kind), prev_hash, new_hash, **extra)
        self.write(rec)
        return rec

    def write(self, rec: ChangeRecord) -> None:
        """Write a prepared record (idempotent)."""

        def _tx(tx: ManagedTransaction) -> None:
            tx.run(_RECORD_CYPHER, rec=rec.to_dict()).consume()

        self.client.transaction(_tx)

    def record_batch(
        self,
        records: Sequence[ChangeRecord],
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> list[ChangeFailure]:
        """
        Write records with at most *concurrency* writes in flight.

        Records are independent: one failure never blocks the others.

        :return: One :class:`ChangeFailure` per record that failed.
        """
        if not records:
            return []
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        failures: list[ChangeFailure] = []
        with ThreadPoolExecutor(max_workers=min(concurrency, len(records))) as pool:
            futures = {pool.submit(self.write, rec): rec for rec in records}
            for fut in as_completed(futures):
                rec = futures[fut]
                try:
                    fut.result()
                except Exception as exc:
                    logger.warning("change record for {} failed: {}", rec.entity_id, exc)
                    failures.append(ChangeFailure(rec, str(exc)))

        failures.sort(key=lambda f: f.entity_id)
        return failures

    def history(self, entity_id: str) -> list[ChangeRecord]:
        """
        Return every change of *entity_id*, oldest first.

        :param entity_id: Entity ``uuid``.
        """
        rows = self.client.run(_HISTORY_CYPHER, {"entityId": entity_id})
        records = [ChangeRecord.from_dict(r["record"]) for r in rows]
        return sorted(records, key=lambda r: r.timestamp)
