#!/usr/bin/env python3
"""
ingest.py

IncrementalIngestionPipeline — diff a fresh parse against the stored graph
and apply only the difference.

    SCANNING -> DIFFING -> WRITING -> CHANGE_TRACKING -> COMPLETE
                  (any stage) -> FAILED

Stages never interleave. The previous snapshot is read from the store at
the start of every run; nothing is cached between runs. All writes are
upserts keyed by ``uuid``, which is derived from the project id and the
parser's identity key, so projects never share a node. A node's ``contentHash`` is committed only after
its relationships are written, so a run that fails mid-write leaves the
node looking stale and the next run redoes it.

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import uuid as uuidlib
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger

from graph_kg.changes import DEFAULT_CONCURRENCY, ChangeFailure, ChangeTracker
from graph_kg.config import IngestionConfig
from graph_kg.errors import IngestionError
from graph_kg.model import ChangeKind, ChangeRecord, NodeState, ParsedGraph, ParsedNode
from graph_kg.parser import SourceParser

DEFAULT_RELATIONSHIP_BATCH_SIZE = 500

# ---------------------------------------------------------------------------
# Report types
# ---------------------------------------------------------------------------


class IngestionState(str, Enum):
    SCANNING = "scanning"
    DIFFING = "diffing"
    WRITING = "writing"
    CHANGE_TRACKING = "change_tracking"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class LabelCounts:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "unchanged": self.unchanged,
        }


@dataclass
class EntityChange:
    """One created / updated / deleted entity detected while diffing."""

    uuid: str
    labels: tuple[str, ...]
    kind: ChangeKind
    previous_hash: str | None
    new_hash: str | None
    node: ParsedNode | None = None

    @property
    def label(self) -> str:
        return self.labels[0]


@dataclass
class IngestionReport:
    """
    Outcome of one ingestion run.

    :param run_id: Id stamped on every change record of the run.
    :param project_id: Ingestion root scope.
    :param state: Final state (``COMPLETE`` or ``FAILED``).
    :param by_label: Per-label created/updated/deleted/unchanged counts.
    :param relationships_written: Relationships merged in the writing stage.
    :param relationships_skipped: Parsed relationships with an unknown endpoint.
    :param failures: Per-entity change-tracking failures.
    :param failed_stage: Stage that failed (``None`` on success).
    :param pending: uuids whose processing had not completed when the run failed.
    :param dry_run: ``True`` if the run stopped after diffing.
    :param index_reports: Vector re-embedding outcomes (filled by the orchestrator).
    """

    run_id: str
    project_id: str | None
    state: IngestionState = IngestionState.SCANNING
    by_label: dict[str, LabelCounts] = field(default_factory=lambda: defaultdict(LabelCounts))
    changes: list[EntityChange] = field(default_factory=list)
    relationships_written: int = 0
    relationships_skipped: int = 0
    failures: list[ChangeFailure] = field(default_factory=list)
    failed_stage: IngestionState | None = None
    pending: list[str] = field(default_factory=list)
    dry_run: bool = False
    index_reports: list[Any] = field(default_factory=list)

    def _total(self, attr: str) -> int:
        return sum(getattr(c, attr) for c in self.by_label.values())

    @property
    def created(self) -> int:
        return self._total("created")

    @property
    def updated(self) -> int:
        return self._total("updated")

    @property
    def deleted(self) -> int:
        return self._total("deleted")

    @property
    def unchanged(self) -> int:
        return self._total("unchanged")

    @property
    def ok(self) -> bool:
        return self.state == IngestionState.COMPLETE and not self.failures

    def changed_uuids(self, label: str, kinds: Iterable[ChangeKind] = (ChangeKind.CREATED, ChangeKind.UPDATED)) -> list[str]:
        kinds = set(kinds)
        return [c.uuid for c in self.changes if c.label == label and c.kind in kinds]

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "project_id": self.project_id,
            "state": self.state.value,
            "dry_run": self.dry_run,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "unchanged": self.unchanged,
            "by_label": {k: v.to_dict() for k, v in sorted(self.by_label.items())},
            "relationships_written": self.relationships_written,
            "relationships_skipped": self.relationships_skipped,
            "failures": [{"entity_id": f.entity_id, "error": f.error} for f in self.failures],
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "pending": list(self.pending),
            "index_reports": [
                {
                    "index": r.index_name,
                    "embedded": r.embedded,
                    "skipped": r.skipped,
                    "failed": len(r.failures),
                }
                for r in self.index_reports
            ],
        }

    def __str__(self) -> str:
        return (
            f"IngestionReport({self.state.value}: created={self.created}, updated={self.updated}, "
            f"deleted={self.deleted}, unchanged={self.unchanged})"
        )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class IncrementalIngestionPipeline:
    """
    Applies the difference between a fresh parse and the stored graph.

    Example::

        pipeline = IncrementalIngestionPipeline(client, ChangeTracker(client))
        report = pipeline.run(Path("."), PythonSourceParser())
        print(report.to_dict())

    :param client: :class:`~graph_kg.store.GraphStoreClient` (or compatible).
    :param tracker: :class:`~graph_kg.changes.ChangeTracker` for history.
    :param config: Ingestion config; its labels are always diffed, even when
        the current parse yields no node of that label.
    :param relationship_batch_size: Max relationships per write statement.
    :param change_concurrency: Max change-record writes in flight.
    """

    def __init__(
        self,
        client: Any,
        tracker: ChangeTracker,
        *,
        config: IngestionConfig | None = None,
        relationship_batch_size: int = DEFAULT_RELATIONSHIP_BATCH_SIZE,
        change_concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        if relationship_batch_size < 1:
            raise ValueError("relationship_batch_size must be >= 1")
        self.client = client
        self.tracker = tracker
        self.config = config
        self.relationship_batch_size = relationship_batch_size
        self.change_concurrency = change_concurrency

    # ------------------------------------------------------------------

    def run(
        self,
        root: str | Path,
        parser: SourceParser,
        *,
        project_id: str | None = None,
        dry_run: bool = False,
    ) -> IngestionReport:
        """
        Run one ingestion pass.

        :param root: Root directory handed to *parser*.
        :param parser: Source parser producing the full current entity set.
        :param project_id: Scope of the diff; defaults to the config's
            ``project_id`` or the root directory name.
        :param dry_run: Stop after diffing and report what would change.
        :return: :class:`IngestionReport` (state ``COMPLETE``).
        :raises IngestionError: if a stage fails; ``err.report`` carries the
            failed stage and the pending entity uuids.
        """
        root = Path(root)
        if project_id is None:
            project_id = (self.config.project_id if self.config else None) or root.resolve().name

        report = IngestionReport(run_id=uuidlib.uuid4().hex, project_id=project_id, dry_run=dry_run)

        # -------- SCANNING --------
        self._enter(report, IngestionState.SCANNING)
        try:
            graph = parser.parse(root)
        except Exception as exc:
            self._fail(report, IngestionState.SCANNING, [])
            raise IngestionError(f"scanning {root} failed: {exc}", stage=IngestionState.SCANNING.value, report=report) from exc

        # -------- DIFFING --------
        self._enter(report, IngestionState.DIFFING)
        try:
            parsed = self._index_nodes(graph, project_id)
            labels = self._labels(parsed.values(), parser)
            snapshot = self.client.content_hashes(sorted(labels), project_id)
            report.changes = self.diff(parsed, snapshot, report)
        except Exception as exc:
            self._fail(report, IngestionState.DIFFING, [])
            raise IngestionError(f"diffing failed: {exc}", stage=IngestionState.DIFFING.value, report=report) from exc

        logger.info(
            "diff [{}]: created={} updated={} deleted={} unchanged={}",
            project_id,
            report.created,
            report.updated,
            report.deleted,
            report.unchanged,
        )

        if dry_run:
            report.state = IngestionState.COMPLETE
            return report

        # -------- WRITING --------
        self._enter(report, IngestionState.WRITING)
        done: set[str] = set()
        try:
            self._write(graph, parsed, report, project_id, done)
        except Exception as exc:
            self._fail(report, IngestionState.WRITING, [c.uuid for c in report.changes if c.uuid not in done])
            raise IngestionError(f"writing failed: {exc}", stage=IngestionState.WRITING.value, report=report) from exc

        # -------- CHANGE_TRACKING --------
        self._enter(report, IngestionState.CHANGE_TRACKING)
        records = [
            ChangeRecord(
                entity_id=c.uuid,
                kind=c.kind,
                previous_hash=c.previous_hash,
                new_hash=c.new_hash,
                label=c.label,
                project_id=project_id,
                run_id=report.run_id,
            )
            for c in report.changes
        ]
        try:
            report.failures = self.tracker.record_batch(records, concurrency=self.change_concurrency)
        except Exception as exc:
            self._fail(report, IngestionState.CHANGE_TRACKING, [r.entity_id for r in records])
            raise IngestionError(
                f"change tracking failed: {exc}", stage=IngestionState.CHANGE_TRACKING.value, report=report
            ) from exc

        if report.failures:
            logger.warning("{} change record(s) failed", len(report.failures))

        self._enter(report, IngestionState.COMPLETE)
        logger.info("{}", report)
        return report

    # ------------------------------------------------------------------
    # Diffing
    # ------------------------------------------------------------------

    @staticmethod
    def diff(
        parsed: dict[str, ParsedNode],
        snapshot: dict[str, NodeState],
        report: IngestionReport,
    ) -> list[EntityChange]:
        """
        Classify every entity against the stored snapshot.

        Fills ``report.by_label`` and returns the created/updated/deleted
        entities (unchanged ones produce no work).
        """
        changes: list[EntityChange] = []

        for uid, node in parsed.items():
            new_hash = node.content_hash
            prior = snapshot.get(uid)
            counts = report.by_label[node.label]
            if prior is None or prior.content_hash is None:
                # never committed: a previous run failed before its hash was set
                counts.created += 1
                changes.append(EntityChange(uid, node.labels, ChangeKind.CREATED, None, new_hash, node))
            elif prior.content_hash != new_hash:
                counts.updated += 1
                changes.append(EntityChange(uid, node.labels, ChangeKind.UPDATED, prior.content_hash, new_hash, node))
            else:
                counts.unchanged += 1

        for uid, prior in snapshot.items():
            if uid in parsed:
                continue
            report.by_label[prior.label].deleted += 1
            changes.append(EntityChange(uid, prior.labels, ChangeKind.DELETED, prior.content_hash, None))

        return changes

    @staticmethod
    def _index_nodes(graph: ParsedGraph, project_id: str | None) -> dict[str, ParsedNode]:
        parsed: dict[str, ParsedNode] = {}
        for node in graph.nodes:
            if not node.labels:
                raise ValueError(f"parsed node {node.identity!r} has no labels")
            uid = node.scoped_uuid(project_id)
            if uid in parsed:
                logger.warning("duplicate identity {!r}; keeping the last occurrence", node.identity)
            parsed[uid] = node
        return parsed

    def _labels(self, nodes: Iterable[ParsedNode], parser: SourceParser) -> set[str]:
        labels = {n.label for n in nodes}
        labels.update(getattr(parser, "labels", ()))
        if self.config is not None:
            labels.update(self.config.labels)
        return labels

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write(
        self,
        graph: ParsedGraph,
        parsed: dict[str, ParsedNode],
        report: IngestionReport,
        project_id: str | None,
        done: set[str],
    ) -> None:
        deleted: dict[str, list[str]] = defaultdict(list)
        upserts: dict[tuple[str, ...], list[EntityChange]] = defaultdict(list)
        updated: dict[str, list[str]] = defaultdict(list)

        for c in report.changes:
            if c.kind == ChangeKind.DELETED:
                deleted[c.label].append(c.uuid)
            else:
                upserts[c.labels].append(c)
                if c.kind == ChangeKind.UPDATED:
                    updated[c.label].append(c.uuid)

        # deletes, one pass per label
        for label, uuids in sorted(deleted.items()):
            n = self.client.delete_nodes(label, uuids)
            done.update(uuids)
            logger.debug("deleted {} {} node(s)", n, label)

        # one batched upsert per label group
        for labels, group in sorted(upserts.items()):
            rows = [
                {
                    "uuid": c.uuid,
                    "props": {
                        **dict(c.node.properties),
                        "uuid": c.uuid,
                        "projectId": project_id,
                    },
                }
                for c in group
            ]
            n = self.client.upsert_nodes(list(labels), rows)
            logger.debug("upserted {} {} node(s)", n, ":".join(labels))

        # stale outgoing edges of updated nodes
        for label, uuids in sorted(updated.items()):
            self.client.prune_outgoing(label, uuids)

        # relationships touching created/updated nodes, after every node batch
        touched = {c.uuid for c in report.changes if c.kind != ChangeKind.DELETED}
        by_key = {node.identity: (uid, node.label) for uid, node in parsed.items()}
        groups: dict[tuple[str, str, str], dict[tuple[str, str], dict]] = defaultdict(dict)

        for rel in graph.relationships:
            src = by_key.get(rel.source)
            dst = by_key.get(rel.target)
            if src is None or dst is None:
                report.relationships_skipped += 1
                logger.debug("skipping {} {} -> {}: unknown endpoint", rel.type, rel.source, rel.target)
                continue
            if src[0] not in touched and dst[0] not in touched:
                continue
            groups[(rel.type, src[1], dst[1])][(src[0], dst[0])] = {
                "source": src[0],
                "target": dst[0],
                "props": dict(rel.properties),
            }

        for (rel_type, src_label, dst_label), rows in sorted(groups.items()):
            for chunk in _chunks(list(rows.values()), self.relationship_batch_size):
                report.relationships_written += self.client.upsert_relationships(
                    rel_type, src_label, dst_label, chunk
                )

        # commit hashes last
        for labels, group in sorted(upserts.items()):
            self.client.set_properties(
                labels[0],
                [{"uuid": c.uuid, "props": {"contentHash": c.new_hash}} for c in group],
            )
            done.update(c.uuid for c in group)

    # ------------------------------------------------------------------

    @staticmethod
    def _enter(report: IngestionReport, state: IngestionState) -> None:
        report.state = state
        logger.debug("ingestion {} -> {}", report.run_id[:8], state.value)

    @staticmethod
    def _fail(report: IngestionReport, stage: IngestionState, pending: list[str]) -> None:
        report.state = IngestionState.FAILED
        report.failed_stage = stage
        report.pending = pending
        logger.error("ingestion {} failed in {} ({} pending)", report.run_id[:8], stage.value, len(pending))
