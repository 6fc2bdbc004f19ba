#!/usr/bin/env python3
"""
query.py

QueryExecutionEngine — compile an immutable :class:`QuerySpec` into Cypher
and/or vector-index lookups, merge scores, expand graph context and rerank.

Three execution paths, chosen at ``execute()`` time:

    semantic-only   semantic clause, no filters   -> vector index only
    filter-only     no semantic clause            -> one MATCH / WHERE
    combined        both                          -> both, merged on uuid

Combined score::

    score = filter_score * w_filter + semantic_score * w_semantic

Example::

    results = (
        kg.query("Scope")
        .where(type="function")
        .semantic("parse file", vector_index="scopeEmbeddings", top_k=5)
        .expand("CONSUMES", depth=2)
        .limit(5)
        .execute()
    )

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import warnings
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from loguru import logger

from graph_kg.config import IngestionConfig
from graph_kg.errors import (
    DegradedQueryWarning,
    EmbeddingProviderError,
    QueryValidationError,
    VectorSearchError,
)
from graph_kg.rerank import RerankContext, RerankStrategy
from graph_kg.store import QueryPlan, label_expr, quote_identifier
from graph_kg.vector import VectorHit, VectorSearchService, validate_search_args

Direction = Literal["outgoing", "incoming", "both"]

# ============================================================================
# Query clauses
# ============================================================================

STRING_OPS = {"contains": "CONTAINS", "startsWith": "STARTS WITH", "endsWith": "ENDS WITH"}
NUMERIC_OPS = {"gt": ">", "gte": ">=", "lt": "<", "lte": "<="}
OPERATORS = {"equals", "in", *STRING_OPS, *NUMERIC_OPS}
DIRECTIONS = ("outgoing", "incoming", "both")

_SCALARS = (str, int, float, bool)


def _is_number(v: Any) -> bool:
    return isinstance(v, int | float) and not isinstance(v, bool)


@dataclass(frozen=True)
class FieldPredicate:
    """
    One ``field <op> value`` condition.

    :param field: Property name.
    :param op: equals | contains | startsWith | endsWith | gt | gte | lt | lte | in
    :param value: Right-hand side; a tuple for ``in``.
    """

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        quote_identifier(self.field)
        if self.op not in OPERATORS:
            raise QueryValidationError(f"unknown operator {self.op!r} on {self.field!r}")
        if self.op in STRING_OPS and not isinstance(self.value, str):
            raise QueryValidationError(f"{self.op} on {self.field!r} requires a string, got {self.value!r}")
        if self.op in NUMERIC_OPS and not _is_number(self.value):
            raise QueryValidationError(f"{self.op} on {self.field!r} requires a number, got {self.value!r}")
        if self.op == "in":
            if isinstance(self.value, str | bytes) or not isinstance(self.value, Iterable):
                raise QueryValidationError(f"in on {self.field!r} requires a collection, got {self.value!r}")
            values = tuple(self.value)
            if not all(isinstance(v, _SCALARS) for v in values):
                raise QueryValidationError(f"in on {self.field!r} requires scalar members")
            object.__setattr__(self, "value", values)
        if self.op == "equals" and self.value is not None and not isinstance(self.value, _SCALARS):
            raise QueryValidationError(f"equals on {self.field!r} requires a scalar, got {self.value!r}")

    def compile(self, var: str, bind: Callable[[Any], str]) -> str:
        """
        Cypher condition on *var*.

        :param bind: Registers a parameter value and returns its name; only
            called when the condition references a parameter.
        """
        prop = f"{var}.{quote_identifier(self.field)}"
        if self.op == "equals" and self.value is None:
            return f"{prop} IS NULL"
        param = bind(self.param_value)
        if self.op == "equals":
            return f"{prop} = ${param}"
        if self.op == "in":
            return f"{prop} IN ${param}"
        if self.op in STRING_OPS:
            return f"{prop} {STRING_OPS[self.op]} ${param}"
        return f"{prop} {NUMERIC_OPS[self.op]} ${param}"

    @property
    def param_value(self) -> Any:
        return list(self.value) if self.op == "in" else self.value


def parse_predicates(predicates: Any = None, **equals: Any) -> tuple[FieldPredicate, ...]:
    """
    Normalize ``where()`` arguments.

    Accepts :class:`FieldPredicate` objects, an iterable of them, or a
    mapping where a scalar means equality, a list/tuple/set means ``in``
    and a mapping means ``{operator: value}``.

    :raises QueryValidationError: on any malformed predicate.
    """
    out: list[FieldPredicate] = []
    items: list[tuple[str, Any]] = []

    if isinstance(predicates, FieldPredicate):
        out.append(predicates)
    elif isinstance(predicates, Mapping):
        items.extend(predicates.items())
    elif predicates is not None:
        for p in predicates:
            if not isinstance(p, FieldPredicate):
                raise QueryValidationError(f"not a predicate: {p!r}")
            out.append(p)
    items.extend(equals.items())

    for name, value in items:
        if isinstance(value, Mapping):
            if not value:
                raise QueryValidationError(f"empty operator map for {name!r}")
            for op, operand in value.items():
                out.append(FieldPredicate(name, op, operand))
        elif isinstance(value, list | tuple | set | frozenset):
            out.append(FieldPredicate(name, "in", sorted(value, key=str) if isinstance(value, set | frozenset) else value))
        else:
            out.append(FieldPredicate(name, "equals", value))
    return tuple(out)


def _check_direction(direction: str) -> None:
    if direction not in DIRECTIONS:
        raise QueryValidationError(f"direction must be one of {DIRECTIONS}, got {direction!r}")


def _pattern(rel: str, direction: str, hops: str = "") -> tuple[str, str]:
    """Left/right arrow pieces for ``(a){left}[...]{right}(b)``."""
    body = f"[:{quote_identifier(rel)}{hops}]"
    if direction == "outgoing":
        return "-", f"{body}->"
    if direction == "incoming":
        return "<-", f"{body}-"
    return "-", f"{body}-"


@dataclass(frozen=True)
class RelatedFilter:
    """Structural filter: the entity has a *rel_type* edge to a matching node."""

    rel_type: str
    target: str | None = None
    direction: str = "outgoing"
    predicates: tuple[FieldPredicate, ...] = ()

    def __post_init__(self) -> None:
        quote_identifier(self.rel_type)
        if self.target is not None:
            quote_identifier(self.target)
        _check_direction(self.direction)


@dataclass(frozen=True)
class SemanticClause:
    text: str
    vector_index: str
    top_k: int = 10
    min_score: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.text, str) or not self.text.strip():
            raise QueryValidationError("semantic text must be a non-empty string")
        validate_search_args(self.vector_index, self.top_k, self.min_score)


@dataclass(frozen=True)
class ExpandClause:
    rel_type: str
    depth: int = 1
    direction: str = "outgoing"

    def __post_init__(self) -> None:
        quote_identifier(self.rel_type)
        if isinstance(self.depth, bool) or not isinstance(self.depth, int) or self.depth < 1:
            raise QueryValidationError(f"expand depth must be an integer >= 1, got {self.depth!r}")
        _check_direction(self.direction)


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False

    def __post_init__(self) -> None:
        quote_identifier(self.field)


@dataclass(frozen=True)
class QuerySpec:
    """
    Immutable description of one query; each builder call yields a new one.
    """

    label: str
    predicates: tuple[FieldPredicate, ...] = ()
    related: tuple[RelatedFilter, ...] = ()
    semantic: SemanticClause | None = None
    expansions: tuple[ExpandClause, ...] = ()
    order_by: tuple[OrderBy, ...] = ()
    limit: int | None = None
    offset: int = 0
    rerankers: tuple[RerankStrategy, ...] = ()

    def __post_init__(self) -> None:
        quote_identifier(self.label)

    @property
    def has_filters(self) -> bool:
        return bool(self.predicates or self.related)

    @property
    def path(self) -> str:
        if self.semantic is None:
            return "filter"
        return "combined" if self.has_filters else "semantic"


# ============================================================================
# Results
# ============================================================================


@dataclass
class RelatedEntity:
    """A node reached by an expansion clause."""

    entity: dict
    relationship_type: str
    direction: str
    distance: int

    @property
    def uuid(self) -> str | None:
        return self.entity.get("uuid")


@dataclass
class SearchResult:
    """
    One query result.

    :param entity: Node properties (embedding vectors removed).
    :param score: Final score.
    :param filter_score: Structural match score (``None`` on the semantic-only path).
    :param semantic_score: Vector similarity (``None`` on the filter-only path).
    :param context: Extra data; ``context["related"]`` holds expansions.
    """

    entity: dict
    score: float
    filter_score: float | None = None
    semantic_score: float | None = None
    labels: list[str] = field(default_factory=list)
    context: dict = field(default_factory=dict)

    @property
    def uuid(self) -> str | None:
        return self.entity.get("uuid")

    @property
    def related(self) -> list[RelatedEntity]:
        return self.context.get("related", [])

    def to_dict(self) -> dict:
        return {
            "entity": self.entity,
            "labels": self.labels,
            "score": self.score,
            "filter_score": self.filter_score,
            "semantic_score": self.semantic_score,
            "related": [
                {
                    "entity": r.entity,
                    "relationship_type": r.relationship_type,
                    "direction": r.direction,
                    "distance": r.distance,
                }
                for r in self.related
            ],
        }


class SearchResults(list):
    """A list of :class:`SearchResult` plus the warnings raised producing it."""

    def __init__(self, items: Iterable[SearchResult] = (), *, path: str = "", warnings: Iterable[str] = ()) -> None:
        super().__init__(items)
        self.path = path
        self.warnings = list(warnings)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


# ============================================================================
# Builder
# ============================================================================


class Query:
    """
    Fluent, immutable query builder over one label.

    Every method returns a new :class:`Query`; the receiver is unchanged,
    so partially built queries can be shared and reused safely.
    """

    def __init__(self, engine: "QueryExecutionEngine", spec: QuerySpec) -> None:
        self.engine = engine
        self.spec = spec

    def _with(self, **changes: Any) -> "Query":
        return Query(self.engine, replace(self.spec, **changes))

    def where(self, predicates: Any = None, **equals: Any) -> "Query":
        """
        Add AND-combined field predicates.

        ``where(type="function")``, ``where({"startLine": {"gte": 10}})``,
        ``where({"name": ["a", "b"]})``, or :class:`FieldPredicate` objects.

        :raises QueryValidationError: immediately, if any predicate is malformed.
        """
        return self._with(predicates=self.spec.predicates + parse_predicates(predicates, **equals))

    def related(
        self,
        rel_type: str,
        target: str | None = None,
        *,
        direction: Direction = "outgoing",
        where: Any = None,
    ) -> "Query":
        """Keep entities with a *rel_type* edge to a (*target*-labelled, matching) node."""
        clause = RelatedFilter(rel_type, target, direction, parse_predicates(where))
        return self._with(related=self.spec.related + (clause,))

    def semantic(
        self,
        text: str,
        *,
        vector_index: str | None = None,
        top_k: int = 10,
        min_score: float = 0.0,
    ) -> "Query":
        """
        Set the semantic clause (replaces any previous one).

        :raises QueryValidationError: if *vector_index* is missing or the
            bounds are invalid.
        """
        return self._with(semantic=SemanticClause(text, vector_index, top_k, min_score))

    def expand(self, rel_type: str, *, depth: int = 1, direction: Direction = "outgoing") -> "Query":
        """Attach entities reachable via *rel_type* within *depth* hops."""
        return self._with(expansions=self.spec.expansions + (ExpandClause(rel_type, depth, direction),))

    def order_by(self, field_name: str, *, descending: bool = False) -> "Query":
        return self._with(order_by=self.spec.order_by + (OrderBy(field_name, descending),))

    def limit(self, n: int | None) -> "Query":
        if n is not None and (isinstance(n, bool) or not isinstance(n, int) or n < 0):
            raise QueryValidationError(f"limit must be a non-negative integer, got {n!r}")
        return self._with(limit=n)

    def offset(self, n: int) -> "Query":
        if isinstance(n, bool) or not isinstance(n, int) or n < 0:
            raise QueryValidationError(f"offset must be a non-negative integer, got {n!r}")
        return self._with(offset=n)

    def rerank(self, strategy: RerankStrategy) -> "Query":
        if not callable(getattr(strategy, "rerank", None)):
            raise QueryValidationError(f"not a rerank strategy: {strategy!r}")
        return self._with(rerankers=self.spec.rerankers + (strategy,))

    # -------- terminals --------

    def execute(self) -> SearchResults:
        return self.engine.execute(self.spec)

    def count(self) -> int:
        return self.engine.count(self.spec)

    def explain(self) -> QueryPlan:
        return self.engine.explain(self.spec)

    def compile(self) -> tuple[str, dict]:
        """Cypher and parameters of the filter query (for inspection)."""
        return self.engine.compile_filter(self.spec)

    def __repr__(self) -> str:
        return f"Query({self.spec!r})"


# ============================================================================
# Engine
# ============================================================================

_VECTOR_CYPHER = """
CALL db.index.vector.queryNodes($indexName, $topK, $embedding)
YIELD node, score
WHERE score >= $minScore
RETURN node {.*} AS node, labels(node) AS labels, score
ORDER BY score DESC
"""


class QueryExecutionEngine:
    """
    Compiles and executes :class:`QuerySpec` values.

    :param client: :class:`~graph_kg.store.GraphStoreClient` (or compatible).
    :param vector: :class:`~graph_kg.vector.VectorSearchService`; required
        only for semantic clauses.
    :param filter_weight: Weight of the filter score in combined queries.
    :param semantic_weight: Weight of the semantic score in combined queries.
    :param max_candidates: Cap on filter matches fetched when results are
        merged or reranked in memory.
    :param expand_concurrency: Max concurrent expansion queries.
    :param config: Ingestion config. Relationships declared with
        ``enrich: true`` are followed one hop for every result of their
        entity, and the neighbours' display names are stored on the entity
        under the relationship's ``result_field``.
    """

    def __init__(
        self,
        client: Any,
        vector: VectorSearchService | None = None,
        *,
        filter_weight: float = 0.3,
        semantic_weight: float = 0.7,
        max_candidates: int = 10_000,
        expand_concurrency: int = 8,
        config: IngestionConfig | None = None,
    ) -> None:
        self.client = client
        self.vector = vector
        self.filter_weight = filter_weight
        self.semantic_weight = semantic_weight
        self.max_candidates = max_candidates
        self.expand_concurrency = expand_concurrency
        self.enrichments: dict[str, list[tuple[ExpandClause, str, str]]] = {}
        for entity in config.entities if config else ():
            for rel in entity.relationships:
                if not rel.enrich:
                    continue
                target = config.entity(rel.target)
                display = target.display_name_field if target else "name"
                self.enrichments.setdefault(entity.name, []).append(
                    (ExpandClause(rel.type, 1, rel.direction), rel.result_field, display)
                )

    def query(self, label: str) -> Query:
        """Start a query over *label*."""
        return Query(self, QuerySpec(label=label))

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def _where(self, spec: QuerySpec, params: dict) -> str:
        clauses: list[str] = []

        def bind(value: Any) -> str:
            name = f"p{len(params)}"
            params[name] = value
            return name

        for p in spec.predicates:
            clauses.append(p.compile("n", bind))

        for i, rf in enumerate(spec.related):
            var = f"r{i}"
            left, right = _pattern(rf.rel_type, rf.direction)
            target = f":{quote_identifier(rf.target)}" if rf.target else ""
            inner = " AND ".join(p.compile(var, bind) for p in rf.predicates)
            inner = f" WHERE {inner}" if inner else ""
            clauses.append(f"EXISTS {{ MATCH (n){left}{right}({var}{target}){inner} }}")

        return f"WHERE {' AND '.join(clauses)}" if clauses else ""

    @staticmethod
    def _order(spec: QuerySpec) -> str:
        keys = [f"n.{quote_identifier(o.field)}{' DESC' if o.descending else ''}" for o in spec.order_by]
        keys.append("n.uuid")
        return "ORDER BY " + ", ".join(keys)

    def compile_filter(
        self,
        spec: QuerySpec,
        *,
        skip: int | None = None,
        limit: int | None = None,
    ) -> tuple[str, dict]:
        """
        Compile the structural part of *spec* into one Cypher statement.

        :return: ``(cypher, params)``
        """
        params: dict = {}
        lines = [f"MATCH (n{label_expr([spec.label])})"]
        where = self._where(spec, params)
        if where:
            lines.append(where)
        lines.append("RETURN n {.*} AS node, labels(n) AS labels")
        lines.append(self._order(spec))
        if skip:
            lines.append("SKIP $skip")
            params["skip"] = int(skip)
        if limit is not None:
            lines.append("LIMIT $limit")
            params["limit"] = int(limit)
        return "\n".join(lines), params

    def compile_count(self, spec: QuerySpec) -> tuple[str, dict]:
        params: dict = {}
        lines = [f"MATCH (n{label_expr([spec.label])})"]
        where = self._where(spec, params)
        if where:
            lines.append(where)
        lines.append("RETURN count(n) AS count")
        return "\n".join(lines), params

    # ------------------------------------------------------------------
    # Terminals
    # ------------------------------------------------------------------

    def execute(self, spec: QuerySpec, *, enrich: bool = True) -> SearchResults:
        """
        Run *spec* and return final, sorted, paginated results.

        :param enrich: Attach configured relationship enrichments.
        """
        notes: list[str] = []
        path = spec.path
        pushed_down = path == "filter" and not spec.rerankers

        if path == "semantic":
            results = self._semantic_only(spec)
        elif path == "filter":
            results = self._filter_only(spec, pushed_down)
        else:
            results = self._combined(spec, notes)

        if not spec.rerankers:
            if not pushed_down:
                results = self._paginate(self._sort(results, spec), spec)
            if enrich:
                self._enrich(results, spec)
            if spec.expansions:
                self._expand(results, spec)
        else:
            if enrich:
                self._enrich(results, spec)
            if spec.expansions:
                self._expand(results, spec)
            context = RerankContext(
                label=spec.label,
                query_text=spec.semantic.text if spec.semantic else None,
                spec=spec,
            )
            for strategy in spec.rerankers:
                results = list(strategy.rerank(results, context))
            results = self._paginate(self._sort(results, spec), spec)

        logger.debug("{} query on {}: {} result(s)", path, spec.label, len(results))
        return SearchResults(results, path=path, warnings=notes)

    def count(self, spec: QuerySpec) -> int:
        """Number of entities *spec* matches before pagination."""
        if spec.path == "filter":
            cypher, params = self.compile_count(spec)
            rows = self.client.run(cypher, params)
            return int(rows[0]["count"]) if rows else 0
        return len(self.execute(replace(spec, limit=None, offset=0, expansions=(), rerankers=()), enrich=False))

    def explain(self, spec: QuerySpec) -> QueryPlan:
        """Planner view of the primary statement of *spec*."""
        if spec.path == "semantic":
            return self.client.explain(
                _VECTOR_CYPHER,
                {
                    "indexName": spec.semantic.vector_index,
                    "topK": spec.semantic.top_k,
                    "embedding": [],
                    "minScore": spec.semantic.min_score,
                },
            )

        cypher, params = self.compile_filter(spec, skip=spec.offset, limit=spec.limit)
        plan = self.client.explain(cypher, params)
        if spec.semantic is not None:
            plan.indexes_used.append(f"vector index {spec.semantic.vector_index}")
            plan.steps.append("VectorIndexQuery")
        return plan

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _require_vector(self) -> VectorSearchService:
        if self.vector is None:
            raise QueryValidationError("semantic clause given but no vector search service is configured")
        return self.vector

    def _semantic_only(self, spec: QuerySpec) -> list[SearchResult]:
        clause = spec.semantic
        hits = self._require_vector().search(
            clause.text, clause.vector_index, top_k=clause.top_k, min_score=clause.min_score
        )
        return [
            SearchResult(entity=h.properties, score=h.score, semantic_score=h.score, labels=h.labels)
            for h in hits
            if not h.labels or spec.label in h.labels
        ]

    def _fetch_filter(self, spec: QuerySpec, *, skip: int | None, limit: int | None) -> list[dict]:
        cypher, params = self.compile_filter(spec, skip=skip, limit=limit)
        rows = self.client.run(cypher, params)
        if limit == self.max_candidates and len(rows) >= self.max_candidates:
            logger.warning("{} query hit the {} candidate cap; results may be incomplete", spec.label, self.max_candidates)
        return rows

    def _filter_only(self, spec: QuerySpec, pushed_down: bool) -> list[SearchResult]:
        if pushed_down:
            rows = self._fetch_filter(spec, skip=spec.offset, limit=spec.limit)
        else:
            rows = self._fetch_filter(spec, skip=None, limit=self.max_candidates)
        return [
            SearchResult(entity=_strip(r["node"]), score=1.0, filter_score=1.0, labels=list(r["labels"]))
            for r in rows
        ]

    def _combined(self, spec: QuerySpec, notes: list[str]) -> list[SearchResult]:
        rows = self._fetch_filter(spec, skip=None, limit=self.max_candidates)
        for r in rows:
            if r["node"].get("uuid") is None:
                raise QueryValidationError(f"{spec.label} record without uuid cannot be merged")

        clause = spec.semantic
        semantic: dict[str, float] = {}
        try:
            hits: list[VectorHit] = self._require_vector().search(
                clause.text,
                clause.vector_index,
                top_k=max(clause.top_k * 3, 100),
                min_score=clause.min_score,
            )
        except (EmbeddingProviderError, VectorSearchError) as exc:
            msg = f"semantic search on {clause.vector_index!r} failed; using filter scores only: {exc}"
            logger.warning("{}", msg)
            warnings.warn(msg, DegradedQueryWarning, stacklevel=4)
            notes.append(msg)
        else:
            for h in hits:
                if h.id is None:
                    raise QueryValidationError(f"vector hit from {clause.vector_index!r} without uuid")
                semantic[h.id] = max(h.score, semantic.get(h.id, 0.0))

        out = []
        for r in rows:
            node = _strip(r["node"])
            s = semantic.get(node["uuid"], 0.0)
            out.append(
                SearchResult(
                    entity=node,
                    score=1.0 * self.filter_weight + s * self.semantic_weight,
                    filter_score=1.0,
                    semantic_score=s,
                    labels=list(r["labels"]),
                )
            )
        return out

    # ------------------------------------------------------------------
    # Ordering and pagination
    # ------------------------------------------------------------------

    @staticmethod
    def _sort(results: list[SearchResult], spec: QuerySpec) -> list[SearchResult]:
        ordered = list(results)
        for o in reversed(spec.order_by):
            present = [r for r in ordered if r.entity.get(o.field) is not None]
            missing = [r for r in ordered if r.entity.get(o.field) is None]
            present.sort(key=lambda r: r.entity[o.field], reverse=o.descending)
            ordered = present + missing
        ordered.sort(key=lambda r: r.score, reverse=True)
        return ordered

    @staticmethod
    def _paginate(results: list[SearchResult], spec: QuerySpec) -> list[SearchResult]:
        end = None if spec.limit is None else spec.offset + spec.limit
        return results[spec.offset : end]

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    def _expand(self, results: list[SearchResult], spec: QuerySpec) -> None:
        targets = [r for r in results if r.uuid is not None]
        if not targets:
            return
        workers = max(1, min(self.expand_concurrency, len(targets)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.expand_one, spec.label, r.uuid, spec.expansions) for r in targets]
            for r, fut in zip(targets, futures):
                r.context["related"] = fut.result()

    def _enrich(self, results: list[SearchResult], spec: QuerySpec) -> None:
        enrichments = self.enrichments.get(spec.label)
        targets = [r for r in results if r.uuid is not None]
        if not enrichments or not targets:
            return
        workers = max(1, min(self.expand_concurrency, len(targets)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                [pool.submit(self.expand_one, spec.label, r.uuid, (clause,)) for clause, _, _ in enrichments]
                for r in targets
            ]
            for r, row in zip(targets, futures):
                for (_, result_field, display), fut in zip(enrichments, row):
                    names = [e.entity.get(display, e.uuid) for e in fut.result()]
                    if names:
                        r.entity[result_field] = names

    def expand_one(self, label: str, uuid: str, clauses: Iterable[ExpandClause]) -> list[RelatedEntity]:
        """
        Related entities of one node, deduplicated by uuid (nearest wins).

        :param label: Label of the source node.
        :param uuid: Source node uuid.
        :param clauses: Expansion clauses, accumulated additively.
        """
        best: dict[str, RelatedEntity] = {}
        for clause in clauses:
            left, right = _pattern(clause.rel_type, clause.direction, f"*1..{int(clause.depth)}")
            rows = self.client.run(
                f"""
                MATCH p = (n{label_expr([label])} {{uuid: $uuid}}){left}{right}(m)
                WHERE m <> n
                WITH m, min(length(p)) AS distance
                RETURN m {{.*}} AS node, distance
                ORDER BY distance, m.uuid
                """,
                {"uuid": uuid},
            )
            for row in rows:
                node = _strip(row["node"])
                key = node.get("uuid")
                if key is None or key == uuid:
                    continue
                distance = int(row["distance"])
                if distance > clause.depth:
                    continue
                prior = best.get(key)
                if prior is None or distance < prior.distance:
                    best[key] = RelatedEntity(node, clause.rel_type, clause.direction, distance)
        return sorted(best.values(), key=lambda r: (r.distance, r.uuid or ""))


def _strip(props: Mapping[str, Any]) -> dict:
    """Drop embedding vectors from a property map."""
    return {k: v for k, v in props.items() if not k.startswith("embedding")}
