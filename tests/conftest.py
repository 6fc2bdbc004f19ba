"""
conftest.py

Shared fixtures: an in-memory graph store that implements the domain
helpers of GraphStoreClient, a deterministic embedder, and a helper that
writes synthetic repos.
"""

from __future__ import annotations

import math
import re
import textwrap
from pathlib import Path

import pytest

from graph_kg.embedding import EmbeddingProvider

# ---------------------------------------------------------------------------
# Synthetic repos
# ---------------------------------------------------------------------------


def write_repo(root: Path, files: dict) -> Path:
    """Write ``{relpath: source}`` under *root* and return it."""
    root.mkdir(parents=True, exist_ok=True)
    for rel, src in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(textwrap.dedent(src))
    return root


# ---------------------------------------------------------------------------
# Deterministic embedder
# ---------------------------------------------------------------------------


VOCAB = ("parse", "file", "load", "render", "graph", "save", "user", "query")


class FakeEmbedder(EmbeddingProvider):
    """
    One axis per vocabulary word, normalized.

    Text with no vocabulary word maps to the uniform vector. Set ``fail``
    to make every call raise.
    """

    def __init__(self, vocab=VOCAB) -> None:
        self.vocab = tuple(vocab)
        self.dim = len(self.vocab)
        self.model_name = "fake"
        self.calls: list[str] = []
        self.fail = False

    def embed_texts(self, texts):
        return [self._vec(t) for t in texts]

    def embed_query(self, query):
        return self._vec(query)

    def _vec(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("provider unavailable")
        v = [0.0] * self.dim
        for tok in re.findall(r"[a-z0-9]+", text.lower()):
            if tok in self.vocab:
                v[self.vocab.index(tok)] += 1.0
        n = math.sqrt(sum(x * x for x in v))
        if not n:
            return [1.0 / math.sqrt(self.dim)] * self.dim
        return [x / n for x in v]


# ---------------------------------------------------------------------------
# In-memory graph store
# ---------------------------------------------------------------------------


_EXPAND_RE = re.compile(
    r"MATCH p = \(n:`(\w+)` \{uuid: \$uuid\}\)(<?-)\[:`(\w+)`\*1\.\.(\d+)\](->|-)\(m\)"
)


_EXISTS_RE = re.compile(
    r"EXISTS \{ MATCH \(n\)(<?-)\[:`(\w+)`\](->|-)\((r\d+)(?::`(\w+)`)?\)(?: WHERE (.*?))? \}"
)
_COND_RE = re.compile(
    r"^(\w+)\.`(\w+)` (IS NULL|=|CONTAINS|STARTS WITH|ENDS WITH|>=|<=|>|<|IN)(?: \$(\w+))?$"
)


def _split_conds(where: str) -> list[str]:
    return [c.strip() for c in where.split(" AND ") if c.strip()]


def _holds(cond: str, props: dict, params: dict, var: str = "n") -> bool:
    """Cypher semantics for one compiled predicate; comparisons with null are false."""
    m = _COND_RE.match(cond)
    if m is None:
        raise AssertionError(f"unsupported condition {cond!r}")
    cvar, field_name, op, param = m.groups()
    assert cvar == var, cond
    value = props.get(field_name)
    if op == "IS NULL":
        return value is None
    arg = params[param]
    if value is None:
        return False
    if op == "=":
        return value == arg
    if op == "IN":
        return value in arg
    if op in ("CONTAINS", "STARTS WITH", "ENDS WITH"):
        if not isinstance(value, str):
            return False
        return {
            "CONTAINS": arg in value,
            "STARTS WITH": value.startswith(arg),
            "ENDS WITH": value.endswith(arg),
        }[op]
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return {">": value > arg, ">=": value >= arg, "<": value < arg, "<=": value <= arg}[op]


class _FakeResult:
    def __init__(self, rows=None):
        self._rows = rows or []

    def consume(self):
        return None

    def data(self):
        return list(self._rows)

    def single(self):
        return self._rows[0] if self._rows else None


class _FakeTx:
    def __init__(self, store: "FakeGraphStore") -> None:
        self.store = store

    def run(self, query, params=None, **kw):
        return _FakeResult(self.store.run(query, {**(params or {}), **kw}))


class FakeGraphStore:
    """
    Dict-backed stand-in for :class:`~graph_kg.store.GraphStoreClient`.

    Implements the ingestion reads/writes, vector lookup, change-record
    persistence and equality-only filter queries.
    """

    def __init__(self) -> None:
        self.nodes: dict[str, dict] = {}
        self.rels: dict[tuple[str, str, str], dict] = {}
        self.change_records: dict[str, dict] = {}
        self.vector_indexes: dict[str, tuple[str, str]] = {}
        self.writes: list[tuple] = []
        self.fail_on: set[str] = set()
        self.fail_change_for: set[str] = set()
        self.closed = False

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_on:
            raise RuntimeError(f"{op} failed")

    # -------- schema --------

    def ensure_unique_constraint(self, label, field_name="uuid"):
        pass

    def ensure_vector_index(self, descriptor):
        self.vector_indexes[descriptor.name] = (descriptor.label, descriptor.field)

    # -------- ingestion reads --------

    def content_hashes(self, labels, project_id=None):
        from graph_kg.model import NodeState

        labels = set(labels)
        out = {}
        for uid, n in self.nodes.items():
            if not labels.intersection(n["labels"]):
                continue
            if project_id is not None and n["props"].get("projectId") != project_id:
                continue
            out[uid] = NodeState(tuple(n["labels"]), n["props"].get("contentHash"))
        return out

    def node_texts(self, label, field_name, uuids):
        return {
            u: self.nodes[u]["props"].get(field_name)
            for u in uuids
            if u in self.nodes and label in self.nodes[u]["labels"]
        }

    # -------- ingestion writes --------

    def upsert_nodes(self, labels, rows):
        self._maybe_fail("upsert_nodes")
        for row in rows:
            node = self.nodes.setdefault(row["uuid"], {"labels": tuple(labels), "props": {}})
            for k, v in row["props"].items():
                if v is None:
                    node["props"].pop(k, None)
                else:
                    node["props"][k] = v
        self.writes.append(("upsert_nodes", tuple(labels), len(rows)))
        return len(rows)

    def upsert_relationships(self, rel_type, source_label, target_label, rows):
        self._maybe_fail("upsert_relationships")
        n = 0
        for row in rows:
            a, b = self.nodes.get(row["source"]), self.nodes.get(row["target"])
            if a is None or b is None or source_label not in a["labels"] or target_label not in b["labels"]:
                continue
            self.rels[(row["source"], rel_type, row["target"])] = dict(row["props"])
            n += 1
        self.writes.append(("upsert_relationships", rel_type, len(rows)))
        return n

    def delete_nodes(self, label, uuids):
        self._maybe_fail("delete_nodes")
        n = 0
        for u in uuids:
            if u in self.nodes and label in self.nodes[u]["labels"]:
                del self.nodes[u]
                n += 1
                for key in [k for k in self.rels if u in (k[0], k[2])]:
                    del self.rels[key]
        self.writes.append(("delete_nodes", label, len(uuids)))
        return n

    def prune_outgoing(self, label, uuids, rel_types=None):
        uuids = set(uuids)
        doomed = [k for k in self.rels if k[0] in uuids and (not rel_types or k[1] in rel_types)]
        for k in doomed:
            del self.rels[k]
        self.writes.append(("prune_outgoing", label, len(uuids)))
        return len(doomed)

    def set_properties(self, label, rows):
        n = 0
        for row in rows:
            node = self.nodes.get(row["uuid"])
            if node is not None:
                node["props"].update(row["props"])
                n += 1
        self.writes.append(("set_properties", label, len(rows)))
        return n

    # -------- reads --------

    def vector_query(self, index_name, embedding, top_k, *, min_score=0.0):
        label, field_name = self.vector_indexes[index_name]
        scored = []
        for n in self.nodes.values():
            vec = n["props"].get(field_name)
            if label not in n["labels"] or vec is None:
                continue
            cos = sum(a * b for a, b in zip(vec, embedding))
            score = (1.0 + cos) / 2.0
            if score >= min_score:
                scored.append((dict(n["props"]), list(n["labels"]), score))
        scored.sort(key=lambda t: (-t[2], t[0]["uuid"]))
        return scored[:top_k]

    def transaction(self, fn, *args, **kwargs):
        return fn(_FakeTx(self), *args, **kwargs)

    read_only_transaction = transaction

    def run(self, query, params=None, *, database=None):
        params = dict(params or {})
        if "MERGE (c:ChangeRecord" in query:
            rec = params["rec"]
            if rec["entityId"] in self.fail_change_for:
                raise RuntimeError(f"change record for {rec['entityId']} rejected")
            self.change_records.setdefault(rec["changeId"], dict(rec))
            return []
        if "MATCH (c:ChangeRecord" in query:
            return [
                {"record": dict(r)}
                for r in self.change_records.values()
                if r["entityId"] == params["entityId"]
            ]
        m = _EXPAND_RE.search(query)
        if m:
            return self._expand(*m.groups(), params["uuid"])
        m = re.match(r"MATCH \(n:`(\w+)`\)", query)
        if m and "RETURN n {.*} AS node" in query:
            return self._filter(m.group(1), query, params)
        if m and "RETURN count(n) AS count" in query:
            return [{"count": len(self._filter(m.group(1), query, params))}]
        return []

    def _filter(self, label, query, params):
        """Evaluate a compiled filter query: predicates and ``EXISTS`` clauses."""
        where = next((ln[len("WHERE ") :] for ln in query.splitlines() if ln.startswith("WHERE ")), "")
        related = [m.groups() for m in _EXISTS_RE.finditer(where)]
        conds = _split_conds(_EXISTS_RE.sub("", where))
        rows = []
        for uid in sorted(self.nodes):
            n = self.nodes[uid]
            if label not in n["labels"]:
                continue
            if not all(_holds(c, n["props"], params) for c in conds):
                continue
            if not all(self._has_related(uid, params, *r) for r in related):
                continue
            rows.append({"node": dict(n["props"]), "labels": list(n["labels"])})
        skip = params.get("skip", 0) if "SKIP $skip" in query else 0
        limit = params.get("limit") if "LIMIT $limit" in query else None
        return rows[skip : None if limit is None else skip + limit]

    def _has_related(self, uid, params, left, rel_type, right, var, target, inner):
        conds = _split_conds(inner or "")
        for s, t, d in self.rels:
            if t != rel_type:
                continue
            if left == "<-":
                other = s if d == uid else None
            elif right == "->":
                other = d if s == uid else None
            else:
                other = d if s == uid else s if d == uid else None
            if other is None:
                continue
            node = self.nodes[other]
            if target and target not in node["labels"]:
                continue
            if all(_holds(c, node["props"], params, var) for c in conds):
                return True
        return False

    def _expand(self, label, left, rel_type, depth, right, uuid):
        """Breadth-first variable-length expansion from one node."""
        if uuid not in self.nodes or label not in self.nodes[uuid]["labels"]:
            return []
        if left == "<-":
            direction = "incoming"
        elif right == "->":
            direction = "outgoing"
        else:
            direction = "both"

        def neighbours(u):
            for s, t, d in self.rels:
                if t != rel_type:
                    continue
                if direction in ("outgoing", "both") and s == u:
                    yield d
                if direction in ("incoming", "both") and d == u:
                    yield s

        seen = {uuid: 0}
        frontier = [uuid]
        for dist in range(1, int(depth) + 1):
            nxt = []
            for u in frontier:
                for v in neighbours(u):
                    if v not in seen:
                        seen[v] = dist
                        nxt.append(v)
            frontier = nxt
        rows = [
            {"node": dict(self.nodes[u]["props"]), "distance": d}
            for u, d in seen.items()
            if u != uuid
        ]
        return sorted(rows, key=lambda r: (r["distance"], r["node"]["uuid"]))

    def stats(self):
        counts: dict[str, int] = {}
        for n in self.nodes.values():
            for lbl in n["labels"]:
                counts[lbl] = counts.get(lbl, 0) + 1
        rel_counts: dict[str, int] = {}
        for _, t, _ in self.rels:
            rel_counts[t] = rel_counts.get(t, 0) + 1
        return {
            "total_nodes": len(self.nodes),
            "total_relationships": len(self.rels),
            "node_counts": counts,
            "relationship_counts": rel_counts,
        }

    def close(self):
        self.closed = True

    # -------- test helpers --------

    def by_name(self, label, name):
        return [n["props"] for n in self.nodes.values() if label in n["labels"] and n["props"].get("name") == name]

    def rel_types(self):
        return sorted(t for _, t, _ in self.rels)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> FakeGraphStore:
    return FakeGraphStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def make_repo(tmp_path):
    def _make(files: dict, name: str = "repo") -> Path:
        return write_repo(tmp_path / name, files)

    return _make
