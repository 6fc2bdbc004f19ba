#!/usr/bin/env python3
"""
graphkg_query.py

Query the knowledge graph from the command line:
- structural filters (--where)
- semantic retrieval (--semantic / --index)
- relationship expansion (--expand)

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import argparse
import json
import sys

from graph_kg.errors import CONNECTIVITY_ERRORS, GraphKGError
from graph_kg.kg import GraphKG
from graph_kg.log import configure_logging
from graph_kg.query import Query, SearchResults
from graph_kg.settings import GraphKGSettings


def parse_value(raw: str) -> object:
    """``"42"`` -> 42, ``"true"`` -> True, ``"a,b"`` -> ["a", "b"], else the string."""
    if "," in raw:
        return [parse_value(v) for v in raw.split(",") if v]
    lowered = raw.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        return raw


def build_query(q: Query, args: argparse.Namespace) -> Query:
    for cond in args.where or []:
        key, sep, raw = cond.partition("=")
        if not sep:
            raise GraphKGError(f"--where expects FIELD=VALUE or FIELD:OP=VALUE, got {cond!r}")
        field, _, op = key.partition(":")
        value = parse_value(raw)
        q = q.where({field: {op: value}} if op else {field: value})

    if args.semantic:
        q = q.semantic(args.semantic, vector_index=args.index, top_k=args.top_k, min_score=args.min_score)

    for spec in args.expand or []:
        rel, _, depth = spec.partition(":")
        q = q.expand(rel, depth=int(depth or 1), direction=args.direction)

    for field in args.order_by or []:
        desc = field.startswith("-")
        q = q.order_by(field.lstrip("-"), descending=desc)

    if args.offset:
        q = q.offset(args.offset)
    return q.limit(args.limit)


def print_results(results: SearchResults) -> None:
    for w in results.warnings:
        print(f"WARNING: {w}", file=sys.stderr)
    print(f"path={results.path}  results={len(results)}")
    for i, r in enumerate(results, 1):
        e = r.entity
        name = e.get("name") or e.get("path") or e.get("uuid")
        where = f"{e.get('file')}:{e.get('startLine')}" if e.get("file") else ""
        print(f"{i:>3}. {r.score:.3f}  {name}  {e.get('type', '')}  {where}")
        for rel in r.related:
            rn = rel.entity.get("name") or rel.entity.get("path") or rel.uuid
            print(f"       {rel.relationship_type}[{rel.distance}] {rn}")


def main() -> None:
    p = argparse.ArgumentParser(description="Filter / semantic / expand query over the graph.")
    p.add_argument("--label", default="Scope", help="Target label (default: Scope)")
    p.add_argument("--where", action="append", help="FIELD=VALUE or FIELD:OP=VALUE (repeatable)")
    p.add_argument("--semantic", default=None, help="Natural-language query text")
    p.add_argument("--index", default=None, help="Vector index for --semantic (e.g. scopeEmbeddings)")
    p.add_argument("--top-k", type=int, default=10)
    p.add_argument("--min-score", type=float, default=0.0)
    p.add_argument("--expand", action="append", help="REL[:DEPTH] (repeatable)")
    p.add_argument("--direction", choices=["outgoing", "incoming", "both"], default="outgoing")
    p.add_argument("--order-by", action="append", help="FIELD or -FIELD (repeatable)")
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--offset", type=int, default=0)
    p.add_argument("--count", action="store_true", help="Only print the number of matches")
    p.add_argument("--explain", action="store_true", help="Print the query plan instead of results")
    p.add_argument("--json", action="store_true", help="Print results as JSON")
    args = p.parse_args()

    settings = GraphKGSettings()
    configure_logging(settings.log_level)

    with GraphKG(settings) as kg:
        try:
            q = build_query(kg.query(args.label), args)
            if args.count:
                print(q.count())
                return
            if args.explain:
                print(json.dumps(q.explain().to_dict(), indent=2))
                return
            results = q.execute()
        except CONNECTIVITY_ERRORS as exc:
            print(f"ERROR: cannot reach {settings.neo4j_uri}: {exc}", file=sys.stderr)
            sys.exit(3)
        except GraphKGError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            sys.exit(2)

    if args.json:
        print(
            json.dumps(
                {"path": results.path, "warnings": results.warnings, "results": [r.to_dict() for r in results]},
                indent=2,
                default=str,
            )
        )
    else:
        print_results(results)


if __name__ == "__main__":
    main()
