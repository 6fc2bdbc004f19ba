#!/usr/bin/env python3
"""
mcp_server.py — graph-kg MCP Server

Exposes graph-kg ingestion and querying as Model Context Protocol (MCP)
tools, so MCP-compatible agents can query a codebase graph directly.

Tools
-----
query_entities(label, where, semantic, vector_index, top_k, expand, depth, limit)
    Filter / semantic / expand query.  Returns JSON results.

ingest_repo(path, dry_run)
    Incrementally synchronize the graph with a source tree.  Returns the
    ingestion report as JSON.

entity_history(entity_id)
    Change history of one entity, oldest first.  Returns JSON.

graph_schema()
    Labels, relationship types, indexes and vector indexes.  Returns JSON.

graph_stats()
    Node and relationship counts.  Returns JSON.

Usage
-----
Install the ``mcp`` extra, set ``NEO4J_URI`` / ``NEO4J_USERNAME`` /
``NEO4J_PASSWORD``, then run::

    python -m graph_kg mcp --repo /path/to/repo

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# mcp is an optional dependency
# ---------------------------------------------------------------------------

try:
    from mcp.server.fastmcp import FastMCP
except ImportError:
    print(
        "ERROR: 'mcp' package not found.\n"
        "Install it with:  pip install 'graph-kg[mcp]'",
        file=sys.stderr,
    )
    sys.exit(1)

from graph_kg.config import load_ingestion_config
from graph_kg.errors import GraphKGError
from graph_kg.kg import GraphKG
from graph_kg.log import configure_logging
from graph_kg.settings import GraphKGSettings

# ---------------------------------------------------------------------------
# Global state, initialised in main() before the server starts
# ---------------------------------------------------------------------------

_kg: GraphKG | None = None
_repo: Path | None = None


def _get_kg() -> GraphKG:
    if _kg is None:
        raise RuntimeError("GraphKG not initialised.  Run the server via 'python -m graph_kg mcp'")
    return _kg


def _dumps(obj: object) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# MCP server
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "graph-kg",
    instructions=(
        "graph-kg answers questions about a codebase stored as a property graph. "
        "Use query_entities with 'semantic' text and vector_index 'scopeEmbeddings' "
        "to find relevant functions, and 'expand' (e.g. CONSUMES) to pull in callees."
    ),
)


@mcp.tool()
def query_entities(
    label: str = "Scope",
    where: str = "",
    semantic: str = "",
    vector_index: str = "scopeEmbeddings",
    top_k: int = 10,
    expand: str = "",
    depth: int = 1,
    limit: int = 10,
) -> str:
    """
    Filter / semantic / expand query over one label.

    :param label: Target label, e.g. ``Scope`` or ``File``.
    :param where: JSON object of predicates, e.g. ``{"type": "function"}``
                  or ``{"startLine": {"gte": 10}}``.
    :param semantic: Natural-language text for vector search (optional).
    :param vector_index: Vector index used with *semantic*.
    :param top_k: Vector neighbours requested.
    :param expand: Comma-separated relationship types to expand.
    :param depth: Expansion depth.
    :param limit: Maximum results.
    :return: JSON with ``path``, ``warnings`` and ``results``.
    """
    try:
        q = _get_kg().query(label)
        if where:
            q = q.where(json.loads(where))
        if semantic:
            q = q.semantic(semantic, vector_index=vector_index, top_k=top_k)
        for rel in (r.strip() for r in expand.split(",")):
            if rel:
                q = q.expand(rel, depth=depth)
        results = q.limit(limit).execute()
    except (GraphKGError, json.JSONDecodeError) as exc:
        return _dumps({"error": str(exc)})
    return _dumps(
        {
            "path": results.path,
            "warnings": results.warnings,
            "results": [r.to_dict() for r in results],
        }
    )


@mcp.tool()
def ingest_repo(path: str = "", dry_run: bool = False) -> str:
    """
    Incrementally synchronize the graph with a source tree.

    :param path: Source root (default: the server's ``--repo``).
    :param dry_run: Report the diff without writing.
    :return: JSON ingestion report.
    """
    root = Path(path).resolve() if path else _repo
    try:
        report = _get_kg().ingest(root, dry_run=dry_run)
    except GraphKGError as exc:
        return _dumps({"error": str(exc)})
    return _dumps(report.to_dict())


@mcp.tool()
def entity_history(entity_id: str) -> str:
    """
    Change history of one entity (created / updated / deleted), oldest first.

    :param entity_id: Entity ``uuid``.
    """
    return _dumps([r.to_dict() for r in _get_kg().history(entity_id)])


@mcp.tool()
def graph_schema() -> str:
    """Labels, relationship types, indexes, constraints and vector indexes."""
    return _dumps(_get_kg().introspect().to_dict())


@mcp.tool()
def graph_stats() -> str:
    """
    Return node counts by label and relationship counts by type.

    :return: JSON string with total_nodes, total_relationships, node_counts,
             relationship_counts.
    """
    return _dumps(_get_kg().stats())


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _parse_args(argv: list | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="graphkg-mcp",
        description="graph-kg MCP server — exposes graph query tools to AI agents.",
    )
    p.add_argument("--repo", default=".", help="Default source root for ingest_repo (default: .)")
    p.add_argument("--config", default=None, help="Ingestion config YAML (default: built-in code config)")
    p.add_argument(
        "--transport",
        choices=["stdio", "sse"],
        default="stdio",
        help="MCP transport: stdio (default) or sse (HTTP)",
    )
    return p.parse_args(argv)


def main(argv: list | None = None) -> None:
    """Initialise GraphKG and start the MCP server on the requested transport."""
    global _kg, _repo

    args = _parse_args(argv)
    settings = GraphKGSettings()
    configure_logging(settings.log_level)

    _repo = Path(args.repo).resolve()
    config = load_ingestion_config(args.config) if args.config else None

    print(
        f"graph-kg MCP server starting\n"
        f"  repo     : {_repo}\n"
        f"  neo4j    : {settings.neo4j_uri}\n"
        f"  transport: {args.transport}",
        file=sys.stderr,
    )

    _kg = GraphKG(settings, config=config)
    try:
        mcp.run(transport=args.transport)
    finally:
        _kg.close()


if __name__ == "__main__":
    main()
