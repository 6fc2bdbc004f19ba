#!/usr/bin/env python3
"""
build_graphkg.py

CLI entry point: repo → AST → incremental diff → Neo4j

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from graph_kg.config import load_ingestion_config
from graph_kg.errors import CONNECTIVITY_ERRORS, IngestionError
from graph_kg.kg import GraphKG
from graph_kg.log import configure_logging
from graph_kg.settings import GraphKGSettings


def main() -> None:
    p = argparse.ArgumentParser(
        description="Incrementally ingest a Python repo into a Neo4j knowledge graph."
    )
    p.add_argument("--repo", default=".", help="Path to repository root (default: .)")
    p.add_argument("--config", default=None, help="Ingestion config YAML (default: built-in code config)")
    p.add_argument("--project", default=None, help="Project id scoping the diff (default: repo dir name)")
    p.add_argument("--dry-run", action="store_true", help="Report the diff without writing")
    p.add_argument("--no-embed", action="store_true", help="Skip re-embedding changed entities")
    p.add_argument("--ensure-schema", action="store_true", help="Create constraints and vector indexes first")
    p.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = p.parse_args()

    settings = GraphKGSettings()
    configure_logging(settings.log_level)
    config = load_ingestion_config(args.config) if args.config else None

    with GraphKG(settings, config=config) as kg:
        try:
            if args.ensure_schema:
                kg.ensure_schema()
            report = kg.ingest(
                Path(args.repo).resolve(),
                project_id=args.project,
                dry_run=args.dry_run,
                embed=not args.no_embed,
            )
        except IngestionError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            print(json.dumps(exc.report.to_dict(), indent=2), file=sys.stderr)
            sys.exit(2)
        except CONNECTIVITY_ERRORS as exc:
            print(f"ERROR: cannot reach {settings.neo4j_uri}: {exc}", file=sys.stderr)
            sys.exit(3)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(
            f"OK: created={report.created} updated={report.updated} "
            f"deleted={report.deleted} unchanged={report.unchanged}"
            + (" (dry run)" if report.dry_run else "")
        )


if __name__ == "__main__":
    main()
