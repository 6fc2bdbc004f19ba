#!/usr/bin/env python3
"""
graphkg_schema.py

CLI entry point: live graph → GraphSchema (JSON)

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from graph_kg.config import load_ingestion_config
from graph_kg.errors import CONNECTIVITY_ERRORS
from graph_kg.kg import GraphKG
from graph_kg.log import configure_logging
from graph_kg.settings import GraphKGSettings


def main() -> None:
    p = argparse.ArgumentParser(description="Introspect the graph schema and print it as JSON.")
    p.add_argument("--database", default=None, help="Named database (default: server default)")
    p.add_argument("--config", default=None, help="Ingestion config YAML for vector-index fallbacks")
    p.add_argument("--sample-size", type=int, default=100, help="Nodes sampled per label (default: 100)")
    p.add_argument("--out", default=None, help="Write JSON to this file instead of stdout")
    args = p.parse_args()

    settings = GraphKGSettings()
    configure_logging(settings.log_level)
    config = load_ingestion_config(args.config) if args.config else None

    with GraphKG(settings, config=config) as kg:
        try:
            schema = kg.introspect(args.database, sample_size=args.sample_size)
        except CONNECTIVITY_ERRORS as exc:
            print(f"ERROR: cannot reach {settings.neo4j_uri}: {exc}", file=sys.stderr)
            sys.exit(3)

    text = json.dumps(schema.to_dict(), indent=2, default=str)
    if args.out:
        Path(args.out).write_text(text + "\n", encoding="utf-8")
        print(f"OK: wrote {args.out}")
    else:
        print(text)


if __name__ == "__main__":
    main()
