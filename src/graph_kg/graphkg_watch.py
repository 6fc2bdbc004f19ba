#!/usr/bin/env python3
"""
graphkg_watch.py

CLI entry point: watch a repo and re-ingest it incrementally on change.

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import argparse
import sys
import threading
from pathlib import Path

from loguru import logger

from graph_kg.config import load_ingestion_config
from graph_kg.errors import CONNECTIVITY_ERRORS
from graph_kg.file_watcher import DEFAULT_INCLUDE, FileWatcher
from graph_kg.ingest import IngestionReport
from graph_kg.ingestion_queue import IngestionQueue
from graph_kg.kg import GraphKG
from graph_kg.log import configure_logging
from graph_kg.settings import GraphKGSettings


def _report(report: IngestionReport) -> None:
    print(
        f"OK: created={report.created} updated={report.updated} "
        f"deleted={report.deleted} unchanged={report.unchanged}",
        flush=True,
    )


def _error(exc: Exception) -> None:
    logger.error("ingestion run failed: {}", exc)


def main(stop_event: threading.Event | None = None) -> None:
    p = argparse.ArgumentParser(description="Watch a Python repo and keep its Neo4j knowledge graph current.")
    p.add_argument("--repo", default=".", help="Path to repository root (default: .)")
    p.add_argument("--config", default=None, help="Ingestion config YAML (default: built-in code config)")
    p.add_argument("--project", default=None, help="Project id scoping the diff (default: repo dir name)")
    p.add_argument("--interval", type=float, default=None, help="Debounce interval in seconds (default: settings)")
    p.add_argument("--include", action="append", default=None, help="Glob of files to watch (repeatable)")
    p.add_argument("--exclude", action="append", default=None, help="Glob of paths to ignore (repeatable)")
    p.add_argument("--no-embed", action="store_true", help="Skip re-embedding changed entities")
    p.add_argument("--no-initial", action="store_true", help="Do not ingest once before watching")
    args = p.parse_args()

    settings = GraphKGSettings()
    configure_logging(settings.log_level)
    config = load_ingestion_config(args.config) if args.config else None
    repo = Path(args.repo).resolve()
    stop_event = stop_event or threading.Event()

    with GraphKG(settings, config=config) as kg:

        def run() -> IngestionReport:
            return kg.ingest(repo, project_id=args.project, embed=not args.no_embed)

        try:
            if not args.no_initial:
                _report(run())
        except CONNECTIVITY_ERRORS as exc:
            print(f"ERROR: cannot reach {settings.neo4j_uri}: {exc}", file=sys.stderr)
            sys.exit(3)

        queue = IngestionQueue(
            run,
            batch_interval=args.interval if args.interval is not None else settings.batch_interval,
            on_batch_complete=_report,
            on_batch_error=_error,
        )
        watcher = FileWatcher(
            repo,
            queue,
            include=args.include or DEFAULT_INCLUDE,
            **({"exclude": args.exclude} if args.exclude else {}),
        )
        print(f"watching {repo} (Ctrl-C to stop)", flush=True)
        with watcher:
            try:
                while not stop_event.wait(0.5):
                    pass
            except KeyboardInterrupt:
                pass


if __name__ == "__main__":
    main()
