#!/usr/bin/env python3
"""
file_watcher.py

Watches a source tree with ``watchdog`` and feeds changed paths into an
:class:`~graph_kg.ingestion_queue.IngestionQueue`.

    filesystem events -> include / exclude filter -> queue.add_file
                      -> debounced IngestionQueue run -> GraphKG.ingest

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from fnmatch import fnmatch
from pathlib import Path, PurePosixPath

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from graph_kg.ingestion_queue import IngestionQueue
from graph_kg.parser import SKIP_DIRS

DEFAULT_INCLUDE = ("*.py",)


class _QueueHandler(FileSystemEventHandler):
    """Translates watchdog events into :meth:`FileWatcher.handle` calls."""

    def __init__(self, watcher: "FileWatcher") -> None:
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.handle(event.src_path, "add")

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.handle(event.src_path, "change")

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.handle(event.src_path, "unlink")

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.handle(event.src_path, "unlink")
            self.watcher.handle(event.dest_path, "add")


class FileWatcher:
    """
    Incremental re-ingestion on file changes.

    Example::

        queue = IngestionQueue(lambda: kg.ingest(repo), batch_interval=1.0)
        with FileWatcher(repo, queue):
            ...

    :param root: Directory to watch (recursively).
    :param queue: Queue receiving accepted paths.
    :param include: Glob patterns a path must match, tried against the file
        name and the root-relative path.
    :param exclude: Glob patterns rejecting a path; a pattern matching any
        directory component rejects everything below it. Hidden files and
        directories are always skipped.
    :param on_file_change: Called with ``(path, event_type)`` for every
        accepted event; ``event_type`` is ``add``, ``change`` or ``unlink``.
    :param observer_factory: Builds the watchdog observer.
    """

    def __init__(
        self,
        root: str | Path,
        queue: IngestionQueue,
        *,
        include: Iterable[str] = DEFAULT_INCLUDE,
        exclude: Iterable[str] = tuple(sorted(SKIP_DIRS)),
        on_file_change: Callable[[str, str], None] | None = None,
        observer_factory: Callable[[], Observer] = Observer,
    ) -> None:
        self.root = Path(root).resolve()
        self.queue = queue
        self.include = tuple(include)
        self.exclude = tuple(exclude)
        self.on_file_change = on_file_change
        self._observer_factory = observer_factory
        self._observer = None

        if not self.include:
            raise ValueError("FileWatcher needs at least one include pattern")

    # ------------------------------------------------------------------

    def matches(self, path: str | Path) -> bool:
        """True if *path* lies under the root and passes the filters."""
        try:
            rel = PurePosixPath(Path(path).resolve().relative_to(self.root).as_posix())
        except ValueError:
            return False
        if any(part.startswith(".") for part in rel.parts):
            return False
        for part in rel.parts[:-1]:
            if any(fnmatch(part, pat) for pat in self.exclude):
                return False
        if any(fnmatch(rel.name, pat) or fnmatch(str(rel), pat) for pat in self.exclude):
            return False
        return any(fnmatch(rel.name, pat) or fnmatch(str(rel), pat) for pat in self.include)

    def handle(self, path: str | Path, event_type: str = "change") -> bool:
        """
        Route one filesystem event.

        :return: True if the path was handed to the queue.
        """
        if not self.matches(path):
            return False
        logger.debug("{} {}", event_type, path)
        if self.on_file_change is not None:
            self.on_file_change(str(path), event_type)
        self.queue.add_file(str(path))
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Start the observer thread."""
        if self._observer is not None:
            raise RuntimeError("watcher already started")
        if not self.root.is_dir():
            raise FileNotFoundError(f"watch root not found: {self.root}")
        observer = self._observer_factory()
        observer.schedule(_QueueHandler(self), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("watching {} ({})", self.root, ", ".join(self.include))

    def stop(self) -> None:
        """Stop watching, run any pending batch, then stop the queue."""
        if self._observer is None:
            return
        observer, self._observer = self._observer, None
        observer.stop()
        observer.join()
        try:
            self.queue.flush()
        finally:
            self.queue.stop()
        logger.info("stopped watching {}", self.root)

    def __enter__(self) -> "FileWatcher":
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"FileWatcher(root={str(self.root)!r}, watching={self.is_watching})"
