#!/usr/bin/env python3
"""
ingestion_queue.py

Debounced batching of file-change notifications into ingestion runs.

Paths reported within ``batch_interval`` seconds of each other trigger a
single run. Paths arriving while a run is in progress are queued for the
next one. Each run re-parses the whole root; the paths only decide *when*
a run happens.

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable

from loguru import logger

from graph_kg.ingest import IngestionReport


def _noop(*_: object) -> None:
    return None


class IngestionQueue:
    """
    Debouncing front-end for :meth:`~graph_kg.kg.GraphKG.ingest`.

    Example::

        queue = IngestionQueue(lambda: kg.ingest(repo), batch_interval=1.0)
        FileWatcher(repo, queue).start()

    :param run: Callable performing one ingestion run.
    :param batch_interval: Quiet period (seconds) before a batch runs.
    :param on_batch_start: Called with the number of paths in the batch.
    :param on_batch_complete: Called with the run's :class:`IngestionReport`.
    :param on_batch_error: Called with the exception of a failed run.
    """

    def __init__(
        self,
        run: Callable[[], IngestionReport],
        *,
        batch_interval: float = 1.0,
        on_batch_start: Callable[[int], None] = _noop,
        on_batch_complete: Callable[[IngestionReport], None] = _noop,
        on_batch_error: Callable[[Exception], None] = _noop,
    ) -> None:
        self._run = run
        self.batch_interval = batch_interval
        self.on_batch_start = on_batch_start
        self.on_batch_complete = on_batch_complete
        self.on_batch_error = on_batch_error

        self._lock = threading.RLock()
        self._pending: set[str] = set()
        self._queued: set[str] = set()
        self._timer: threading.Timer | None = None
        self._processing = False

    # ------------------------------------------------------------------

    def add_file(self, path: str) -> None:
        """Record a changed path and (re)start the batch timer."""
        with self._lock:
            if self._processing:
                self._queued.add(str(path))
                logger.debug("queued {} (ingestion in progress)", path)
                return
            self._pending.add(str(path))
            self._reset_timer()

    def add_files(self, paths: Iterable[str]) -> None:
        for p in paths:
            self.add_file(p)

    def flush(self) -> IngestionReport | None:
        """
        Run the pending batch now.

        Returns ``None`` if nothing is pending, or if a run is already in
        progress; the pending paths are then queued for the next run.
        """
        with self._lock:
            self._cancel_timer()
            batch = self._claim()
        if batch is None:
            return None
        return self._run_batch(batch)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def queued_count(self) -> int:
        with self._lock:
            return len(self._queued)

    @property
    def is_processing(self) -> bool:
        with self._lock:
            return self._processing

    def stop(self) -> None:
        """Cancel the timer and drop every pending and queued path."""
        with self._lock:
            self._cancel_timer()
            self._pending.clear()
            self._queued.clear()

    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _reset_timer(self) -> None:
        self._cancel_timer()
        self._timer = threading.Timer(self.batch_interval, self._on_timer)
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self) -> None:
        with self._lock:
            if self._timer is threading.current_thread():
                self._timer = None
            batch = self._claim()
        if batch is None:
            return
        try:
            self._run_batch(batch)
        except Exception as exc:
            self.on_batch_error(exc)

    def _claim(self) -> list[str] | None:
        """Take the pending paths for a run. Caller holds the lock."""
        if not self._pending:
            return None
        if self._processing:
            self._queued |= self._pending
            self._pending.clear()
            return None
        batch = sorted(self._pending)
        self._pending.clear()
        self._processing = True
        return batch

    def _run_batch(self, batch: list[str]) -> IngestionReport:
        logger.info("processing batch of {} file(s)", len(batch))
        try:
            self.on_batch_start(len(batch))
            report = self._run()
            self.on_batch_complete(report)
            return report
        finally:
            with self._lock:
                self._processing = False
                if self._queued:
                    self._pending, self._queued = self._queued, set()
                    self._reset_timer()
