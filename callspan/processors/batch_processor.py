"""Batching span processor with bounded queue and background flush."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from callspan.processors.drop_policy import DEFAULT_DROP_POLICY, DropPolicy
from callspan.tracer.provider import SpanProcessor
from callspan.tracer.span import SpanRecord

logger = logging.getLogger(__name__)


class BatchSpanProcessor(SpanProcessor):
    """
    Batch span processor that queues ended span records for export.

    A daemon worker exports a batch when ``max_export_batch_size`` records are
    waiting or every ``schedule_delay_millis``, whichever comes first. A failed
    export is retried ``max_export_retries`` times with exponential backoff
    before the batch is dropped. Nothing here ever raises to the caller.
    """

    def __init__(
        self,
        exporter=None,
        *,
        max_queue_size: int = 5000,
        max_export_batch_size: int = 512,
        schedule_delay_millis: int = 5000,
        max_export_retries: int = 3,
        retry_backoff_millis: int = 100,
        drop_policy: Optional[DropPolicy] = None,
    ) -> None:
        if max_queue_size <= 0 or max_export_batch_size <= 0:
            raise ValueError("max_queue_size and max_export_batch_size must be positive")
        self.exporter = exporter
        self.max_queue_size = max_queue_size
        self.max_export_batch_size = min(max_export_batch_size, max_queue_size)
        self.schedule_delay = schedule_delay_millis / 1000.0
        self.max_export_retries = max(0, max_export_retries)
        self.retry_backoff = retry_backoff_millis / 1000.0
        self.drop_policy = drop_policy or DEFAULT_DROP_POLICY

        self._queue: Deque[SpanRecord] = deque()
        self._lock = threading.Lock()
        # Serializes drain+export so force_flush waits for an in-flight batch
        self._export_lock = threading.Lock()
        self._event = threading.Event()
        self._shutdown = False

        self._dropped_spans = 0
        self._dropped_batches = 0
        self._exported_spans = 0
        self._export_retries = 0

        self._worker = threading.Thread(target=self._worker_loop, name="callspan-batch-export", daemon=True)
        self._worker.start()

    def on_end(self, record: SpanRecord) -> None:
        """Queue an ended span record; applies the drop policy when full."""
        if self._shutdown:
            return

        with self._lock:
            if len(self._queue) >= self.max_queue_size:
                self._event.set()
            enqueued = self.drop_policy.handle(self._queue, record, self.max_queue_size, self._lock)
            if not enqueued:
                self._dropped_spans += 1
                logger.debug("Export queue full, dropped a span (total dropped: %d)", self._dropped_spans)
            if len(self._queue) >= self.max_export_batch_size:
                self._event.set()

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        """Export everything queued. Returns False if the timeout was hit first."""
        deadline = time.monotonic() + timeout if timeout else None
        while True:
            flushed_any = self._flush_once()
            if not flushed_any:
                return True
            if deadline and time.monotonic() >= deadline:
                return False

    def shutdown(self) -> None:
        """Stop the worker, flush what is left and shut the exporter down."""
        if self._shutdown:
            return
        self._shutdown = True
        self._event.set()
        self._worker.join(timeout=max(self.schedule_delay * 2, 1.0))
        self.force_flush()
        shutdown = getattr(self.exporter, "shutdown", None)
        if callable(shutdown):
            try:
                shutdown()
            except Exception:
                logger.warning("Exporter %r failed to shut down", self.exporter, exc_info=True)

    def get_stats(self) -> Dict[str, Any]:
        """Get queue and export statistics."""
        with self._lock:
            queued = len(self._queue)
        return {
            "queued_spans": queued,
            "exported_spans": self._exported_spans,
            "dropped_spans": self._dropped_spans,
            "dropped_batches": self._dropped_batches,
            "export_retries": self._export_retries,
        }

    # Internal
    def _worker_loop(self) -> None:
        """Background worker that periodically flushes spans."""
        while not self._shutdown:
            self._event.wait(timeout=self.schedule_delay)
            self._event.clear()
            while self._flush_once() and not self._shutdown:
                with self._lock:
                    if len(self._queue) < self.max_export_batch_size:
                        break

    def _flush_once(self) -> bool:
        """Flush one batch of spans."""
        with self._export_lock:
            records = self._drain_queue(self.max_export_batch_size)
            if not records:
                return False
            self._export(records)
            return True

    def _drain_queue(self, limit: int) -> List[SpanRecord]:
        """Drain records from queue up to limit."""
        items: List[SpanRecord] = []
        with self._lock:
            while self._queue and len(items) < limit:
                items.append(self._queue.popleft())
        return items

    def _export(self, records: List[SpanRecord]) -> None:
        if self.exporter is None:
            return

        delay = self.retry_backoff
        for attempt in range(self.max_export_retries + 1):
            try:
                if self.exporter.export(records) is not False:
                    self._exported_spans += len(records)
                    return
                logger.warning("Exporter %r rejected a batch of %d spans", self.exporter, len(records))
            except Exception:
                logger.warning("Exporter %r raised while exporting %d spans", self.exporter, len(records), exc_info=True)

            if attempt < self.max_export_retries:
                self._export_retries += 1
                time.sleep(delay)
                delay *= 2

        self._dropped_batches += 1
        self._dropped_spans += len(records)
        logger.warning(
            "Dropping batch of %d spans after %d export attempts",
            len(records),
            self.max_export_retries + 1,
        )
