"""Tests for bounded batching export, drop policies and the retry budget."""

import threading
import time
import unittest
from collections import deque

import pytest
from opentelemetry.trace import SpanKind

from callspan.errors import ExportError
from callspan.exporter import InMemoryExporter
from callspan.processors import (
    BatchSpanProcessor,
    BoundedBlockPolicy,
    DropNewestPolicy,
    DropOldestPolicy,
    drop_policy_from_name,
)
from callspan.tracer import SpanRecord, SpanStatus


def make_record(i):
    return SpanRecord(
        trace_id="4bf92f3577b34da6a3ce929d0e0e4736",
        span_id=f"{i + 1:016x}",
        parent_span_id=None,
        name=f"span-{i}",
        kind=SpanKind.INTERNAL,
        attributes={},
        status=SpanStatus.OK,
        status_description=None,
        start_time_ns=0,
        end_time_ns=1,
    )


class BlockingExporter(InMemoryExporter):
    """Blocks inside export until released, so the queue can be filled deterministically."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def export(self, records):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().export(records)


class FlakyExporter:
    def __init__(self, failures, raise_error=False):
        self.failures = failures
        self.raise_error = raise_error
        self.calls = 0
        self.exported = []

    def export(self, records):
        self.calls += 1
        if self.calls <= self.failures:
            if self.raise_error:
                raise ExportError("collector unavailable")
            return False
        self.exported.extend(records)
        return True


class TestDropPolicies(unittest.TestCase):
    def test_drop_oldest(self):
        queue = deque([1, 2])
        self.assertFalse(DropOldestPolicy().handle(queue, 3, 2))
        self.assertEqual(list(queue), [2, 3])

    def test_drop_newest(self):
        queue = deque([1, 2])
        self.assertFalse(DropNewestPolicy().handle(queue, 3, 2))
        self.assertEqual(list(queue), [1, 2])

    def test_room_available(self):
        for policy in (DropOldestPolicy(), DropNewestPolicy(), BoundedBlockPolicy(10)):
            queue = deque([1])
            self.assertTrue(policy.handle(queue, 2, 2))
            self.assertEqual(list(queue), [1, 2])

    def test_bounded_block_waits_for_room(self):
        lock = threading.Lock()
        queue = deque([1, 2])

        def drain():
            time.sleep(0.02)
            with lock:
                queue.popleft()

        drainer = threading.Thread(target=drain)
        with lock:
            drainer.start()
            enqueued = BoundedBlockPolicy(max_block_ms=1000).handle(queue, 3, 2, lock)
        drainer.join()
        self.assertTrue(enqueued)
        self.assertEqual(list(queue), [2, 3])

    def test_bounded_block_gives_up(self):
        lock = threading.Lock()
        queue = deque([1, 2])
        start = time.monotonic()
        with lock:
            enqueued = BoundedBlockPolicy(max_block_ms=20).handle(queue, 3, 2, lock)
        self.assertFalse(enqueued)
        self.assertGreaterEqual(time.monotonic() - start, 0.015)
        self.assertEqual(list(queue), [1, 2])

    def test_policy_names(self):
        self.assertIsInstance(drop_policy_from_name("drop_oldest"), DropOldestPolicy)
        self.assertIsInstance(drop_policy_from_name("drop_newest"), DropNewestPolicy)
        self.assertEqual(drop_policy_from_name("block", 5).max_block_ms, 5)
        with self.assertRaises(ValueError):
            drop_policy_from_name("drop_everything")


class TestBatchSpanProcessor(unittest.TestCase):
    def _fill_while_blocked(self, drop_policy):
        exporter = BlockingExporter()
        processor = BatchSpanProcessor(
            exporter,
            max_queue_size=2,
            max_export_batch_size=2,
            schedule_delay_millis=60000,
            drop_policy=drop_policy,
        )
        processor.on_end(make_record(0))
        processor.on_end(make_record(1))
        self.assertTrue(exporter.entered.wait(timeout=5))

        # Worker is stuck exporting the first batch; the queue can hold two more
        for i in range(2, 7):
            processor.on_end(make_record(i))

        exporter.release.set()
        processor.force_flush(timeout=5)
        stats = processor.get_stats()
        processor.shutdown()
        return exporter, stats

    def test_overflow_drop_newest(self):
        exporter, stats = self._fill_while_blocked(DropNewestPolicy())
        names = [r.name for r in exporter.get_finished_spans()]
        self.assertEqual(names, ["span-0", "span-1", "span-2", "span-3"])
        self.assertEqual(stats["dropped_spans"], 3)
        self.assertEqual(stats["exported_spans"], 4)

    def test_overflow_drop_oldest(self):
        exporter, stats = self._fill_while_blocked(DropOldestPolicy())
        names = [r.name for r in exporter.get_finished_spans()]
        self.assertEqual(names, ["span-0", "span-1", "span-5", "span-6"])
        self.assertEqual(stats["dropped_spans"], 3)

    def test_retry_budget_exhausted(self):
        exporter = FlakyExporter(failures=10)
        processor = BatchSpanProcessor(
            exporter,
            schedule_delay_millis=60000,
            max_export_retries=2,
            retry_backoff_millis=1,
        )
        processor.on_end(make_record(0))
        processor.force_flush(timeout=5)

        stats = processor.get_stats()
        self.assertEqual(exporter.calls, 3)
        self.assertEqual(stats["dropped_batches"], 1)
        self.assertEqual(stats["dropped_spans"], 1)
        self.assertEqual(stats["export_retries"], 2)
        self.assertEqual(stats["exported_spans"], 0)
        processor.shutdown()

    def test_exporter_exception_is_retried(self):
        exporter = FlakyExporter(failures=1, raise_error=True)
        processor = BatchSpanProcessor(
            exporter,
            schedule_delay_millis=60000,
            max_export_retries=3,
            retry_backoff_millis=1,
        )
        processor.on_end(make_record(0))
        processor.force_flush(timeout=5)

        stats = processor.get_stats()
        self.assertEqual(len(exporter.exported), 1)
        self.assertEqual(stats["dropped_batches"], 0)
        self.assertEqual(stats["export_retries"], 1)
        processor.shutdown()

    def test_batch_size_triggers_export(self):
        exporter = InMemoryExporter()
        processor = BatchSpanProcessor(exporter, max_export_batch_size=3, schedule_delay_millis=60000)
        for i in range(3):
            processor.on_end(make_record(i))

        deadline = time.monotonic() + 5
        while len(exporter.get_finished_spans()) < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        self.assertEqual(len(exporter.get_finished_spans()), 3)
        processor.shutdown()

    def test_shutdown_flushes_and_stops(self):
        exporter = InMemoryExporter()
        processor = BatchSpanProcessor(exporter, schedule_delay_millis=60000)
        processor.on_end(make_record(0))
        processor.shutdown()
        self.assertEqual(len(exporter.get_finished_spans()), 1)

        processor.on_end(make_record(1))
        self.assertEqual(processor.get_stats()["queued_spans"], 0)
        processor.shutdown()

    def test_invalid_sizes(self):
        with self.assertRaises(ValueError):
            BatchSpanProcessor(InMemoryExporter(), max_queue_size=0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
