"""Queue overflow handling strategies for span buffering."""

from __future__ import annotations

import threading
import time
from typing import Deque, Optional

from callspan.tracer.span import SpanRecord


class DropPolicy:
    """Base policy deciding how to handle span queue overflow."""

    def handle(
        self,
        queue: Deque[SpanRecord],
        record: SpanRecord,
        max_size: int,
        lock: Optional[threading.Lock] = None,
    ) -> bool:
        """
        Apply the drop policy.

        Called with ``lock`` held. Returns True if the record was enqueued,
        False if a record (the incoming one or an evicted one) was dropped.
        """
        raise NotImplementedError


class DropOldestPolicy(DropPolicy):
    """Drop the oldest span to make room for a new one."""

    def handle(self, queue, record, max_size, lock=None) -> bool:
        if len(queue) < max_size:
            queue.append(record)
            return True
        if queue:
            queue.popleft()
            queue.append(record)
        return False


class DropNewestPolicy(DropPolicy):
    """Drop the incoming span if the queue is full."""

    def handle(self, queue, record, max_size, lock=None) -> bool:
        if len(queue) < max_size:
            queue.append(record)
            return True
        return False


class BoundedBlockPolicy(DropPolicy):
    """
    Wait up to ``max_block_ms`` for the exporter to make room, then drop the
    incoming span.

    The queue lock is released while waiting so the export worker can drain.
    """

    def __init__(self, max_block_ms: int = 100) -> None:
        if max_block_ms < 0:
            raise ValueError("max_block_ms must be >= 0")
        self.max_block_ms = max_block_ms

    def handle(self, queue, record, max_size, lock=None) -> bool:
        if len(queue) < max_size:
            queue.append(record)
            return True

        if lock is not None and self.max_block_ms > 0:
            deadline = time.monotonic() + self.max_block_ms / 1000.0
            while time.monotonic() < deadline:
                lock.release()
                try:
                    time.sleep(0.001)
                finally:
                    lock.acquire()
                if len(queue) < max_size:
                    queue.append(record)
                    return True
        return False


DEFAULT_DROP_POLICY = DropOldestPolicy()


def drop_policy_from_name(name: str, max_block_ms: int = 100) -> DropPolicy:
    """Resolve a configured overflow policy name."""
    name = (name or "drop_oldest").lower()
    if name == "drop_oldest":
        return DropOldestPolicy()
    if name == "drop_newest":
        return DropNewestPolicy()
    if name == "block":
        return BoundedBlockPolicy(max_block_ms)
    raise ValueError(f"Unknown overflow policy: {name}")
