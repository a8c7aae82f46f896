"""In-memory exporter for tests and local inspection."""

from __future__ import annotations

import threading
from typing import Iterable, List

from callspan.tracer.span import SpanRecord


class InMemoryExporter:
    """Keeps every exported span record in a list."""

    def __init__(self) -> None:
        self._records: List[SpanRecord] = []
        self._lock = threading.Lock()
        self._stopped = False

    def export(self, records: Iterable[SpanRecord]) -> bool:
        if self._stopped:
            return False
        with self._lock:
            self._records.extend(records)
        return True

    def get_finished_spans(self) -> List[SpanRecord]:
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def shutdown(self) -> None:
        self._stopped = True
