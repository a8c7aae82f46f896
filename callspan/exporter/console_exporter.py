"""Console exporter for developer visibility."""

from __future__ import annotations

import sys
from typing import Iterable

from callspan.tracer.span import SpanRecord


class ConsoleExporter:
    """Simple exporter that prints span records to stdout (or provided stream)."""

    def __init__(self, stream=None) -> None:
        self.stream = stream or sys.stdout

    def export(self, records: Iterable[SpanRecord]) -> bool:
        for record in records:
            line = (
                f"[span] name={record.name} kind={record.kind.name} trace_id={record.trace_id} "
                f"span_id={record.span_id} parent_id={record.parent_span_id or '-'} "
                f"status={record.status.name} duration_ns={record.duration_ns}"
            )
            if record.status_description:
                line += f" error={record.status_description!r}"
            if record.attributes:
                line += f" attrs={dict(record.attributes)}"
            print(line, file=self.stream)
        return True

    def shutdown(self) -> None:
        return None
