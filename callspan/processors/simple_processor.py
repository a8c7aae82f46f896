"""Synchronous span processor, mostly for debugging and tests."""

from __future__ import annotations

import logging
from typing import Optional

from callspan.tracer.provider import SpanProcessor
from callspan.tracer.span import SpanRecord

logger = logging.getLogger(__name__)


class SimpleSpanProcessor(SpanProcessor):
    """Exports every span record as soon as it ends, on the ending thread."""

    def __init__(self, exporter) -> None:
        self.exporter = exporter
        self._shutdown = False

    def on_end(self, record: SpanRecord) -> None:
        if self._shutdown:
            return
        try:
            if self.exporter.export([record]) is False:
                logger.warning("Exporter %r rejected span %s", self.exporter, record.name)
        except Exception:
            logger.warning("Exporter %r failed on span %s", self.exporter, record.name, exc_info=True)

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        return True

    def shutdown(self) -> None:
        if self._shutdown:
            return
        self._shutdown = True
        shutdown = getattr(self.exporter, "shutdown", None)
        if callable(shutdown):
            shutdown()
