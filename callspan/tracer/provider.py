"""TracerProvider using OpenTelemetry SDK."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from opentelemetry.sdk.resources import Resource as OTelResource
from opentelemetry.sdk.trace import SpanProcessor as OTelSpanProcessor
from opentelemetry.sdk.trace import TracerProvider as OTelTracerProvider
from opentelemetry.sdk.trace.sampling import ALWAYS_ON, Sampler as OTelSampler

if TYPE_CHECKING:
    from callspan.tracer.span import Span, SpanRecord
    from callspan.tracer.tracer import Tracer

logger = logging.getLogger(__name__)


class SpanProcessor:
    """
    Base span processor interface.

    Processors receive an immutable SpanRecord after the span has ended.
    """

    def on_end(self, record: "SpanRecord") -> None:
        """Called once per ended span."""
        pass

    def shutdown(self) -> None:
        """Shutdown the processor."""
        pass

    def force_flush(self, timeout: Optional[float] = None) -> None:
        """Force flush any pending spans."""
        pass


class TracerProvider:
    """
    TracerProvider using OpenTelemetry SDK.

    The OTel sampler defaults to ALWAYS_ON. Instrumented call sites are
    decided by the SamplingPolicy before a span is requested.
    """

    def __init__(
        self,
        resource: Optional[Dict[str, str]] = None,
        sampler: Optional[OTelSampler] = None,
    ) -> None:
        otel_resource = OTelResource.create(resource or {})
        self._otel_provider = OTelTracerProvider(resource=otel_resource, sampler=sampler or ALWAYS_ON)

        self.resource = resource or {}

        self._processors: List[SpanProcessor] = []
        self._tracers: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._shutdown = False

    def get_tracer(self, name: str) -> "Tracer":
        """Get (or create) the tracer for an instrumentation scope."""
        with self._lock:
            tracer = self._tracers.get(name)
            if tracer is None:
                from callspan.tracer.tracer import Tracer
                tracer = Tracer(self, name)
                self._tracers[name] = tracer
            return tracer

    def add_span_processor(self, processor: Any) -> None:
        """
        Add a span processor.

        OTel SpanProcessors are registered on the underlying SDK provider;
        anything else is treated as a callspan processor receiving SpanRecords.
        """
        if isinstance(processor, OTelSpanProcessor):
            self._otel_provider.add_span_processor(processor)
        else:
            with self._lock:
                self._processors.append(processor)

    def _notify_span_end(self, span: "Span") -> None:
        if self._shutdown or not self._processors:
            return
        try:
            record = span.to_record()
        except Exception:
            logger.warning("Failed to snapshot span %s", span.name, exc_info=True)
            return
        for processor in list(self._processors):
            try:
                processor.on_end(record)
            except Exception:
                # Processors must never fail the instrumented call
                logger.warning("Span processor %r failed", processor, exc_info=True)

    def force_flush(self, timeout: Optional[float] = None) -> None:
        """Force flush all processors."""
        self._otel_provider.force_flush(timeout_millis=int(timeout * 1000) if timeout else 30000)
        for processor in list(self._processors):
            try:
                processor.force_flush(timeout=timeout)
            except Exception:
                logger.warning("Span processor %r failed to flush", processor, exc_info=True)

    def shutdown(self) -> None:
        """Shutdown the provider and all processors."""
        if self._shutdown:
            return
        for processor in list(self._processors):
            try:
                processor.shutdown()
            except Exception:
                logger.warning("Span processor %r failed to shut down", processor, exc_info=True)
        self._shutdown = True
        self._otel_provider.shutdown()
