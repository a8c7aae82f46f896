"""OTLP exporter using OpenTelemetry OTLP HTTP exporter."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as OTelOTLPSpanExporter
from opentelemetry.sdk.trace.export import SpanExportResult

from callspan.errors import ExportError
from callspan.tracer.span import SpanRecord

logger = logging.getLogger(__name__)

DEFAULT_OTLP_ENDPOINT = "http://localhost:4318/v1/traces"


class OTLPExporter:
    """
    Ship span records to a collector over OTLP/HTTP.

    Records carry the ended OpenTelemetry ReadableSpan they were built from,
    which is what the OTel exporter serializes.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        headers: Optional[dict] = None,
    ) -> None:
        """
        Initialize OTLP exporter.

        Args:
            endpoint: OTLP/HTTP traces endpoint
            api_key: Optional API key sent as a Bearer token
            timeout: Request timeout in seconds
            headers: Optional additional headers
        """
        export_headers = dict(headers) if headers else {}
        if api_key:
            export_headers["Authorization"] = f"Bearer {api_key}"

        self.endpoint = endpoint or DEFAULT_OTLP_ENDPOINT
        self.api_key = api_key
        self.timeout = timeout
        self._otel_exporter = OTelOTLPSpanExporter(
            endpoint=self.endpoint,
            timeout=timeout,
            headers=export_headers or None,
        )

    def export(self, records: Iterable[SpanRecord]) -> bool:
        """
        Export a batch.

        Returns False when the collector rejects it; raises ExportError when
        a record cannot be serialized.
        """
        readable_spans = []
        for record in records:
            if record.readable is None:
                raise ExportError("Span record has no OpenTelemetry span attached", {"span": record.name})
            readable_spans.append(record.readable)

        if not readable_spans:
            return True

        result = self._otel_exporter.export(readable_spans)
        if result != SpanExportResult.SUCCESS:
            logger.debug("OTLP export of %d spans to %s failed", len(readable_spans), self.endpoint)
            return False
        return True

    def shutdown(self) -> None:
        """Shutdown the exporter."""
        self._otel_exporter.shutdown()
