"""Tracer creating callspan spans on top of an OpenTelemetry Tracer."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

from opentelemetry.trace import (
    NonRecordingSpan,
    SpanContext as OTelSpanContext,
    SpanKind,
    TraceFlags,
    TraceState,
    Tracer as OTelTracer,
    set_span_in_context,
)

from callspan.context import context as span_context
from callspan.tracer.span import Span
from callspan.tracer.span_context import SpanContext
from callspan.utils.helpers import clean_attributes, parse_span_id, parse_trace_id

if TYPE_CHECKING:
    from callspan.tracer.provider import TracerProvider

logger = logging.getLogger(__name__)


def _to_otel_context(parent_context: SpanContext):
    """Build an OTel context whose current span is the given (usually remote) parent."""
    trace_state = TraceState()
    if parent_context.trace_state:
        trace_state = TraceState.from_header([parent_context.trace_state])

    otel_span_context = OTelSpanContext(
        trace_id=parse_trace_id(parent_context.trace_id),
        span_id=parse_span_id(parent_context.span_id),
        is_remote=parent_context.is_remote,
        trace_flags=TraceFlags(parent_context.trace_flags),
        trace_state=trace_state,
    )
    return set_span_in_context(NonRecordingSpan(otel_span_context))


class Tracer:
    """
    Tracer wrapper that uses OpenTelemetry Tracer internally.

    The parent of a new span is, in order of precedence: ``parent`` (a
    callspan Span), ``parent_context`` (e.g. decoded from a carrier), or the
    span active in the caller's execution flow.
    """

    def __init__(self, provider: "TracerProvider", instrumentation_scope: str):
        self._provider = provider
        self.instrumentation_scope = instrumentation_scope
        self._otel_tracer: OTelTracer = provider._otel_provider.get_tracer(instrumentation_scope)

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
        parent: Optional[Span] = None,
        parent_context: Optional[SpanContext] = None,
    ) -> Span:
        """
        Start a new span without activating it.

        Args:
            name: Span name
            kind: OpenTelemetry span kind
            attributes: Optional initial attributes (None values are dropped)
            parent: Optional parent span
            parent_context: Optional parent span context

        Returns:
            callspan Span (wraps OTel Span)
        """
        otel_parent_context = None
        if parent is not None:
            otel_parent_context = set_span_in_context(parent._otel_span)
        elif parent_context is not None and parent_context.is_valid():
            otel_parent_context = _to_otel_context(parent_context)

        attrs = clean_attributes(attributes)
        otel_span = self._otel_tracer.start_span(
            name=name,
            kind=kind,
            attributes=attrs,
            context=otel_parent_context,
        )
        return Span(otel_span, self, name=name, kind=kind, attributes=attrs)

    def start_as_current_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
        parent: Optional[Span] = None,
        parent_context: Optional[SpanContext] = None,
    ) -> Span:
        """
        Start a span to be used as a context manager.

        The span becomes current on ``__enter__`` and the previous span is
        restored on ``__exit__``.
        """
        return self.start_span(
            name=name,
            kind=kind,
            attributes=attributes,
            parent=parent,
            parent_context=parent_context,
        )

    def get_current_span(self) -> Optional[Span]:
        """Get the current span."""
        return span_context.get_current_span()

    def _on_span_end(self, span: Span) -> None:
        """Called by Span.end() once the underlying span has ended."""
        self._provider._notify_span_end(span)
