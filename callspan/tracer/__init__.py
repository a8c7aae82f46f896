"""Tracer components for callspan."""

from opentelemetry.trace import SpanKind

from callspan.tracer.provider import SpanProcessor, TracerProvider
from callspan.tracer.span import Span, SpanRecord, SpanState, SpanStatus
from callspan.tracer.span_context import SpanContext
from callspan.tracer.tracer import Tracer

__all__ = [
    "Span",
    "SpanKind",
    "SpanRecord",
    "SpanState",
    "SpanStatus",
    "SpanContext",
    "Tracer",
    "TracerProvider",
    "SpanProcessor",
]
