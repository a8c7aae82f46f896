"""Context utilities for callspan."""

from callspan.context.context import get_current_span, pop_span, push_span
from callspan.context.propagators import (
    TRACEPARENT_HEADER,
    TraceCarrier,
    decode,
    encode,
    extract,
    extract_traceparent,
    format_traceparent,
    inject,
    inject_traceparent,
    parse_traceparent,
)

__all__ = [
    "get_current_span",
    "push_span",
    "pop_span",
    "TRACEPARENT_HEADER",
    "TraceCarrier",
    "encode",
    "decode",
    "format_traceparent",
    "parse_traceparent",
    "inject_traceparent",
    "extract_traceparent",
    "inject",
    "extract",
]
