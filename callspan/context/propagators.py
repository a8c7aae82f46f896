"""W3C traceparent carrier codec and header propagation helpers.

Transports whose client library offers no propagation hook build the carrier
explicitly with :func:`encode` and attach it as the ``traceparent`` header.
Transports that can take a headers mapping before dispatch use :func:`inject`,
which goes through the OpenTelemetry global propagator.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, MutableMapping, Optional

from opentelemetry.propagate import inject as otel_inject, extract as otel_extract

from callspan.errors import DecodingError
from callspan.tracer.span_context import SpanContext

logger = logging.getLogger(__name__)

TRACEPARENT_HEADER = "traceparent"
TRACESTATE_HEADER = "tracestate"

VERSION = "00"

_VERSION_RE = re.compile(r"[0-9a-f]{2}")
_TRACE_ID_RE = re.compile(r"[0-9a-f]{32}")
_SPAN_ID_RE = re.compile(r"[0-9a-f]{16}")
_FLAGS_RE = re.compile(r"[0-9a-f]{2}")


@dataclass(frozen=True)
class TraceCarrier:
    """Decoded ``(trace_id, span_id, trace_flags)`` triple."""

    trace_id: str
    span_id: str
    trace_flags: int

    def to_span_context(self, trace_state: Optional[str] = None) -> SpanContext:
        return SpanContext(
            trace_id=self.trace_id,
            span_id=self.span_id,
            trace_flags=self.trace_flags,
            trace_state=trace_state,
            is_remote=True,
        )


def encode(trace_id: str, span_id: str, flags: int) -> str:
    """
    Encode a trace context as a ``traceparent`` value.

    Raises ValueError when the ids are not lowercase hex of the right width,
    are all zeros, or when flags does not fit in one byte.
    """
    if not isinstance(trace_id, str) or not _TRACE_ID_RE.fullmatch(trace_id) or not int(trace_id, 16):
        raise ValueError(f"invalid trace id: {trace_id!r}")
    if not isinstance(span_id, str) or not _SPAN_ID_RE.fullmatch(span_id) or not int(span_id, 16):
        raise ValueError(f"invalid span id: {span_id!r}")
    if not isinstance(flags, int) or not 0 <= flags <= 0xFF:
        raise ValueError(f"invalid trace flags: {flags!r}")
    return f"{VERSION}-{trace_id}-{span_id}-{flags:02x}"


def decode(carrier: str) -> TraceCarrier:
    """
    Decode a ``traceparent`` value.

    Any deviation from ``00-<32 hex>-<16 hex>-<2 hex>`` (lowercase, no
    whitespace, non-zero ids) raises DecodingError.
    """
    if not isinstance(carrier, str):
        raise DecodingError("carrier must be a string", {"type": type(carrier).__name__})

    fields = carrier.split("-")
    if len(fields) != 4:
        raise DecodingError("expected 4 fields", {"fields": len(fields)})

    version, trace_id, span_id, flags = fields
    if not _VERSION_RE.fullmatch(version) or version != VERSION:
        raise DecodingError("unsupported version", {"version": version})
    if not _TRACE_ID_RE.fullmatch(trace_id):
        raise DecodingError("malformed trace id", {"trace_id": trace_id})
    if not int(trace_id, 16):
        raise DecodingError("all-zero trace id")
    if not _SPAN_ID_RE.fullmatch(span_id):
        raise DecodingError("malformed span id", {"span_id": span_id})
    if not int(span_id, 16):
        raise DecodingError("all-zero span id")
    if not _FLAGS_RE.fullmatch(flags):
        raise DecodingError("malformed trace flags", {"flags": flags})

    return TraceCarrier(trace_id=trace_id, span_id=span_id, trace_flags=int(flags, 16))


def format_traceparent(context: SpanContext) -> str:
    """Format the traceparent header value for a span context."""
    return encode(context.trace_id, context.span_id, context.trace_flags)


def parse_traceparent(header_value: Optional[str]) -> Optional[SpanContext]:
    """Parse a traceparent value; malformed or missing values yield None."""
    if not header_value:
        return None
    try:
        return decode(header_value).to_span_context()
    except DecodingError as exc:
        logger.debug("Ignoring malformed traceparent %r: %s", header_value, exc)
        return None


def inject_traceparent(headers: MutableMapping[str, str], context: SpanContext) -> None:
    """Inject the traceparent (and tracestate, when present) into headers."""
    headers[TRACEPARENT_HEADER] = format_traceparent(context)
    if context.trace_state:
        headers[TRACESTATE_HEADER] = context.trace_state


def _get_header(headers: Mapping[str, Any], key: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    for name, value in headers.items():
        if name.lower() == key:
            return value
    return None


def extract_traceparent(headers: Optional[Mapping[str, Any]]) -> Optional[SpanContext]:
    """
    Extract a remote parent from headers.

    A missing or malformed carrier means the caller has no parent context.
    """
    if not headers:
        return None
    context = parse_traceparent(_get_header(headers, TRACEPARENT_HEADER))
    if context is None:
        return None
    trace_state = _get_header(headers, TRACESTATE_HEADER)
    if trace_state:
        context = SpanContext(
            trace_id=context.trace_id,
            span_id=context.span_id,
            trace_flags=context.trace_flags,
            trace_state=trace_state,
            is_remote=True,
        )
    return context


def inject(carrier: Dict[str, str], context: Optional[Any] = None) -> None:
    """
    Inject the current trace context using OpenTelemetry's global propagator.

    If context is not provided, uses current context.
    """
    if context is None:
        otel_inject(carrier)
    else:
        otel_inject(carrier, context=context)


def extract(carrier: Dict[str, str]) -> Any:
    """
    Extract trace context from carrier using OpenTelemetry's global propagator.

    Returns an OTel context.
    """
    return otel_extract(carrier)
