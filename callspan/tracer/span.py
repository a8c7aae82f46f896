"""Span implementation - minimal wrapper around OpenTelemetry Span."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, TYPE_CHECKING

from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.trace import Span as OTelSpan, SpanKind, Status, StatusCode

from callspan.context.context import pop_span, push_span
from callspan.tracer.span_context import SpanContext
from callspan.utils.helpers import format_span_id, format_trace_id, to_attribute_value

if TYPE_CHECKING:
    from callspan.tracer.tracer import Tracer

logger = logging.getLogger(__name__)


class SpanStatus(Enum):
    UNSET = 0
    OK = 1
    ERROR = 2


class SpanState(Enum):
    CREATED = "created"
    ACTIVE = "active"
    COMPLETED_OK = "completed_ok"
    COMPLETED_ERROR = "completed_error"


@dataclass(frozen=True)
class SpanRecord:
    """Immutable snapshot of an ended span, handed to processors and exporters."""

    trace_id: str
    span_id: str
    parent_span_id: Optional[str]
    name: str
    kind: SpanKind
    attributes: Mapping[str, Any]
    status: SpanStatus
    status_description: Optional[str]
    start_time_ns: int
    end_time_ns: int
    events: Tuple[Dict[str, Any], ...] = ()
    resource: Mapping[str, Any] = field(default_factory=dict)
    readable: Optional[ReadableSpan] = field(default=None, compare=False, repr=False)

    @property
    def duration_ns(self) -> int:
        return self.end_time_ns - self.start_time_ns


_STATUS_TO_OTEL = {
    SpanStatus.UNSET: StatusCode.UNSET,
    SpanStatus.OK: StatusCode.OK,
    SpanStatus.ERROR: StatusCode.ERROR,
}


class Span:
    """
    Minimal wrapper around OpenTelemetry Span.

    Tracks the lifecycle CREATED -> ACTIVE -> COMPLETED_OK | COMPLETED_ERROR.
    ``end()`` is idempotent: the underlying span is ended and handed to the
    processors exactly once, whichever thread gets there first.
    """

    def __init__(
        self,
        otel_span: OTelSpan,
        tracer: "Tracer",
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._otel_span = otel_span
        self.tracer = tracer
        self.name = name
        self.kind = kind
        self._ended = False
        self._end_lock = threading.Lock()
        self._activation_token = None

        otel_context = otel_span.get_span_context()
        self.context = SpanContext(
            trace_id=format_trace_id(otel_context.trace_id),
            span_id=format_span_id(otel_context.span_id),
            trace_flags=int(otel_context.trace_flags),
            trace_state=otel_context.trace_state.to_header() or None,
        )

        parent = getattr(otel_span, "parent", None)
        self.parent_span_id: Optional[str] = format_span_id(parent.span_id) if parent is not None else None

        self.start_time_ns: int = getattr(otel_span, "start_time", None) or time.time_ns()
        self.end_time_ns: Optional[int] = None

        self.status = SpanStatus.UNSET
        self.status_description: Optional[str] = None
        self.state = SpanState.CREATED

        self._attributes: Dict[str, Any] = dict(attributes or {})

    @property
    def attributes(self) -> Dict[str, Any]:
        """Attributes set on this span so far."""
        return self._attributes

    @property
    def is_recording(self) -> bool:
        return self._otel_span.is_recording()

    @property
    def duration_ns(self) -> Optional[int]:
        if self.end_time_ns is None:
            return None
        return self.end_time_ns - self.start_time_ns

    def set_attribute(self, key: str, value: Any) -> None:
        """Set an attribute on the span; later writes to a key overwrite earlier ones."""
        if self._ended or value is None:
            return

        value = to_attribute_value(value)
        self._attributes[key] = value
        try:
            self._otel_span.set_attribute(key, value)
        except Exception:
            logger.debug("Failed to set attribute %s on span %s", key, self.name, exc_info=True)

    def set_attributes(self, attributes: Optional[Mapping[str, Any]]) -> None:
        for key, value in (attributes or {}).items():
            self.set_attribute(key, value)

    def record_exception(self, error: BaseException) -> None:
        """Record an ``exception`` event (type, message, stacktrace) and mark the span ERROR."""
        if self._ended:
            return

        try:
            self._otel_span.record_exception(error)
        except Exception:
            logger.debug("Failed to record exception on span %s", self.name, exc_info=True)

        self.set_status(SpanStatus.ERROR, str(error))

    def set_status(self, status: SpanStatus, description: Optional[str] = None) -> None:
        """Set the span status; a description is only kept for ERROR."""
        if self._ended:
            return

        if status != SpanStatus.ERROR:
            description = None
        self.status = status
        self.status_description = description

        try:
            self._otel_span.set_status(Status(status_code=_STATUS_TO_OTEL[status], description=description))
        except Exception:
            logger.debug("Failed to set status on span %s", self.name, exc_info=True)

    def end(self) -> None:
        """
        End the span.

        Spans still UNSET are completed as OK. Processors receive the
        resulting SpanRecord after the underlying OTel span has ended.
        """
        with self._end_lock:
            if self._ended:
                return
            self._ended = True

        if self.status == SpanStatus.UNSET:
            self.status = SpanStatus.OK
            try:
                self._otel_span.set_status(Status(status_code=StatusCode.OK))
            except Exception:
                pass

        self.end_time_ns = max(time.time_ns(), self.start_time_ns)
        self.state = SpanState.COMPLETED_ERROR if self.status == SpanStatus.ERROR else SpanState.COMPLETED_OK

        # is_recording() turns False once the OTel span has ended
        recording = self._otel_span.is_recording()
        try:
            self._otel_span.end(end_time=self.end_time_ns)
        except Exception:
            logger.warning("Failed to end span %s", self.name, exc_info=True)

        if recording:
            self.tracer._on_span_end(self)

    def to_record(self) -> SpanRecord:
        """Snapshot this span. Only meaningful once the span has ended."""
        otel_span = self._otel_span
        readable = otel_span if isinstance(otel_span, ReadableSpan) else None

        events: Tuple[Dict[str, Any], ...] = ()
        resource: Mapping[str, Any] = {}
        attributes: Mapping[str, Any] = dict(self._attributes)
        if readable is not None:
            events = tuple(
                {
                    "name": event.name,
                    "attributes": dict(event.attributes or {}),
                    "timestamp_ns": event.timestamp,
                }
                for event in readable.events
            )
            resource = dict(readable.resource.attributes) if readable.resource else {}
            attributes = dict(readable.attributes or {})

        return SpanRecord(
            trace_id=self.context.trace_id,
            span_id=self.context.span_id,
            parent_span_id=self.parent_span_id,
            name=self.name,
            kind=self.kind,
            attributes=attributes,
            status=self.status,
            status_description=self.status_description,
            start_time_ns=self.start_time_ns,
            end_time_ns=self.end_time_ns if self.end_time_ns is not None else self.start_time_ns,
            events=events,
            resource=resource,
            readable=readable,
        )

    # Context manager support: activation is scoped to the with-block and is
    # released on every exit path.
    def __enter__(self) -> "Span":
        self._activation_token = push_span(self)
        self.state = SpanState.ACTIVE
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc is not None:
                self.record_exception(exc)
            self.end()
        finally:
            if self._activation_token is not None:
                pop_span(self._activation_token)
                self._activation_token = None
        return False

    async def __aenter__(self) -> "Span":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return self.__exit__(exc_type, exc, tb)

    def __repr__(self) -> str:
        return (
            f"Span(name={self.name!r}, trace_id={self.context.trace_id}, "
            f"span_id={self.context.span_id}, state={self.state.value})"
        )
