"""Instrumentation: the span wrapper and the call-site adapters built on it."""

from callspan.instrumentation.decorator import observe
from callspan.instrumentation.http_client import AsyncTracedHttpClient, TracedHttpClient, inject_headers
from callspan.instrumentation.queue import (
    ConsumerInstrumentation,
    Enqueuer,
    Message,
    TracedEnqueuer,
    traced_listener,
)
from callspan.instrumentation.transports import (
    AsyncHttpxTransport,
    AsyncTransport,
    HttpRequest,
    HttpResponse,
    HttpxTransport,
    RequestsTransport,
    Transport,
)
from callspan.instrumentation.wrapper import SpanWrapper

__all__ = [
    "observe",
    "SpanWrapper",
    "TracedHttpClient",
    "AsyncTracedHttpClient",
    "inject_headers",
    "HttpRequest",
    "HttpResponse",
    "Transport",
    "AsyncTransport",
    "RequestsTransport",
    "HttpxTransport",
    "AsyncHttpxTransport",
    "Message",
    "Enqueuer",
    "TracedEnqueuer",
    "ConsumerInstrumentation",
    "traced_listener",
]
