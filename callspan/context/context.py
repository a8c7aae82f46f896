"""Context helpers for managing the active span stack - using OpenTelemetry directly.

The OpenTelemetry context is backed by contextvars, so every thread and every
asyncio task sees its own chain of active spans.
"""

from contextvars import Token
from typing import Optional, TYPE_CHECKING

from opentelemetry.trace import set_span_in_context
from opentelemetry import context as context_api

if TYPE_CHECKING:
    from callspan.tracer.span import Span

_SPAN_KEY = context_api.create_key("callspan-span")


def get_current_span() -> Optional["Span"]:
    """Return the currently active callspan span, if any."""
    return context_api.get_value(_SPAN_KEY)


def push_span(span: "Span") -> Token:
    """
    Push a span onto the context and set it as current.

    Returns:
        Token needed to restore the previous state
    """
    ctx = set_span_in_context(span._otel_span)
    ctx = context_api.set_value(_SPAN_KEY, span, ctx)
    return context_api.attach(ctx)


def pop_span(token: Token) -> None:
    """
    Restore the previous span context using the provided token.

    Args:
        token: Token returned by push_span()
    """
    context_api.detach(token)
