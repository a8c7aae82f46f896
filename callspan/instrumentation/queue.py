"""Message-queue producer and consumer instrumentation.

Producers get a PRODUCER span around the enqueue call and the span's context is
written into the message headers. Consumers get a CONSUMER span around the whole
listener dispatch, parented on the context decoded from those headers, so the
send and the processing end up in one trace.
"""

from __future__ import annotations

import functools
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from opentelemetry.trace import SpanKind

from callspan.context.propagators import extract_traceparent
from callspan.instrumentation.http_client import inject_headers
from callspan.instrumentation.wrapper import SpanWrapper

SEND_SPAN_NAME = "queue.message.send"
PROCESS_SPAN_NAME = "queue.message.process"


@dataclass
class Message:
    id: Optional[str]
    queue_name: str
    payload: Any = None
    retry_count: int = 0
    headers: Dict[str, str] = field(default_factory=dict)


class Enqueuer(Protocol):
    """Broker client side of a send: returns the broker-assigned message id."""

    def enqueue(self, queue_name: str, payload: Any, headers: Dict[str, str]) -> Optional[str]:
        ...


def _resolve_wrapper(wrapper: Optional[SpanWrapper]) -> SpanWrapper:
    if wrapper is not None:
        return wrapper
    from callspan.auto import get_span_wrapper

    return get_span_wrapper()


def _message_id_attributes(message_id: Any) -> Optional[Dict[str, Any]]:
    if message_id is None:
        return None
    return {"messaging.message.id": str(message_id)}


def _code_attributes(listener: Callable[..., Any]) -> Dict[str, Any]:
    owner = getattr(listener, "__self__", None)
    if owner is not None:
        namespace = f"{type(owner).__module__}.{type(owner).__qualname__}"
    else:
        namespace = getattr(listener, "__module__", None)
        qualname = getattr(listener, "__qualname__", "")
        if namespace and "." in qualname:
            namespace = f"{namespace}.{qualname.rpartition('.')[0]}"
    return {
        "code.function": getattr(listener, "__name__", type(listener).__name__),
        "code.namespace": namespace,
    }


class TracedEnqueuer:
    """Wraps an :class:`Enqueuer` so every send is traced and carries context."""

    def __init__(self, enqueuer: Enqueuer, wrapper: Optional[SpanWrapper] = None, system: str = "queue") -> None:
        self.enqueuer = enqueuer
        self._span_wrapper = wrapper
        self.system = system

    def enqueue(self, queue_name: str, payload: Any, headers: Optional[Mapping[str, str]] = None) -> Optional[str]:
        outgoing = dict(headers or {})
        attributes = {
            "messaging.system": self.system,
            "messaging.destination.name": queue_name,
            "messaging.operation": "publish",
        }

        def send() -> Optional[str]:
            inject_headers(outgoing)
            return self.enqueuer.enqueue(queue_name, payload, outgoing)

        return _resolve_wrapper(self._span_wrapper).run(
            SEND_SPAN_NAME,
            send,
            kind=SpanKind.PRODUCER,
            attributes=attributes,
            result_attributes=_message_id_attributes,
        )


class ConsumerInstrumentation:
    """Runs message listeners inside CONSUMER spans."""

    def __init__(self, wrapper: Optional[SpanWrapper] = None, system: str = "queue") -> None:
        self._span_wrapper = wrapper
        self.system = system

    def _attributes(self, listener: Callable[..., Any], message: Message) -> Dict[str, Any]:
        attributes = {
            "messaging.system": self.system,
            "messaging.operation": "process",
            "messaging.destination.name": message.queue_name,
            "messaging.message.id": message.id,
            "messaging.message.retry_count": message.retry_count,
        }
        attributes.update(_code_attributes(listener))
        return attributes

    def dispatch(self, listener: Callable[[Message], Any], message: Message) -> Any:
        """Call ``listener(message)``; listener exceptions propagate unchanged."""
        return _resolve_wrapper(self._span_wrapper).run(
            PROCESS_SPAN_NAME,
            lambda: listener(message),
            kind=SpanKind.CONSUMER,
            attributes=self._attributes(listener, message),
            parent=extract_traceparent(message.headers),
        )

    async def adispatch(self, listener: Callable[[Message], Any], message: Message) -> Any:
        """Like :meth:`dispatch`, awaiting the listener's result when it is awaitable."""

        async def deliver() -> Any:
            result = listener(message)
            if inspect.isawaitable(result):
                result = await result
            return result

        return await _resolve_wrapper(self._span_wrapper).arun(
            PROCESS_SPAN_NAME,
            deliver,
            kind=SpanKind.CONSUMER,
            attributes=self._attributes(listener, message),
            parent=extract_traceparent(message.headers),
        )


def traced_listener(
    func: Optional[Callable[..., Any]] = None,
    *,
    instrumentation: Optional[ConsumerInstrumentation] = None,
):
    """
    Decorate a listener so each delivered :class:`Message` is processed in a
    CONSUMER span. Works on plain functions, methods and coroutine functions.
    """

    def decorator(listener: Callable[..., Any]) -> Callable[..., Any]:
        consumer = instrumentation or ConsumerInstrumentation()

        def find_message(args) -> Optional[Message]:
            for arg in args:
                if isinstance(arg, Message):
                    return arg
            return None

        if inspect.iscoroutinefunction(listener):

            @functools.wraps(listener)
            async def async_wrapper(*args, **kwargs):
                message = find_message(args)
                if message is None:
                    return await listener(*args, **kwargs)

                async def bound(_message):
                    return await listener(*args, **kwargs)

                return await consumer.adispatch(functools.update_wrapper(bound, listener), message)

            return async_wrapper

        @functools.wraps(listener)
        def sync_wrapper(*args, **kwargs):
            message = find_message(args)
            if message is None:
                return listener(*args, **kwargs)

            def bound(_message):
                return listener(*args, **kwargs)

            return consumer.dispatch(functools.update_wrapper(bound, listener), message)

        return sync_wrapper

    if func is not None:
        return decorator(func)
    return decorator
