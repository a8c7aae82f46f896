"""Span-scoped execution of a unit of work.

Every instrumented call site goes through :class:`SpanWrapper`: it asks the
sampling policy for a decision, starts and activates a span, runs the work,
records the outcome, and always ends the span and restores the previous active
span, whatever happens in between.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, TypeVar, Union

from opentelemetry.trace import SpanKind

from callspan.context.context import get_current_span, pop_span, push_span
from callspan.processors.sampling_policy import SamplingDecision, SamplingPolicy
from callspan.tracer.span import Span, SpanState, SpanStatus
from callspan.tracer.span_context import SpanContext
from callspan.tracer.tracer import Tracer

logger = logging.getLogger(__name__)

T = TypeVar("T")

Parent = Union[Span, SpanContext, None]
ResultAttributes = Callable[[Any], Optional[Mapping[str, Any]]]
ResultError = Callable[[Any], Optional[str]]


def _call_name(call: Callable[..., Any], default: str) -> str:
    return getattr(call, "__name__", None) or default


class SpanWrapper:
    """
    Runs units of work inside spans.

    Business exceptions raised by the unit of work are recorded on the span
    and re-raised unchanged. Failures inside the tracing machinery itself are
    logged and never reach the caller.
    """

    def __init__(self, tracer: Tracer, policy: Optional[SamplingPolicy] = None, enabled: bool = True) -> None:
        self.tracer = tracer
        self.policy = policy or SamplingPolicy()
        self.enabled = enabled

    def current_span(self) -> Optional[Span]:
        return get_current_span()

    # Decision and lifecycle steps. Each one swallows its own failures.
    def _decide(
        self,
        name: str,
        kind: SpanKind,
        attributes: Optional[Mapping[str, Any]],
        parent: Parent,
    ) -> SamplingDecision:
        if not self.enabled:
            return SamplingDecision.NOT_RECORD

        # Local spans only exist when recorded; remote parents carry the flag
        if isinstance(parent, SpanContext):
            trace_id, parent_sampled = parent.trace_id, parent.sampled
        else:
            local = parent if isinstance(parent, Span) else get_current_span()
            trace_id = local.context.trace_id if local is not None else None
            parent_sampled = local is not None

        try:
            return self.policy.evaluate(name, kind, attributes, trace_id=trace_id, parent_sampled=parent_sampled)
        except Exception:
            logger.warning("Sampling policy failed for span %r; not recording", name, exc_info=True)
            return SamplingDecision.NOT_RECORD

    def _start(
        self,
        name: str,
        kind: SpanKind,
        attributes: Optional[Mapping[str, Any]],
        parent: Parent,
    ) -> Optional[Span]:
        try:
            if isinstance(parent, Span):
                return self.tracer.start_span(name, kind=kind, attributes=dict(attributes or {}), parent=parent)
            if isinstance(parent, SpanContext):
                return self.tracer.start_span(
                    name, kind=kind, attributes=dict(attributes or {}), parent_context=parent
                )
            return self.tracer.start_span(name, kind=kind, attributes=dict(attributes or {}))
        except Exception:
            logger.warning("Failed to start span %r", name, exc_info=True)
            return None

    @staticmethod
    def _activate(span: Span):
        try:
            token = push_span(span)
        except Exception:
            logger.warning("Failed to activate span %r", span.name, exc_info=True)
            return None
        span.state = SpanState.ACTIVE
        return token

    @staticmethod
    def _deactivate(span: Span, token) -> None:
        if token is None:
            return
        try:
            pop_span(token)
        except Exception:
            logger.warning("Failed to restore context after span %r", span.name, exc_info=True)

    @staticmethod
    def _record_result(
        span: Span,
        result: Any,
        result_attributes: Optional[ResultAttributes],
        result_error: Optional[ResultError],
    ) -> None:
        try:
            if result_attributes is not None:
                span.set_attributes(result_attributes(result))
            message = result_error(result) if result_error is not None else None
            if message:
                span.set_status(SpanStatus.ERROR, message)
            else:
                span.set_status(SpanStatus.OK)
        except Exception:
            logger.warning("Failed to record result on span %r", span.name, exc_info=True)

    @staticmethod
    def _record_failure(span: Span, error: BaseException) -> None:
        try:
            span.record_exception(error)
        except Exception:
            logger.warning("Failed to record exception on span %r", span.name, exc_info=True)

    @staticmethod
    def _end(span: Span) -> None:
        try:
            span.end()
        except Exception:
            logger.warning("Failed to end span %r", span.name, exc_info=True)

    def run(
        self,
        name: str,
        unit_of_work: Callable[[], T],
        *,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        parent: Parent = None,
        result_attributes: Optional[ResultAttributes] = None,
        result_error: Optional[ResultError] = None,
    ) -> T:
        """
        Run ``unit_of_work`` inside a span and return its result.

        Args:
            name: Span name
            unit_of_work: Zero-argument callable doing the actual work
            kind: OpenTelemetry span kind
            attributes: Initial attributes, also seen by the sampling policy
            parent: Explicit parent (span or remote context); defaults to the
                active span
            result_attributes: Maps the result to extra attributes
            result_error: Maps the result to an error message, or None when
                the result counts as a success
        """
        if self._decide(name, kind, attributes, parent) is SamplingDecision.NOT_RECORD:
            return unit_of_work()

        span = self._start(name, kind, attributes, parent)
        if span is None:
            return unit_of_work()

        token = self._activate(span)
        try:
            result = unit_of_work()
        except BaseException as exc:
            self._record_failure(span, exc)
            raise
        else:
            self._record_result(span, result, result_attributes, result_error)
            return result
        finally:
            try:
                self._end(span)
            finally:
                self._deactivate(span, token)

    async def arun(
        self,
        name: str,
        unit_of_work: Callable[[], Awaitable[T]],
        *,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        parent: Parent = None,
        result_attributes: Optional[ResultAttributes] = None,
        result_error: Optional[ResultError] = None,
    ) -> T:
        """Async counterpart of :meth:`run`; ``unit_of_work`` returns an awaitable."""
        if self._decide(name, kind, attributes, parent) is SamplingDecision.NOT_RECORD:
            return await unit_of_work()

        span = self._start(name, kind, attributes, parent)
        if span is None:
            return await unit_of_work()

        token = self._activate(span)
        try:
            result = await unit_of_work()
        except BaseException as exc:
            self._record_failure(span, exc)
            raise
        else:
            self._record_result(span, result, result_attributes, result_error)
            return result
        finally:
            try:
                self._end(span)
            finally:
                self._deactivate(span, token)

    def fan_out(
        self,
        calls: Iterable[Callable[[], Any]],
        *,
        name: Optional[str] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        max_workers: Optional[int] = None,
    ) -> List[Any]:
        """
        Run sibling calls concurrently on a thread pool, each in its own span.

        The active span is captured once here and handed to every worker as the
        explicit parent, so all children share its trace. Results come back in
        call order; the first failure is re-raised only after every call has
        finished.
        """
        calls = list(calls)
        if not calls:
            return []

        parent = get_current_span()

        def run_child(call: Callable[[], Any]) -> Any:
            token = push_span(parent) if parent is not None else None
            try:
                return self.run(
                    name or _call_name(call, "fan_out.call"),
                    call,
                    kind=kind,
                    attributes=attributes,
                    parent=parent,
                )
            finally:
                if token is not None:
                    pop_span(token)

        with ThreadPoolExecutor(max_workers=max_workers or len(calls)) as executor:
            futures = [executor.submit(run_child, call) for call in calls]
            wait(futures)

        results = []
        for future in futures:
            error = future.exception()
            if error is not None:
                raise error
            results.append(future.result())
        return results

    async def afan_out(
        self,
        calls: Iterable[Callable[[], Awaitable[Any]]],
        *,
        name: Optional[str] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> List[Any]:
        """Async counterpart of :meth:`fan_out` built on ``asyncio.gather``."""
        parent = get_current_span()
        outcomes = await asyncio.gather(
            *(
                self.arun(
                    name or _call_name(call, "fan_out.call"),
                    call,
                    kind=kind,
                    attributes=attributes,
                    parent=parent,
                )
                for call in calls
            ),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return list(outcomes)
