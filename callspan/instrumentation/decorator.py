"""@observe decorator for instrumenting functions."""

from __future__ import annotations

import functools
import inspect
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from opentelemetry.trace import SpanKind

from callspan.utils.helpers import to_attribute_value


def _capture_args(bound_args: inspect.BoundArguments, skip: Iterable[str]) -> Dict[str, Any]:
    """Capture function arguments as ``code.arg.<name>`` attributes."""
    captured = {}
    for name, value in bound_args.arguments.items():
        if name in skip or name in ("self", "cls"):
            continue
        captured[f"code.arg.{name}"] = to_attribute_value(value)
    return captured


def observe(
    name: Optional[str] = None,
    *,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: Optional[Mapping[str, Any]] = None,
    capture_args: bool = False,
    skip_args: Optional[Iterable[str]] = None,
    result_attributes: Optional[Callable[[Any], Optional[Mapping[str, Any]]]] = None,
    wrapper=None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorate a function to run each call inside a span.

    - Supports sync and async functions.
    - Exceptions are recorded on the span and re-raised unchanged.
    - Arguments are captured only when ``capture_args`` is set.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        span_name = name or func.__qualname__
        skip_args_set = set(skip_args or [])
        signature = inspect.signature(func)
        base_attrs = {"code.function": func.__name__, "code.namespace": func.__module__}
        base_attrs.update(attributes or {})

        def span_attributes(args, kwargs) -> Dict[str, Any]:
            span_attrs = dict(base_attrs)
            if capture_args:
                bound = signature.bind_partial(*args, **kwargs)
                bound.apply_defaults()
                span_attrs.update(_capture_args(bound, skip_args_set))
            return span_attrs

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                return await _get_wrapper(wrapper).arun(
                    span_name,
                    lambda: func(*args, **kwargs),
                    kind=kind,
                    attributes=span_attributes(args, kwargs),
                    result_attributes=result_attributes,
                )

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            return _get_wrapper(wrapper).run(
                span_name,
                lambda: func(*args, **kwargs),
                kind=kind,
                attributes=span_attributes(args, kwargs),
                result_attributes=result_attributes,
            )

        return sync_wrapper

    return decorator


def _get_wrapper(wrapper):
    if wrapper is not None:
        return wrapper
    from callspan.auto import get_span_wrapper

    return get_span_wrapper()
