"""Tracing decorator and span helpers for cache operations."""

import inspect
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import wraps
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

# Keyword arguments recorded as span attributes (case-insensitive).
# Cache keys and values are never recorded; they may carry user ids.
_SAFE_SPAN_ATTR_KEYS = frozenset({
    "tags", "layer", "pattern", "limit", "image_id", "profile", "model",
    "operation", "max_age_ms", "resolution", "format", "write_to_l2",
})


def _set_safe_span_attrs(span: trace.Span, kwargs: dict[str, Any]) -> None:
    for key, value in kwargs.items():
        if not key.startswith("_") and key.lower() in _SAFE_SPAN_ATTR_KEYS:
            span.set_attribute(f"arg.{key}", str(value))


@contextmanager
def _span(name: str, attributes: dict | None, kwargs: dict[str, Any]) -> Iterator[trace.Span]:
    """Start a span, record allowlisted kwargs, mark it ERROR on exception."""
    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span(name, record_exception=False) as span:
        for key, value in (attributes or {}).items():
            span.set_attribute(key, value)
        _set_safe_span_attrs(span, kwargs)
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
        span.set_status(Status(StatusCode.OK))


def traced(
    operation_name: str | None = None,
    attributes: dict | None = None,
) -> Callable:
    """Decorator to run a function (sync or async) inside a span.

    With no tracer provider configured the span is a no-op, so cache
    operations can be decorated unconditionally.

    Args:
        operation_name: Span name (defaults to module.funcname).
        attributes: Optional static attributes set on every span.

    Example:
        @traced("cache.invalidate_by_tags")
        async def invalidate_by_tags(self, tags): ...
    """

    def decorator(func: Callable) -> Callable:
        span_name = operation_name or f"{func.__module__}.{func.__name__}"

        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with _span(span_name, attributes, kwargs):
                    return await func(*args, **kwargs)

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with _span(span_name, attributes, kwargs):
                return func(*args, **kwargs)

        return sync_wrapper

    return decorator


def add_span_attributes(**attributes: str | int | float | bool) -> None:
    """Add attributes to the current span (ignored when nothing is recording)."""
    span = trace.get_current_span()
    if span.is_recording():
        for key, value in attributes.items():
            span.set_attribute(key, value)
