"""OpenTelemetry tracing decorators."""

import functools
import inspect
from collections.abc import Callable
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Span

F = TypeVar("F", bound=Callable[..., Any])

# Keyword arguments copied onto the span when a traced call receives them
SPAN_ARGUMENTS = ("table_id", "user_id", "order_id")


def _annotate(span: Span, func: Callable[..., Any], span_name: str | None, kwargs: dict[str, Any]) -> None:
    if span_name:
        span.set_attribute("function.name", func.__name__)
    for name in SPAN_ARGUMENTS:
        value = kwargs.get(name)
        if isinstance(value, str):
            span.set_attribute(f"order.{name}", value)


def _record_failure(span: Span, error: Exception) -> None:
    span.set_attribute("success", False)
    span.set_attribute("error.type", type(error).__name__)
    span.record_exception(error)


def traced(span_name: str | None = None, service_name: str = "table-order-svc") -> Callable[[F], F]:
    """Decorator to wrap a function call in an OpenTelemetry span.

    Works for plain and async functions. Exceptions are recorded on the span
    and re-raised. ``table_id``, ``user_id`` and ``order_id`` keyword
    arguments are attached as span attributes.

    Args:
        span_name: Name for the span (defaults to the function name)
        service_name: Tracer name

    Example:
        @traced("submit_group_order")
        async def submit_group_order(table_id: str, items: list) -> str:
            ...
    """

    def decorator(func: F) -> F:
        name = span_name or func.__name__
        tracer = trace.get_tracer(service_name)

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with tracer.start_as_current_span(name) as span:
                    _annotate(span, func, span_name, kwargs)
                    try:
                        result = await func(*args, **kwargs)
                    except Exception as e:
                        _record_failure(span, e)
                        raise
                    span.set_attribute("success", True)
                    return result

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with tracer.start_as_current_span(name) as span:
                _annotate(span, func, span_name, kwargs)
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _record_failure(span, e)
                    raise
                span.set_attribute("success", True)
                return result

        return sync_wrapper  # type: ignore[return-value]

    return decorator
