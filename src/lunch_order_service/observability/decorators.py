"""OpenTelemetry tracing decorators."""

import asyncio
import functools
import inspect
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Span

# Type variable for generic function signatures
F = TypeVar("F", bound=Callable[..., Any])


def _record_outcome(span: Span, result: Any) -> None:
    # Lifecycle operations report failures as values, not exceptions
    success = getattr(result, "success", True)
    span.set_attribute("success", bool(success))
    error = getattr(result, "error", None)
    if not success and error is not None:
        span.set_attribute("order.error_kind", error.kind.value)


def _record_exception(span: Span, exc: Exception) -> None:
    span.set_attribute("success", False)
    span.set_attribute("error.type", type(exc).__name__)
    span.set_attribute("error.message", str(exc))
    span.record_exception(exc)


def traced(
    span_name: str | None = None,
    service_name: str = "lunch-order-svc",
    attributes: Iterable[str] = (),
) -> Callable[[F], F]:
    """Decorator to add OpenTelemetry tracing to a function.

    Creates a span for the decorated function. Named arguments listed in
    ``attributes`` (e.g. ``order_number``, ``menu_id``) are copied onto the
    span as ``order.<name>``. A returned result whose ``success`` is False
    marks the span unsuccessful with its error kind. Async functions are
    supported.

    Args:
        span_name: Name for the span (defaults to function name if not provided)
        service_name: Service name for span attributes
        attributes: Argument names to record as span attributes

    Returns:
        Decorated function with tracing

    Example:
        @traced("create_order", attributes=("user_id", "menu_id"))
        async def create_order(self, user_id: str, menu_id: str) -> OrderResult:
            ...
    """
    attribute_names = tuple(attributes)

    def decorator(func: F) -> F:
        name = span_name or func.__name__
        tracer = trace.get_tracer(service_name)
        signature = inspect.signature(func)

        def annotate(span: Span, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
            span.set_attribute("service.name", service_name)
            if span_name:
                span.set_attribute("function.name", func.__name__)
            if attribute_names:
                bound = signature.bind_partial(*args, **kwargs)
                for attr in attribute_names:
                    value = bound.arguments.get(attr)
                    if value is not None:
                        span.set_attribute(f"order.{attr}", str(value))

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            with tracer.start_as_current_span(name) as span:
                annotate(span, args, kwargs)
                try:
                    result = await func(*args, **kwargs)
                    _record_outcome(span, result)
                    return result
                except Exception as e:
                    _record_exception(span, e)
                    raise

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with tracer.start_as_current_span(name) as span:
                annotate(span, args, kwargs)
                try:
                    result = func(*args, **kwargs)
                    _record_outcome(span, result)
                    return result
                except Exception as e:
                    _record_exception(span, e)
                    raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore
        return sync_wrapper  # type: ignore

    return decorator
