"""Tracing, metrics and structured logging for the lunch order service."""

from lunch_order_service.observability.config import configure_logging, setup_observability
from lunch_order_service.observability.decorators import traced

__all__ = ["setup_observability", "configure_logging", "traced"]
