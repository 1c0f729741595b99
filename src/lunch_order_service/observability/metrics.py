"""Custom metrics for the lunch order service."""

from opentelemetry import metrics

# Get meter for order service
meter = metrics.get_meter("lunch-order-svc")

# Order lifecycle counters
orders_created_counter = meter.create_counter(
    name="orders_created_total",
    description="Total number of orders created",
    unit="1",
)

orders_modified_counter = meter.create_counter(
    name="orders_modified_total",
    description="Total number of orders modified",
    unit="1",
)

orders_cancelled_counter = meter.create_counter(
    name="orders_cancelled_total",
    description="Total number of orders cancelled",
    unit="1",
)

order_failure_counter = meter.create_counter(
    name="order_operation_failure_total",
    description="Total number of failed order operations by operation and error kind",
    unit="1",
)

# Sequence allocation latency
sequence_allocation_histogram = meter.create_histogram(
    name="sequence_allocation_duration_seconds",
    description="Duration of order sequence allocation",
    unit="s",
)

event_publish_failure_counter = meter.create_counter(
    name="order_event_publish_failure_total",
    description="Total number of order events that could not be delivered",
    unit="1",
)


def record_order_created(menu_id: str) -> None:
    """Record a created order.

    Args:
        menu_id: The menu the order was placed against
    """
    orders_created_counter.add(1, {"menu_id": menu_id})


def record_order_modified(menu_id: str) -> None:
    orders_modified_counter.add(1, {"menu_id": menu_id})


def record_order_cancelled(menu_id: str) -> None:
    orders_cancelled_counter.add(1, {"menu_id": menu_id})


def record_order_failure(operation: str, error_kind: str) -> None:
    """Record a failed order operation.

    Args:
        operation: The lifecycle operation (create, modify, cancel)
        error_kind: ErrorKind value that was returned
    """
    order_failure_counter.add(1, {"operation": operation, "error_kind": error_kind})


def record_sequence_allocation(duration_seconds: float) -> None:
    """Record the duration of a sequence allocation.

    Args:
        duration_seconds: Duration in seconds
    """
    sequence_allocation_histogram.record(duration_seconds)


def record_event_publish_failure(event_type: str) -> None:
    event_publish_failure_counter.add(1, {"event_type": event_type})
