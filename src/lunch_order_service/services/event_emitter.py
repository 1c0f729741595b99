"""Fire-and-forget emission of order lifecycle events."""

import asyncio
import logging

from lunch_order_service.models.event_models import OrderEvent
from lunch_order_service.observability.metrics import record_event_publish_failure
from lunch_order_service.publishers.base_publisher import EventPublisher

logger = logging.getLogger(__name__)


class OrderEventEmitter:
    """Schedules event delivery without making the caller wait for it.

    Each emitted event is published on a detached task. Failures (a False
    return or any exception from the publisher) are logged and counted, never
    propagated. Task references are held until completion so pending
    deliveries are not garbage collected.
    """

    def __init__(self, publishers: list[EventPublisher]) -> None:
        """Initialize the emitter.

        Args:
            publishers: Channels every event is delivered to
        """
        self.publishers = publishers
        self._pending: set[asyncio.Task[None]] = set()

    def emit(self, event: OrderEvent) -> None:
        """Schedule delivery of an event and return immediately.

        Must be called from a running event loop.

        Args:
            event: The order event to deliver
        """
        for publisher in self.publishers:
            task = asyncio.create_task(self._deliver(publisher, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, publisher: EventPublisher, event: OrderEvent) -> None:
        try:
            delivered = await publisher.publish(event)
        except Exception as e:
            logger.exception(
                f"Publisher {publisher.publisher_name} raised while delivering "
                f"{event.event_type.value} for order {event.order.order_number}: {e}"
            )
            delivered = False

        if not delivered:
            logger.warning(
                f"Dropped {event.event_type.value} for order {event.order.order_number} "
                f"via {publisher.publisher_name}"
            )
            record_event_publish_failure(event.event_type.value)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
