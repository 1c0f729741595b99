"""Base publisher for order lifecycle events.

This module defines the abstract base class that all event publishers must
implement. Publishers use simple return values (False) for expected delivery
failures rather than raising exceptions.
"""

from abc import ABC, abstractmethod

from lunch_order_service.models.event_models import OrderEvent


class EventPublisher(ABC):
    """Abstract base class for order event publishers.

    Delivery is best-effort and at-most-once: publishers do not retry and
    callers never block an order operation on them.
    """

    def __init__(self, publisher_name: str) -> None:
        """Initialize the publisher.

        Args:
            publisher_name: Name of the delivery channel (e.g., 'eventbridge')
        """
        self.publisher_name = publisher_name

    @abstractmethod
    async def publish(self, event: OrderEvent) -> bool:
        """Deliver one event.

        Args:
            event: The order event to deliver

        Returns:
            bool: True if the channel accepted the event, False otherwise
        """
        pass
