"""EventBridge publisher for order lifecycle events."""

import asyncio
import json
import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from lunch_order_service.models.event_models import OrderEvent
from lunch_order_service.publishers.base_publisher import EventPublisher

logger = logging.getLogger(__name__)

EVENT_SOURCE = "com.lunch.orders"


class EventBridgePublisher(EventPublisher):
    """Publishes order events to an EventBridge bus.

    Notification and audit consumers subscribe with rules on the
    ``com.lunch.orders`` source and the event detail-type.
    """

    def __init__(self, events_client: Any, event_bus_name: str = "default") -> None:
        """Initialize the publisher.

        Args:
            events_client: Boto3 EventBridge client
            event_bus_name: Name of the target event bus
        """
        super().__init__("eventbridge")
        self.events_client = events_client
        self.event_bus_name = event_bus_name

    def build_entry(self, event: OrderEvent) -> dict[str, Any]:
        return {
            "Source": EVENT_SOURCE,
            "DetailType": event.event_type.value,
            "Detail": json.dumps(event.to_detail()),
            "EventBusName": self.event_bus_name,
            "Time": event.occurred_at,
        }

    async def publish(self, event: OrderEvent) -> bool:
        """Send the event with PutEvents.

        Args:
            event: The order event to deliver

        Returns:
            bool: True if EventBridge accepted the entry, False otherwise
        """
        try:
            response = await asyncio.to_thread(
                self.events_client.put_events, Entries=[self.build_entry(event)]
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                f"Failed to publish {event.event_type.value} for order "
                f"{event.order.order_number}: {e}"
            )
            return False

        if response.get("FailedEntryCount", 0) > 0:
            entry = response.get("Entries", [{}])[0]
            logger.error(
                f"EventBridge rejected {event.event_type.value} for order "
                f"{event.order.order_number}: {entry.get('ErrorCode')} {entry.get('ErrorMessage')}"
            )
            return False

        return True
