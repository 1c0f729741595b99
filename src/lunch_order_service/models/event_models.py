"""Order lifecycle events published to collaborators (notification, audit)."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from lunch_order_service.models.order_models import Order


class OrderEventType(str, Enum):
    ORDER_CREATED = "OrderCreated"
    ORDER_MODIFIED = "OrderModified"
    ORDER_CANCELLED = "OrderCancelled"


class OrderEvent(BaseModel):
    """Event emitted after an order change has been persisted.

    Attributes:
        event_type: Which lifecycle transition happened
        order: The order as persisted
        occurred_at: When the event was raised
    """

    event_type: OrderEventType
    order: Order
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def created(cls, order: Order) -> "OrderEvent":
        return cls(event_type=OrderEventType.ORDER_CREATED, order=order)

    @classmethod
    def modified(cls, order: Order) -> "OrderEvent":
        return cls(event_type=OrderEventType.ORDER_MODIFIED, order=order)

    @classmethod
    def cancelled(cls, order: Order) -> "OrderEvent":
        return cls(event_type=OrderEventType.ORDER_CANCELLED, order=order)

    def to_detail(self) -> dict[str, Any]:
        """JSON-compatible payload used as the EventBridge detail."""
        return {
            "order_id": self.order.id,
            "order_number": str(self.order.order_number),
            "user_id": self.order.user_id,
            "menu_id": self.order.menu_id,
            "status": self.order.status.value,
            "occurred_at": self.occurred_at.isoformat(),
            "order": self.order.model_dump(mode="json"),
        }
