"""Order domain models.

These models represent boxed-lunch orders, the value types they are built
from (Money, OrderNumber), and the read-side shapes used by admin tallies.
Orders are stored in DynamoDB with id as partition key.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator

MAX_SEQUENCE = 9999

ORDER_NUMBER_PATTERN = re.compile(r"([0-9]{8})-([0-9]{4})")


class Money(BaseModel):
    """Amount in minor currency units. Only JPY is supported."""

    model_config = ConfigDict(frozen=True)

    amount: int = Field(..., description="Amount in minor currency units", ge=0)
    currency: Literal["JPY"] = Field(default="JPY", description="ISO 4217 currency code")

    @model_validator(mode="before")
    @classmethod
    def accept_plain_amount(cls, data: Any) -> Any:
        """Allow a bare integer (or DynamoDB Decimal) in place of the full object."""
        if isinstance(data, bool):
            return data
        if isinstance(data, (int, Decimal)):
            return {"amount": int(data)}
        return data

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


class OrderNumber(BaseModel):
    """Human-facing order identifier rendered as ``YYYYMMDD-NNNN``.

    The date part is the menu's available date and the suffix is the
    per-date sequence issued by the sequence allocator.
    """

    model_config = ConfigDict(frozen=True)

    available_date: date = Field(..., description="Day the lunch is delivered")
    sequence: int = Field(..., description="Per-date sequence", ge=1, le=MAX_SEQUENCE)

    @model_validator(mode="before")
    @classmethod
    def parse_string_form(cls, data: Any) -> Any:
        """Accept the rendered ``YYYYMMDD-NNNN`` form."""
        if isinstance(data, str):
            match = ORDER_NUMBER_PATTERN.fullmatch(data)
            if match is None:
                raise ValueError(f"order number must look like YYYYMMDD-NNNN, got {data!r}")
            return {
                "available_date": datetime.strptime(match.group(1), "%Y%m%d").date(),
                "sequence": int(match.group(2)),
            }
        return data

    @model_serializer
    def serialize(self) -> str:
        return str(self)

    @classmethod
    def generate(cls, available_date: date, sequence: int) -> "OrderNumber":
        """Build an order number from a delivery date and sequence value.

        Raises:
            ValueError: If sequence is outside 1..9999
        """
        return cls(available_date=available_date, sequence=sequence)

    @classmethod
    def parse(cls, value: str) -> "OrderNumber":
        """Parse the rendered form.

        Raises:
            ValueError: If value is not exactly 8 digits, a hyphen and 4 digits
        """
        return cls.model_validate(value)

    def __str__(self) -> str:
        return f"{self.available_date:%Y%m%d}-{self.sequence:04d}"


class OrderStatus(str, Enum):
    """Enumeration of order status values."""

    CONFIRMED = "CONFIRMED"
    MODIFIED = "MODIFIED"
    CANCELLED = "CANCELLED"


# CANCELLED is terminal; re-ordering creates a new order.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CONFIRMED: frozenset({OrderStatus.MODIFIED, OrderStatus.CANCELLED}),
    OrderStatus.MODIFIED: frozenset({OrderStatus.MODIFIED, OrderStatus.CANCELLED}),
    OrderStatus.CANCELLED: frozenset(),
}


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"
    NO_ANSWER = "NO_ANSWER"


class AgeGroup(str, Enum):
    UNDER_20 = "UNDER_20"
    TWENTIES = "20S"
    THIRTIES = "30S"
    FORTIES = "40S"
    FIFTIES = "50S"
    SIXTY_PLUS = "60_PLUS"


class UserInfo(BaseModel):
    """Snapshot of the orderer's declared attributes at order time."""

    department: str = Field(..., description="Department name", min_length=1)
    display_name: str = Field(..., description="Name shown on the lunch box", min_length=1)
    gender: Gender = Field(..., description="Gender category")
    age_group: AgeGroup = Field(..., description="Age bracket")

    def to_dynamodb_item(self) -> dict[str, Any]:
        return {
            "department": self.department,
            "display_name": self.display_name,
            "gender": self.gender.value,
            "age_group": self.age_group.value,
        }


class Order(BaseModel):
    """One user's reservation against one menu.

    At most one order per (user_id, menu_id) may be in a non-cancelled status.
    """

    id: str = Field(..., description="Unique order identifier")
    user_id: str = Field(..., description="User who placed the order")
    menu_id: str = Field(..., description="Menu the order is placed against")
    order_number: OrderNumber = Field(..., description="Human-facing order number")
    user_info: UserInfo = Field(..., description="Orderer attributes at order time")
    selected_options: dict[str, list[str]] = Field(
        default_factory=dict, description="Selected values keyed by option group id"
    )
    price: Money = Field(..., description="Menu price at order time")
    status: OrderStatus = Field(default=OrderStatus.CONFIRMED, description="Current status")
    ordered_at: datetime = Field(..., description="Order creation timestamp")
    modified_at: datetime | None = Field(None, description="Timestamp of last modification")
    cancelled_at: datetime | None = Field(None, description="Cancellation timestamp")

    @property
    def is_active(self) -> bool:
        return self.status != OrderStatus.CANCELLED

    def can_transition_to(self, status: OrderStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "id": self.id,
            "user_id": self.user_id,
            "menu_id": self.menu_id,
            "order_number": str(self.order_number),
            "user_info": self.user_info.to_dynamodb_item(),
            "selected_options": {k: list(v) for k, v in self.selected_options.items()},
            "price": self.price.amount,
            "currency": self.price.currency,
            "status": self.status.value,
            "ordered_at": self.ordered_at.isoformat(),
        }

        if self.modified_at is not None:
            item["modified_at"] = self.modified_at.isoformat()

        if self.cancelled_at is not None:
            item["cancelled_at"] = self.cancelled_at.isoformat()

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "Order":
        """Create Order from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Order: Parsed model instance
        """
        data: dict[str, Any] = {
            "id": item["id"],
            "user_id": item["user_id"],
            "menu_id": item["menu_id"],
            "order_number": OrderNumber.parse(item["order_number"]),
            "user_info": UserInfo(**item["user_info"]),
            "selected_options": {
                k: [str(v) for v in values] for k, values in item.get("selected_options", {}).items()
            },
            "price": Money(amount=int(item["price"]), currency=item.get("currency", "JPY")),
            "status": OrderStatus(item["status"]),
            "ordered_at": datetime.fromisoformat(item["ordered_at"]),
        }

        if "modified_at" in item:
            data["modified_at"] = datetime.fromisoformat(item["modified_at"])

        if "cancelled_at" in item:
            data["cancelled_at"] = datetime.fromisoformat(item["cancelled_at"])

        return cls(**data)


class OrderFilters(BaseModel):
    """Optional attribute filters for admin tallies."""

    department: str | None = None
    gender: Gender | None = None
    age_group: AgeGroup | None = None

    def matches(self, order: Order) -> bool:
        info = order.user_info
        if self.department is not None and info.department != self.department:
            return False
        if self.gender is not None and info.gender != self.gender:
            return False
        if self.age_group is not None and info.age_group != self.age_group:
            return False
        return True


class OptionCount(BaseModel):
    """Number of active orders selecting one value of one option group."""

    group_id: str
    value: str
    count: int = Field(..., ge=0)
