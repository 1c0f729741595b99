"""Menu data models.

These models represent the read-only menu snapshot served by the menu service.
The order service never mutates a menu; menu management lives elsewhere.
"""

from datetime import date, datetime, tzinfo
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from lunch_order_service.models.order_models import Money


class MenuStatus(str, Enum):
    """Enumeration of menu status values."""

    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class OptionGroupType(str, Enum):
    RADIO = "RADIO"
    SELECT = "SELECT"
    CHECKBOX = "CHECKBOX"


class OptionGroup(BaseModel):
    """A group of selectable values offered with a menu (rice size, side dish, ...)."""

    id: str = Field(..., description="Option group identifier")
    name: str = Field(..., description="Display name")
    type: OptionGroupType = Field(..., description="Selection widget type")
    required: bool = Field(default=False, description="Whether a selection is mandatory")
    values: list[str] = Field(default_factory=list, description="Allowed values")

    @property
    def is_multi_select(self) -> bool:
        return self.type == OptionGroupType.CHECKBOX


class Menu(BaseModel):
    """A single day's orderable lunch offering."""

    id: str = Field(..., description="Unique identifier for the menu")
    name: str = Field(..., description="Menu name")
    price: Money = Field(..., description="Price per box")
    available_date: date = Field(..., description="Day the lunch is delivered")
    order_deadline: datetime = Field(..., description="Last moment orders may change")
    status: MenuStatus = Field(default=MenuStatus.DRAFT, description="Publication status")
    max_quantity: int | None = Field(None, description="Optional cap on boxes", gt=0)
    option_groups: list[OptionGroup] = Field(default_factory=list)

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Money) -> Money:
        """Validate that the price is strictly positive."""
        if v.amount <= 0:
            raise ValueError("price must be positive")
        return v

    @model_validator(mode="after")
    def validate_deadline_before_delivery(self) -> "Menu":
        """Validate that the order deadline falls strictly before the available date.

        An aware deadline is compared in its own offset here. The service zone
        is not known to the model, so callers re-check with
        closes_before_delivery once the zone is known.
        """
        if self.order_deadline.date() >= self.available_date:
            raise ValueError("order_deadline must be before available_date")
        return self

    def deadline_in(self, tz: tzinfo) -> datetime:
        """Return the deadline as an aware datetime, treating naive values as local to tz."""
        if self.order_deadline.tzinfo is None:
            return self.order_deadline.replace(tzinfo=tz)
        return self.order_deadline

    def closes_before_delivery(self, tz: tzinfo) -> bool:
        """Whether the deadline, seen as a wall-clock date in tz, precedes the delivery day."""
        return self.deadline_in(tz).astimezone(tz).date() < self.available_date

    def is_past_deadline(self, now: datetime, tz: tzinfo) -> bool:
        return now > self.deadline_in(tz)

    def get_option_group(self, group_id: str) -> OptionGroup | None:
        for group in self.option_groups:
            if group.id == group_id:
                return group
        return None
