"""Storage interfaces consumed by the order lifecycle service.

Concrete adapters (DynamoDB in production, in-memory in tests) are bound at
process start. Unlike the read helpers in other repositories, these
interfaces raise typed exceptions because the service must tell a missing
row apart from a store failure.
"""

from abc import ABC, abstractmethod
from datetime import date

from lunch_order_service.models.order_models import OptionCount, Order, OrderFilters


class OrderStoreError(Exception):
    """Store or transport failure. Retryable by the caller."""


class DuplicateActiveOrderError(OrderStoreError):
    """A non-cancelled order for the (user_id, menu_id) pair is already committed."""


class OrderRowNotFoundError(OrderStoreError):
    """The order id does not exist."""


class OrderAlreadyCancelledError(OrderStoreError):
    """The stored order is already CANCELLED and cannot be replaced."""


class SequenceExhaustedError(OrderStoreError):
    """All sequence values for the date have been issued."""


class SequenceAllocationError(OrderStoreError):
    """The counter could not be incremented after the bounded retries."""


class OrderStore(ABC):
    """Durable order storage with an active-order uniqueness constraint."""

    @abstractmethod
    def find_active(self, user_id: str, menu_id: str) -> Order | None:
        """Return the non-cancelled order for the pair, or None."""

    @abstractmethod
    def insert(self, order: Order) -> None:
        """Insert a new order.

        Raises:
            DuplicateActiveOrderError: If the pair already has an active order
            OrderStoreError: On any other store failure
        """

    @abstractmethod
    def update(self, order: Order) -> None:
        """Replace the stored order with the same id.

        Raises:
            OrderRowNotFoundError: If the id does not exist
            OrderAlreadyCancelledError: If the stored row is already cancelled
            OrderStoreError: On any other store failure
        """

    @abstractmethod
    def find_by_order_number(self, order_number: str) -> Order | None:
        """Return the order with the given rendered order number, or None."""

    @abstractmethod
    def find_by_menu_id(self, menu_id: str) -> list[Order]:
        """Return every order placed against a menu, cancelled ones included."""

    @abstractmethod
    def find_by_user_id(self, user_id: str) -> list[Order]:
        """Return every order placed by a user, cancelled ones included."""

    def count_by_menu_and_options(self, menu_id: str, filters: OrderFilters) -> list[OptionCount]:
        """Count active orders per (option group, value) for a menu.

        Args:
            menu_id: Menu to tally
            filters: Orderer attribute filters

        Returns:
            list: OptionCount entries sorted by group id then value
        """
        counts: dict[tuple[str, str], int] = {}
        for order in self.find_by_menu_id(menu_id):
            if not order.is_active or not filters.matches(order):
                continue
            for group_id, values in order.selected_options.items():
                for value in values:
                    counts[(group_id, value)] = counts.get((group_id, value), 0) + 1

        return [
            OptionCount(group_id=group_id, value=value, count=count)
            for (group_id, value), count in sorted(counts.items())
        ]


class SequenceAllocator(ABC):
    """Per-date atomic counter issuing order number suffixes."""

    @abstractmethod
    def next_sequence(self, available_date: date) -> int:
        """Atomically increment and return the counter for the date.

        Raises:
            SequenceExhaustedError: If the counter already reached the maximum
            SequenceAllocationError: If the store stayed unreachable
        """
