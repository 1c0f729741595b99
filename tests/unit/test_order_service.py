"""Unit tests for OrderLifecycleService."""

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, date, datetime
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from lunch_order_service.models.event_models import OrderEventType
from lunch_order_service.models.menu_models import Menu, MenuStatus
from lunch_order_service.models.order_models import (
    AgeGroup,
    Gender,
    Order,
    OrderFilters,
    OrderStatus,
    UserInfo,
)
from lunch_order_service.publishers.base_publisher import EventPublisher
from lunch_order_service.repositories.base_repository import (
    OrderAlreadyCancelledError,
    OrderStore,
    OrderStoreError,
    SequenceAllocationError,
    SequenceAllocator,
)
from lunch_order_service.repositories.order_repositories import UserProfileRepository
from lunch_order_service.services.event_emitter import OrderEventEmitter
from lunch_order_service.services.menu_service_client import MenuServiceClient, MenuServiceError
from lunch_order_service.services.order_errors import ErrorKind
from lunch_order_service.services.order_service import OrderLifecycleService
from tests.fakes import InMemoryOrderStore, InMemorySequenceAllocator

AVAILABLE_DATE = date(2024, 1, 20)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock(before_deadline: datetime) -> Clock:
    return Clock(before_deadline)


@pytest.fixture
def menu_reader(mock_menu: Menu) -> MagicMock:
    reader = MagicMock(spec=MenuServiceClient)
    reader.get_menu = AsyncMock(return_value=mock_menu)
    return reader


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def allocator() -> InMemorySequenceAllocator:
    return InMemorySequenceAllocator()


@pytest.fixture
def emitter() -> MagicMock:
    return MagicMock(spec=OrderEventEmitter)


@pytest.fixture
def profiles() -> MagicMock:
    repository = MagicMock(spec=UserProfileRepository)
    repository.save_profile.return_value = True
    return repository


@pytest.fixture
def make_service(
    menu_reader: MagicMock,
    store: InMemoryOrderStore,
    allocator: InMemorySequenceAllocator,
    emitter: MagicMock,
    profiles: MagicMock,
    clock: Clock,
) -> Callable[..., OrderLifecycleService]:
    def factory(**overrides: object) -> OrderLifecycleService:
        kwargs: dict[str, object] = {
            "menu_reader": menu_reader,
            "order_store": store,
            "sequence_allocator": allocator,
            "event_emitter": emitter,
            "profile_repository": profiles,
            "clock": clock,
        }
        kwargs.update(overrides)
        return OrderLifecycleService(**kwargs)  # type: ignore[arg-type]

    return factory


@pytest.fixture
def service(make_service: Callable[..., OrderLifecycleService]) -> OrderLifecycleService:
    return make_service()


def other_user_info() -> UserInfo:
    return UserInfo(
        department="Sales",
        display_name="Tanaka",
        gender=Gender.MALE,
        age_group=AgeGroup.TWENTIES,
    )


VALID_OPTIONS = {"rice": "regular", "sides": ["salad"]}


class SlowOrderStore(InMemoryOrderStore):
    def find_active(self, user_id: str, menu_id: str) -> Order | None:
        time.sleep(0.5)
        return None


class FailingQueryStore(InMemoryOrderStore):
    def find_by_menu_id(self, menu_id: str) -> list[Order]:
        raise OrderStoreError("query failed")


@pytest.mark.unit
class TestCreateOrder:
    """Test suite for create_order."""

    @pytest.mark.asyncio
    async def test_create_order_success(
        self,
        service: OrderLifecycleService,
        emitter: MagicMock,
        profiles: MagicMock,
        mock_user_info: UserInfo,
        mock_menu_id: str,
        before_deadline: datetime,
    ) -> None:
        """Test that a valid order is confirmed with the first number of the day."""
        result = await service.create_order(
            "user_001", mock_menu_id, mock_user_info, {"rice": "large", "sides": ["soup"]}
        )

        assert result.success
        assert result.error is None
        order = result.order
        assert order is not None
        assert str(order.order_number) == "20240120-0001"
        assert order.status == OrderStatus.CONFIRMED
        assert order.price.amount == 650
        assert order.ordered_at == before_deadline
        assert order.selected_options == {"rice": ["large"], "sides": ["soup"]}
        assert order.id.startswith("ord_")
        profiles.save_profile.assert_called_once_with("user_001", mock_user_info)
        event = emitter.emit.call_args.args[0]
        assert event.event_type == OrderEventType.ORDER_CREATED
        assert event.order == order

    @pytest.mark.asyncio
    async def test_scenario_duplicate_then_second_user(
        self, service: OrderLifecycleService, mock_user_info: UserInfo, mock_menu_id: str
    ) -> None:
        """Test one active order per user and per-date numbering across users."""
        first = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)
        duplicate = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)
        second = await service.create_order("U2", mock_menu_id, other_user_info(), VALID_OPTIONS)

        assert first.success
        assert str(first.order.order_number) == "20240120-0001"
        assert not duplicate.success
        assert duplicate.error.kind == ErrorKind.DUPLICATE_ORDER
        assert second.success
        assert str(second.order.order_number) == "20240120-0002"

    @pytest.mark.asyncio
    async def test_scenario_cancel_frees_slot(
        self,
        service: OrderLifecycleService,
        store: InMemoryOrderStore,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that cancelling lets the user order again with a new, higher number."""
        first = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)
        cancelled = await service.cancel_order(str(first.order.order_number), "U1")
        again = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)

        assert cancelled.success
        assert again.success
        assert again.order.id != first.order.id
        assert again.order.order_number.sequence > first.order.order_number.sequence
        assert store.orders[first.order.id].status == OrderStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_scenario_after_deadline_consumes_no_sequence(
        self,
        service: OrderLifecycleService,
        allocator: InMemorySequenceAllocator,
        store: InMemoryOrderStore,
        clock: Clock,
        after_deadline: datetime,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that a late order fails and leaves the counter untouched."""
        clock.now = after_deadline

        result = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)

        assert not result.success
        assert result.error.kind == ErrorKind.ORDER_DEADLINE_PASSED
        assert allocator.current_sequence(AVAILABLE_DATE) == 0
        assert store.insert_calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", list(MenuStatus))
    async def test_deadline_wins_over_menu_status(
        self,
        service: OrderLifecycleService,
        menu_reader: MagicMock,
        mock_menu: Menu,
        clock: Clock,
        after_deadline: datetime,
        mock_user_info: UserInfo,
        status: MenuStatus,
    ) -> None:
        """Test that after the deadline the error is always ORDER_DEADLINE_PASSED."""
        menu_reader.get_menu.return_value = mock_menu.model_copy(update={"status": status})
        clock.now = after_deadline

        result = await service.create_order("U1", mock_menu.id, mock_user_info, VALID_OPTIONS)

        assert result.error.kind == ErrorKind.ORDER_DEADLINE_PASSED

    @pytest.mark.asyncio
    async def test_deadline_instant_is_still_open(
        self,
        service: OrderLifecycleService,
        clock: Clock,
        mock_menu: Menu,
        mock_user_info: UserInfo,
    ) -> None:
        """Test that an order exactly at the deadline is accepted."""
        clock.now = mock_menu.order_deadline

        result = await service.create_order("U1", mock_menu.id, mock_user_info, VALID_OPTIONS)

        assert result.success

    @pytest.mark.asyncio
    async def test_menu_not_found(
        self, service: OrderLifecycleService, menu_reader: MagicMock, mock_user_info: UserInfo
    ) -> None:
        """Test that an unknown menu fails with MENU_NOT_FOUND."""
        menu_reader.get_menu.return_value = None

        result = await service.create_order("U1", "menu_missing", mock_user_info, VALID_OPTIONS)

        assert result.error.kind == ErrorKind.MENU_NOT_FOUND
        assert result.error.kind.http_status == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [MenuStatus.DRAFT, MenuStatus.CLOSED, MenuStatus.CANCELLED])
    async def test_menu_not_active(
        self,
        service: OrderLifecycleService,
        menu_reader: MagicMock,
        mock_menu: Menu,
        allocator: InMemorySequenceAllocator,
        mock_user_info: UserInfo,
        status: MenuStatus,
    ) -> None:
        """Test that non-active menus reject orders before the deadline."""
        menu_reader.get_menu.return_value = mock_menu.model_copy(update={"status": status})

        result = await service.create_order("U1", mock_menu.id, mock_user_info, VALID_OPTIONS)

        assert result.error.kind == ErrorKind.MENU_NOT_AVAILABLE
        assert allocator.current_sequence(AVAILABLE_DATE) == 0

    @pytest.mark.asyncio
    async def test_invalid_options(
        self,
        service: OrderLifecycleService,
        store: InMemoryOrderStore,
        emitter: MagicMock,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that every offending option is listed and nothing is stored."""
        result = await service.create_order(
            "U1", mock_menu_id, mock_user_info, {"sides": ["cake"], "drink": "tea"}
        )

        assert result.error.kind == ErrorKind.VALIDATION_ERROR
        fields = {fe.field for fe in result.error.field_errors}
        assert fields == {
            "selected_options.drink",
            "selected_options.rice",
            "selected_options.sides",
        }
        assert store.orders == {}
        emitter.emit.assert_not_called()

    @pytest.mark.asyncio
    async def test_sequence_exhausted(
        self,
        service: OrderLifecycleService,
        allocator: InMemorySequenceAllocator,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that the 10000th order of a day fails with SEQUENCE_EXHAUSTED."""
        allocator.set_sequence(AVAILABLE_DATE, 9999)

        result = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)

        assert result.error.kind == ErrorKind.SEQUENCE_EXHAUSTED
        assert not result.error.retryable

    @pytest.mark.asyncio
    async def test_allocation_error_is_retryable(
        self,
        make_service: Callable[..., OrderLifecycleService],
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that an unreachable counter returns a retryable ALLOCATION_ERROR."""
        allocator = MagicMock(spec=SequenceAllocator)
        allocator.next_sequence.side_effect = SequenceAllocationError("throttled")
        service = make_service(sequence_allocator=allocator)

        result = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)

        assert result.error.kind == ErrorKind.ALLOCATION_ERROR
        assert result.error.retryable
        assert result.error.kind.http_status == 503

    @pytest.mark.asyncio
    async def test_insert_store_failure(
        self,
        make_service: Callable[..., OrderLifecycleService],
        emitter: MagicMock,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that a failed insert returns INTERNAL_ERROR and emits nothing."""
        store = MagicMock(spec=OrderStore)
        store.find_active.return_value = None
        store.insert.side_effect = OrderStoreError("write failed")
        service = make_service(order_store=store)

        result = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)

        assert result.error.kind == ErrorKind.INTERNAL_ERROR
        assert result.error.retryable
        emitter.emit.assert_not_called()

    @pytest.mark.asyncio
    async def test_store_timeout(
        self,
        make_service: Callable[..., OrderLifecycleService],
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that a store call exceeding the timeout returns INTERNAL_ERROR."""
        store = SlowOrderStore()
        service = make_service(order_store=store)

        result = await service.create_order(
            "U1", mock_menu_id, mock_user_info, VALID_OPTIONS, timeout=0.05
        )

        assert result.error.kind == ErrorKind.INTERNAL_ERROR
        assert store.insert_calls == 0

    @pytest.mark.asyncio
    async def test_menu_timeout(
        self,
        service: OrderLifecycleService,
        menu_reader: MagicMock,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that a slow menu service returns INTERNAL_ERROR."""

        async def slow_menu(menu_id: str) -> None:
            await asyncio.sleep(1)

        menu_reader.get_menu.side_effect = slow_menu

        result = await service.create_order(
            "U1", mock_menu_id, mock_user_info, VALID_OPTIONS, timeout=0.01
        )

        assert result.error.kind == ErrorKind.INTERNAL_ERROR

    @pytest.mark.asyncio
    async def test_menu_service_error(
        self,
        service: OrderLifecycleService,
        menu_reader: MagicMock,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that an unreachable menu service returns INTERNAL_ERROR, not MENU_NOT_FOUND."""
        menu_reader.get_menu.side_effect = MenuServiceError("connection refused")

        result = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)

        assert result.error.kind == ErrorKind.INTERNAL_ERROR

    @pytest.mark.asyncio
    async def test_menu_closing_on_delivery_day_in_service_zone(
        self,
        make_service: Callable[..., OrderLifecycleService],
        menu_reader: MagicMock,
        allocator: InMemorySequenceAllocator,
        mock_menu: Menu,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that the deadline date is judged in the configured zone, not its own offset."""
        # 2024-01-19 16:00 UTC is 2024-01-20 01:00 in Tokyo, the delivery day itself
        menu_reader.get_menu.return_value = mock_menu.model_copy(
            update={"order_deadline": datetime(2024, 1, 19, 16, 0, tzinfo=UTC)}
        )
        tokyo = make_service(timezone=ZoneInfo("Asia/Tokyo"))
        utc = make_service(timezone=UTC)

        rejected = await tokyo.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)
        assert rejected.error.kind == ErrorKind.MENU_NOT_AVAILABLE
        assert allocator.current_sequence(AVAILABLE_DATE) == 0

        accepted = await utc.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)
        assert accepted.success

    @pytest.mark.asyncio
    async def test_past_deadline_wins_over_zone_mismatch(
        self,
        make_service: Callable[..., OrderLifecycleService],
        menu_reader: MagicMock,
        clock: Clock,
        mock_menu: Menu,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that a late request is reported as late even on a mis-dated menu."""
        deadline = datetime(2024, 1, 19, 16, 0, tzinfo=UTC)
        menu_reader.get_menu.return_value = mock_menu.model_copy(update={"order_deadline": deadline})
        clock.now = datetime(2024, 1, 19, 16, 0, 1, tzinfo=UTC)
        service = make_service(timezone=ZoneInfo("Asia/Tokyo"))

        result = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)

        assert result.error.kind == ErrorKind.ORDER_DEADLINE_PASSED

    @pytest.mark.asyncio
    async def test_profile_failure_is_not_fatal(
        self,
        service: OrderLifecycleService,
        profiles: MagicMock,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that a failing profile write does not fail the order."""
        profiles.save_profile.side_effect = RuntimeError("profile table missing")

        result = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)

        assert result.success

    @pytest.mark.asyncio
    async def test_works_without_profile_repository(
        self,
        make_service: Callable[..., OrderLifecycleService],
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that the profile snapshot is optional."""
        service = make_service(profile_repository=None)

        result = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)

        assert result.success

    @pytest.mark.asyncio
    async def test_event_failure_does_not_fail_order(
        self,
        make_service: Callable[..., OrderLifecycleService],
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that a publisher error never reaches the caller."""
        publisher = MagicMock(spec=EventPublisher)
        publisher.publisher_name = "broken"
        publisher.publish = AsyncMock(side_effect=RuntimeError("bus down"))
        emitter = OrderEventEmitter(publishers=[publisher])
        service = make_service(event_emitter=emitter)

        result = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)
        await emitter.drain()

        assert result.success
        publisher.publish.assert_awaited_once()


@pytest.mark.unit
class TestConcurrentCreate:
    """Concurrency properties of create_order."""

    @pytest.mark.asyncio
    async def test_concurrent_creates_for_same_pair(
        self,
        service: OrderLifecycleService,
        store: InMemoryOrderStore,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that exactly one of many racing creates for a pair succeeds."""
        results = await asyncio.gather(
            *[
                service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)
                for _ in range(10)
            ]
        )

        successes = [r for r in results if r.success]
        failures = [r for r in results if not r.success]
        assert len(successes) == 1
        assert len(failures) == 9
        assert all(r.error.kind == ErrorKind.DUPLICATE_ORDER for r in failures)
        assert len([o for o in store.orders.values() if o.is_active]) == 1

    @pytest.mark.asyncio
    async def test_concurrent_creates_get_distinct_numbers(
        self,
        service: OrderLifecycleService,
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that concurrent orders for one date never share a sequence."""
        results = await asyncio.gather(
            *[
                service.create_order(f"user_{i}", mock_menu_id, mock_user_info, VALID_OPTIONS)
                for i in range(25)
            ]
        )

        assert all(r.success for r in results)
        sequences = sorted(r.order.order_number.sequence for r in results)
        assert sequences == list(range(1, 26))


@pytest.mark.unit
class TestModifyOrder:
    """Test suite for modify_order."""

    @pytest.fixture
    def stored_order(self, store: InMemoryOrderStore, mock_order: Order) -> Order:
        store.orders[mock_order.id] = mock_order
        return mock_order

    @pytest.mark.asyncio
    async def test_modify_order_success(
        self,
        service: OrderLifecycleService,
        store: InMemoryOrderStore,
        emitter: MagicMock,
        profiles: MagicMock,
        stored_order: Order,
        before_deadline: datetime,
    ) -> None:
        """Test that modification replaces attributes and selections."""
        new_info = other_user_info()

        result = await service.modify_order(
            "20240120-0001", "user_001", new_info, {"rice": "small"}
        )

        assert result.success
        order = result.order
        assert order.status == OrderStatus.MODIFIED
        assert order.modified_at == before_deadline
        assert order.user_info == new_info
        assert order.selected_options == {"rice": ["small"]}
        assert order.order_number == stored_order.order_number
        assert store.orders[stored_order.id] == order
        profiles.save_profile.assert_called_once_with("user_001", new_info)
        assert emitter.emit.call_args.args[0].event_type == OrderEventType.ORDER_MODIFIED

    @pytest.mark.asyncio
    async def test_modify_twice(
        self, service: OrderLifecycleService, stored_order: Order, mock_user_info: UserInfo
    ) -> None:
        """Test that a modified order may be modified again."""
        await service.modify_order("20240120-0001", "user_001", mock_user_info, {"rice": "small"})
        result = await service.modify_order(
            "20240120-0001", "user_001", mock_user_info, {"rice": "large"}
        )

        assert result.success
        assert result.order.selected_options == {"rice": ["large"]}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order_number", ["20240120-0099", "not-a-number"])
    async def test_modify_unknown_order(
        self,
        service: OrderLifecycleService,
        stored_order: Order,
        mock_user_info: UserInfo,
        order_number: str,
    ) -> None:
        """Test that unknown or malformed numbers fail with ORDER_NOT_FOUND."""
        result = await service.modify_order(order_number, "user_001", mock_user_info, VALID_OPTIONS)

        assert result.error.kind == ErrorKind.ORDER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_modify_other_users_order(
        self, service: OrderLifecycleService, stored_order: Order, mock_user_info: UserInfo
    ) -> None:
        """Test that only the owner may modify."""
        result = await service.modify_order(
            "20240120-0001", "intruder", mock_user_info, VALID_OPTIONS
        )

        assert result.error.kind == ErrorKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_modify_after_deadline(
        self,
        service: OrderLifecycleService,
        store: InMemoryOrderStore,
        stored_order: Order,
        clock: Clock,
        after_deadline: datetime,
        mock_user_info: UserInfo,
    ) -> None:
        """Test that modification is blocked after the deadline."""
        clock.now = after_deadline

        result = await service.modify_order(
            "20240120-0001", "user_001", mock_user_info, VALID_OPTIONS
        )

        assert result.error.kind == ErrorKind.ORDER_DEADLINE_PASSED
        assert store.update_calls == 0

    @pytest.mark.asyncio
    async def test_modify_cancelled_order(
        self,
        service: OrderLifecycleService,
        store: InMemoryOrderStore,
        stored_order: Order,
        mock_user_info: UserInfo,
    ) -> None:
        """Test that a cancelled order cannot be reactivated by modification."""
        store.orders[stored_order.id] = stored_order.model_copy(
            update={"status": OrderStatus.CANCELLED}
        )

        result = await service.modify_order(
            "20240120-0001", "user_001", mock_user_info, VALID_OPTIONS
        )

        assert result.error.kind == ErrorKind.ALREADY_CANCELLED

    @pytest.mark.asyncio
    async def test_modify_with_invalid_options(
        self,
        service: OrderLifecycleService,
        store: InMemoryOrderStore,
        stored_order: Order,
        mock_user_info: UserInfo,
    ) -> None:
        """Test that modification re-runs option validation."""
        result = await service.modify_order(
            "20240120-0001", "user_001", mock_user_info, {"rice": ["small", "large"]}
        )

        assert result.error.kind == ErrorKind.VALIDATION_ERROR
        assert store.orders[stored_order.id] == stored_order

    @pytest.mark.asyncio
    async def test_modify_loses_race_with_cancel(
        self,
        make_service: Callable[..., OrderLifecycleService],
        stored_order: Order,
        mock_user_info: UserInfo,
    ) -> None:
        """Test that a cancellation committed after the read wins."""
        store = MagicMock(spec=OrderStore)
        store.find_by_order_number.return_value = stored_order
        store.update.side_effect = OrderAlreadyCancelledError("cancelled meanwhile")
        service = make_service(order_store=store)

        result = await service.modify_order(
            "20240120-0001", "user_001", mock_user_info, VALID_OPTIONS
        )

        assert result.error.kind == ErrorKind.ALREADY_CANCELLED


@pytest.mark.unit
class TestCancelOrder:
    """Test suite for cancel_order."""

    @pytest.fixture
    def stored_order(self, store: InMemoryOrderStore, mock_order: Order) -> Order:
        store.orders[mock_order.id] = mock_order
        return mock_order

    @pytest.mark.asyncio
    async def test_cancel_order_success(
        self,
        service: OrderLifecycleService,
        store: InMemoryOrderStore,
        emitter: MagicMock,
        stored_order: Order,
        before_deadline: datetime,
    ) -> None:
        """Test that cancellation is persisted and announced."""
        result = await service.cancel_order("20240120-0001", "user_001")

        assert result.success
        assert result.order.status == OrderStatus.CANCELLED
        assert result.order.cancelled_at == before_deadline
        assert store.orders[stored_order.id].status == OrderStatus.CANCELLED
        assert emitter.emit.call_args.args[0].event_type == OrderEventType.ORDER_CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_twice_keeps_cancelled_at(
        self,
        service: OrderLifecycleService,
        store: InMemoryOrderStore,
        stored_order: Order,
        clock: Clock,
    ) -> None:
        """Test that a second cancel fails and never rewrites cancelled_at."""
        first = await service.cancel_order("20240120-0001", "user_001")
        clock.now = datetime(2024, 1, 18, 9, 0, tzinfo=UTC)

        second = await service.cancel_order("20240120-0001", "user_001")

        assert second.error.kind == ErrorKind.ALREADY_CANCELLED
        assert store.orders[stored_order.id].cancelled_at == first.order.cancelled_at
        assert store.update_calls == 1

    @pytest.mark.asyncio
    async def test_cancel_cancelled_order_of_other_user(
        self, service: OrderLifecycleService, store: InMemoryOrderStore, stored_order: Order
    ) -> None:
        """Test that the cancelled check comes before the owner check."""
        store.orders[stored_order.id] = stored_order.model_copy(
            update={"status": OrderStatus.CANCELLED}
        )

        result = await service.cancel_order("20240120-0001", "intruder")

        assert result.error.kind == ErrorKind.ALREADY_CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_other_users_order(
        self, service: OrderLifecycleService, store: InMemoryOrderStore, stored_order: Order
    ) -> None:
        """Test that only the owner may cancel."""
        result = await service.cancel_order("20240120-0001", "intruder")

        assert result.error.kind == ErrorKind.UNAUTHORIZED
        assert store.orders[stored_order.id].status == OrderStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_cancel_after_deadline(
        self,
        service: OrderLifecycleService,
        store: InMemoryOrderStore,
        stored_order: Order,
        clock: Clock,
        after_deadline: datetime,
    ) -> None:
        """Test that cancellation is blocked after the deadline."""
        clock.now = after_deadline

        result = await service.cancel_order("20240120-0001", "user_001")

        assert result.error.kind == ErrorKind.ORDER_DEADLINE_PASSED
        assert store.update_calls == 0

    @pytest.mark.asyncio
    async def test_cancel_unknown_order(self, service: OrderLifecycleService) -> None:
        """Test that an unknown number fails with ORDER_NOT_FOUND."""
        result = await service.cancel_order("20240120-0001", "user_001")

        assert result.error.kind == ErrorKind.ORDER_NOT_FOUND


@pytest.mark.unit
class TestReadSide:
    """Test suite for read operations."""

    @pytest.mark.asyncio
    async def test_get_order(
        self, service: OrderLifecycleService, store: InMemoryOrderStore, mock_order: Order
    ) -> None:
        """Test fetching an owned order."""
        store.orders[mock_order.id] = mock_order

        result = await service.get_order("20240120-0001", "user_001")
        denied = await service.get_order("20240120-0001", "someone_else")

        assert result.order == mock_order
        assert denied.error.kind == ErrorKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_list_orders_for_user_newest_first(
        self,
        service: OrderLifecycleService,
        clock: Clock,
        mock_user_info: UserInfo,
        mock_menu: Menu,
        menu_reader: MagicMock,
    ) -> None:
        """Test order history ordering."""
        await service.create_order("U1", mock_menu.id, mock_user_info, VALID_OPTIONS)
        clock.now = clock.now.replace(hour=10)
        other_menu = mock_menu.model_copy(update={"id": "menu_other"})
        menu_reader.get_menu.return_value = other_menu
        await service.create_order("U1", "menu_other", mock_user_info, VALID_OPTIONS)

        result = await service.list_orders_for_user("U1")

        assert result.success
        assert [o.menu_id for o in result.items] == ["menu_other", mock_menu.id]

    @pytest.mark.asyncio
    async def test_list_orders_for_menu_includes_cancelled(
        self, service: OrderLifecycleService, mock_user_info: UserInfo, mock_menu_id: str
    ) -> None:
        """Test that the admin export includes cancelled orders."""
        created = await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)
        await service.cancel_order(str(created.order.order_number), "U1")
        await service.create_order("U2", mock_menu_id, other_user_info(), VALID_OPTIONS)

        result = await service.list_orders_for_menu(mock_menu_id)

        assert len(result.items) == 2
        assert {o.status for o in result.items} == {OrderStatus.CANCELLED, OrderStatus.CONFIRMED}

    @pytest.mark.asyncio
    async def test_count_options(
        self, service: OrderLifecycleService, mock_user_info: UserInfo, mock_menu_id: str
    ) -> None:
        """Test tallying active orders per option value with filters."""
        await service.create_order(
            "U1", mock_menu_id, mock_user_info, {"rice": "large", "sides": ["salad", "soup"]}
        )
        await service.create_order(
            "U2", mock_menu_id, other_user_info(), {"rice": "large", "sides": ["soup"]}
        )
        cancelled = await service.create_order(
            "U3", mock_menu_id, mock_user_info, {"rice": "small"}
        )
        await service.cancel_order(str(cancelled.order.order_number), "U3")

        everything = await service.count_options(mock_menu_id)
        engineering = await service.count_options(
            mock_menu_id, OrderFilters(department="Engineering")
        )

        assert [(c.group_id, c.value, c.count) for c in everything.items] == [
            ("rice", "large", 2),
            ("sides", "salad", 1),
            ("sides", "soup", 2),
        ]
        assert [(c.group_id, c.value, c.count) for c in engineering.items] == [
            ("rice", "large", 1),
            ("sides", "salad", 1),
            ("sides", "soup", 1),
        ]

    @pytest.mark.asyncio
    async def test_query_store_failure(
        self, make_service: Callable[..., OrderLifecycleService]
    ) -> None:
        """Test that read failures are reported instead of returning empty lists."""
        service = make_service(order_store=FailingQueryStore())

        result = await service.list_orders_for_menu("menu_1")

        assert not result.success
        assert result.items == []
        assert result.error.kind == ErrorKind.INTERNAL_ERROR

    @pytest.mark.asyncio
    async def test_get_profile(
        self,
        service: OrderLifecycleService,
        profiles: MagicMock,
        mock_user_info: UserInfo,
    ) -> None:
        """Test that the saved profile is returned for prefilling."""
        profiles.get_profile.return_value = mock_user_info

        assert await service.get_profile("user_001") == mock_user_info
        profiles.get_profile.assert_called_once_with("user_001")

    @pytest.mark.asyncio
    async def test_get_profile_without_repository(
        self, make_service: Callable[..., OrderLifecycleService]
    ) -> None:
        """Test that no repository means no profile."""
        service = make_service(profile_repository=None)

        assert await service.get_profile("user_001") is None

    @pytest.mark.asyncio
    async def test_get_profile_after_create(
        self,
        make_service: Callable[..., OrderLifecycleService],
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that the attributes declared on an order become the prefill profile."""
        saved: dict[str, UserInfo] = {}

        def save_profile(user_id: str, user_info: UserInfo) -> bool:
            saved[user_id] = user_info
            return True

        profiles = MagicMock(spec=UserProfileRepository)
        profiles.save_profile.side_effect = save_profile
        profiles.get_profile.side_effect = saved.get
        service = make_service(profile_repository=profiles)

        await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)

        assert await service.get_profile("U1") == mock_user_info
        assert await service.get_profile("U2") is None

    @pytest.mark.asyncio
    async def test_drain_events_waits_for_deliveries(
        self,
        make_service: Callable[..., OrderLifecycleService],
        mock_user_info: UserInfo,
        mock_menu_id: str,
    ) -> None:
        """Test that draining completes event deliveries scheduled by an operation."""
        delivered = asyncio.Event()

        async def slow_publish(event: object) -> bool:
            await asyncio.sleep(0.05)
            delivered.set()
            return True

        publisher = MagicMock(spec=EventPublisher)
        publisher.publisher_name = "slow"
        publisher.publish = AsyncMock(side_effect=slow_publish)
        emitter = OrderEventEmitter(publishers=[publisher])
        service = make_service(event_emitter=emitter)

        await service.create_order("U1", mock_menu_id, mock_user_info, VALID_OPTIONS)
        assert not delivered.is_set()

        await service.drain_events()

        assert delivered.is_set()
        assert emitter.pending_count == 0
