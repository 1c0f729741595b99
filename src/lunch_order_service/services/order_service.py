"""Order lifecycle service: create, modify and cancel lunch orders."""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, tzinfo
from typing import Any, Generic, TypeVar

from lunch_order_service.models.event_models import OrderEvent
from lunch_order_service.models.menu_models import Menu, MenuStatus
from lunch_order_service.models.order_models import (
    OptionCount,
    Order,
    OrderFilters,
    OrderNumber,
    OrderStatus,
    UserInfo,
)
from lunch_order_service.observability.decorators import traced
from lunch_order_service.observability.metrics import (
    record_order_cancelled,
    record_order_created,
    record_order_failure,
    record_order_modified,
    record_sequence_allocation,
)
from lunch_order_service.repositories.base_repository import (
    DuplicateActiveOrderError,
    OrderAlreadyCancelledError,
    OrderRowNotFoundError,
    OrderStore,
    OrderStoreError,
    SequenceAllocationError,
    SequenceAllocator,
    SequenceExhaustedError,
)
from lunch_order_service.repositories.order_repositories import UserProfileRepository
from lunch_order_service.services.event_emitter import OrderEventEmitter
from lunch_order_service.services.menu_service_client import MenuServiceClient, MenuServiceError
from lunch_order_service.services.option_validator import (
    SelectedOptions,
    normalize_selected_options,
    validate_selected_options,
)
from lunch_order_service.services.order_errors import (
    ErrorKind,
    OrderError,
    OrderOperationError,
    OrderResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class QueryResult(Generic[T]):
    """Result of a read-side query.

    Attributes:
        success: Whether the query completed
        items: Matching records (empty on failure)
        error: Failure details on failure, None otherwise
    """

    success: bool
    items: list[T] = field(default_factory=list)
    error: OrderError | None = None


def new_order_id() -> str:
    return f"ord_{uuid.uuid4().hex}"


class OrderLifecycleService:
    """Service orchestrating the order state machine.

    Each operation validates against the menu snapshot and the current order
    before any write, allocates order numbers only on the create path and
    emits an event once the write has been persisted. The service itself
    holds no locks: uniqueness and numbering are enforced by the order store
    and sequence allocator. No operation is retried here; transient failures
    are returned as retryable errors for the caller to resubmit.
    """

    def __init__(
        self,
        menu_reader: MenuServiceClient,
        order_store: OrderStore,
        sequence_allocator: SequenceAllocator,
        event_emitter: OrderEventEmitter,
        profile_repository: UserProfileRepository | None = None,
        timezone: tzinfo = UTC,
        store_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] = new_order_id,
    ) -> None:
        """Initialize the OrderLifecycleService.

        Args:
            menu_reader: Read-only source of menu snapshots
            order_store: Durable order storage
            sequence_allocator: Per-date order number counter
            event_emitter: Fire-and-forget event delivery
            profile_repository: Optional store for the user's latest profile
            timezone: Zone used to interpret naive menu deadlines
            store_timeout_seconds: Default timeout for each store or menu call
            clock: Returns the current aware datetime
            id_factory: Generates order ids
        """
        self.menu_reader = menu_reader
        self.order_store = order_store
        self.sequence_allocator = sequence_allocator
        self.event_emitter = event_emitter
        self.profile_repository = profile_repository
        self.timezone = timezone
        self.store_timeout_seconds = store_timeout_seconds
        self.clock = clock or (lambda: datetime.now(UTC))
        self.id_factory = id_factory

    @traced("create_order", attributes=("user_id", "menu_id"))
    async def create_order(
        self,
        user_id: str,
        menu_id: str,
        user_info: UserInfo,
        selected_options: SelectedOptions | None = None,
        timeout: float | None = None,
    ) -> OrderResult:
        """Place a new order against a menu.

        Args:
            user_id: The ordering user
            menu_id: The menu to order from
            user_info: Orderer attributes to snapshot onto the order
            selected_options: Selections keyed by option group id
            timeout: Per-call timeout override for store and menu calls

        Returns:
            OrderResult with the confirmed order, or the error that stopped it
        """
        return await self._run(
            "create",
            self._create_order(user_id, menu_id, user_info, selected_options, timeout),
        )

    @traced("modify_order", attributes=("order_number", "caller_user_id"))
    async def modify_order(
        self,
        order_number: str,
        caller_user_id: str,
        new_user_info: UserInfo,
        new_selected_options: SelectedOptions | None = None,
        timeout: float | None = None,
    ) -> OrderResult:
        """Replace the attributes and selections of an existing order.

        Args:
            order_number: Order number in YYYYMMDD-NNNN form
            caller_user_id: The user requesting the change
            new_user_info: Replacement orderer attributes
            new_selected_options: Replacement selections
            timeout: Per-call timeout override for store and menu calls

        Returns:
            OrderResult with the modified order, or the error that stopped it
        """
        return await self._run(
            "modify",
            self._modify_order(
                order_number, caller_user_id, new_user_info, new_selected_options, timeout
            ),
        )

    @traced("cancel_order", attributes=("order_number", "caller_user_id"))
    async def cancel_order(
        self,
        order_number: str,
        caller_user_id: str,
        timeout: float | None = None,
    ) -> OrderResult:
        """Cancel an order, freeing the user's slot on the menu.

        Args:
            order_number: Order number in YYYYMMDD-NNNN form
            caller_user_id: The user requesting the cancellation
            timeout: Per-call timeout override for store and menu calls

        Returns:
            OrderResult with the cancelled order, or the error that stopped it
        """
        return await self._run("cancel", self._cancel_order(order_number, caller_user_id, timeout))

    async def get_order(
        self, order_number: str, caller_user_id: str, timeout: float | None = None
    ) -> OrderResult:
        """Fetch one of the caller's orders by number."""
        return await self._run("get", self._get_owned_order(order_number, caller_user_id, timeout))

    async def list_orders_for_user(
        self, user_id: str, timeout: float | None = None
    ) -> QueryResult[Order]:
        """Return the user's order history, newest first."""
        return await self._query(self.order_store.find_by_user_id, user_id, timeout=timeout)

    async def list_orders_for_menu(
        self, menu_id: str, timeout: float | None = None
    ) -> QueryResult[Order]:
        """Return every order placed against a menu (admin export)."""
        return await self._query(self.order_store.find_by_menu_id, menu_id, timeout=timeout)

    async def count_options(
        self,
        menu_id: str,
        filters: OrderFilters | None = None,
        timeout: float | None = None,
    ) -> QueryResult[OptionCount]:
        """Tally active orders per option value for a menu (admin summary)."""
        return await self._query(
            self.order_store.count_by_menu_and_options,
            menu_id,
            filters or OrderFilters(),
            timeout=timeout,
        )

    async def get_profile(self, user_id: str, timeout: float | None = None) -> UserInfo | None:
        """Return the attributes the user declared on their last order, if saved.

        Used to prefill a new order. A missing repository or a failed lookup
        yields None, the same as a user who has never ordered.
        """
        if self.profile_repository is None:
            return None
        try:
            profile: UserInfo | None = await self._call_store(
                self.profile_repository.get_profile, user_id, timeout=timeout
            )
        except OrderOperationError as e:
            logger.warning(f"Profile lookup for user {user_id} failed: {e.error.message}")
            return None
        return profile

    async def drain_events(self) -> None:
        """Wait for pending event deliveries (called at application shutdown)."""
        await self.event_emitter.drain()

    async def _create_order(
        self,
        user_id: str,
        menu_id: str,
        user_info: UserInfo,
        selected_options: SelectedOptions | None,
        timeout: float | None,
    ) -> Order:
        now = self.clock()
        menu = await self._load_menu(menu_id, timeout)

        # Deadline first: a past deadline wins over any menu status
        self._ensure_before_deadline(menu, now)
        if menu.status != MenuStatus.ACTIVE:
            raise OrderOperationError(
                ErrorKind.MENU_NOT_AVAILABLE,
                f"Menu {menu_id} is {menu.status.value} and not accepting orders",
            )

        existing = await self._call_store(
            self.order_store.find_active, user_id, menu_id, timeout=timeout
        )
        if existing is not None:
            raise OrderOperationError(
                ErrorKind.DUPLICATE_ORDER,
                f"User already holds order {existing.order_number} for menu {menu_id}",
            )

        order_number = await self._allocate_order_number(menu.available_date, timeout)

        options = normalize_selected_options(selected_options)
        self._ensure_valid_options(menu, options)

        order = Order(
            id=self.id_factory(),
            user_id=user_id,
            menu_id=menu_id,
            order_number=order_number,
            user_info=user_info,
            selected_options=options,
            price=menu.price,
            status=OrderStatus.CONFIRMED,
            ordered_at=now,
        )

        try:
            await self._call_store(self.order_store.insert, order, timeout=timeout)
        except DuplicateActiveOrderError as e:
            raise OrderOperationError(
                ErrorKind.DUPLICATE_ORDER,
                f"User already holds an active order for menu {menu_id}",
            ) from e

        logger.info(f"Order {order_number} created for user {user_id} on menu {menu_id}")
        await self._save_profile(user_id, user_info, timeout)
        self.event_emitter.emit(OrderEvent.created(order))
        record_order_created(menu_id)
        return order

    async def _modify_order(
        self,
        order_number: str,
        caller_user_id: str,
        new_user_info: UserInfo,
        new_selected_options: SelectedOptions | None,
        timeout: float | None,
    ) -> Order:
        now = self.clock()
        order = await self._load_order(order_number, timeout)
        self._ensure_owner(order, caller_user_id)

        menu = await self._load_menu(order.menu_id, timeout)
        self._ensure_before_deadline(menu, now)

        if not order.can_transition_to(OrderStatus.MODIFIED):
            raise OrderOperationError(
                ErrorKind.ALREADY_CANCELLED, f"Order {order_number} has been cancelled"
            )

        options = normalize_selected_options(new_selected_options)
        self._ensure_valid_options(menu, options)

        updated = order.model_copy(
            update={
                "user_info": new_user_info,
                "selected_options": options,
                "status": OrderStatus.MODIFIED,
                "modified_at": now,
            }
        )
        await self._update(updated, timeout)

        logger.info(f"Order {order_number} modified by user {caller_user_id}")
        await self._save_profile(caller_user_id, new_user_info, timeout)
        self.event_emitter.emit(OrderEvent.modified(updated))
        record_order_modified(order.menu_id)
        return updated

    async def _cancel_order(
        self, order_number: str, caller_user_id: str, timeout: float | None
    ) -> Order:
        now = self.clock()
        order = await self._load_order(order_number, timeout)

        if not order.can_transition_to(OrderStatus.CANCELLED):
            raise OrderOperationError(
                ErrorKind.ALREADY_CANCELLED, f"Order {order_number} is already cancelled"
            )
        self._ensure_owner(order, caller_user_id)

        menu = await self._load_menu(order.menu_id, timeout)
        self._ensure_before_deadline(menu, now)

        updated = order.model_copy(update={"status": OrderStatus.CANCELLED, "cancelled_at": now})
        await self._update(updated, timeout)

        logger.info(f"Order {order_number} cancelled by user {caller_user_id}")
        self.event_emitter.emit(OrderEvent.cancelled(updated))
        record_order_cancelled(order.menu_id)
        return updated

    async def _get_owned_order(
        self, order_number: str, caller_user_id: str, timeout: float | None
    ) -> Order:
        order = await self._load_order(order_number, timeout)
        self._ensure_owner(order, caller_user_id)
        return order

    async def _run(self, operation: str, work: Awaitable[Order]) -> OrderResult:
        try:
            order = await work
        except OrderOperationError as e:
            error = e.error
        except (OrderStoreError, MenuServiceError) as e:
            logger.error(f"Order {operation} failed on a backing store: {e}")
            error = OrderError(kind=ErrorKind.INTERNAL_ERROR, message=str(e))
        else:
            return OrderResult.ok(order)

        if error.retryable:
            logger.warning(f"Order {operation} failed with {error.kind.value}: {error.message}")
        else:
            logger.info(f"Order {operation} rejected with {error.kind.value}: {error.message}")
        record_order_failure(operation, error.kind.value)
        return OrderResult.fail(error)

    async def _query(
        self, func: Callable[..., list[Any]], *args: Any, timeout: float | None
    ) -> QueryResult[Any]:
        try:
            items = await self._call_store(func, *args, timeout=timeout)
        except OrderOperationError as e:
            return QueryResult(success=False, error=e.error)
        except OrderStoreError as e:
            logger.error(f"Order query {func.__name__} failed: {e}")
            return QueryResult(
                success=False, error=OrderError(kind=ErrorKind.INTERNAL_ERROR, message=str(e))
            )
        return QueryResult(success=True, items=items)

    async def _call_store(self, func: Callable[..., T], *args: Any, timeout: float | None) -> T:
        """Run a blocking store call off the event loop under a timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args),
                timeout=timeout if timeout is not None else self.store_timeout_seconds,
            )
        except TimeoutError as e:
            raise OrderOperationError(
                ErrorKind.INTERNAL_ERROR, f"Store call {func.__name__} timed out"
            ) from e

    async def _load_menu(self, menu_id: str, timeout: float | None) -> Menu:
        try:
            menu = await asyncio.wait_for(
                self.menu_reader.get_menu(menu_id),
                timeout=timeout if timeout is not None else self.store_timeout_seconds,
            )
        except TimeoutError as e:
            raise OrderOperationError(
                ErrorKind.INTERNAL_ERROR, f"Menu lookup for {menu_id} timed out"
            ) from e

        if menu is None:
            raise OrderOperationError(ErrorKind.MENU_NOT_FOUND, f"Menu {menu_id} not found")
        return menu

    async def _load_order(self, order_number: str, timeout: float | None) -> Order:
        try:
            parsed = OrderNumber.parse(order_number)
        except ValueError as e:
            raise OrderOperationError(
                ErrorKind.ORDER_NOT_FOUND, f"Order {order_number} not found"
            ) from e

        order = await self._call_store(
            self.order_store.find_by_order_number, str(parsed), timeout=timeout
        )
        if order is None:
            raise OrderOperationError(ErrorKind.ORDER_NOT_FOUND, f"Order {order_number} not found")
        return order

    async def _allocate_order_number(self, available_date: date, timeout: float | None) -> OrderNumber:
        started = time.monotonic()
        try:
            sequence = await self._call_store(
                self.sequence_allocator.next_sequence, available_date, timeout=timeout
            )
        except SequenceExhaustedError as e:
            raise OrderOperationError(ErrorKind.SEQUENCE_EXHAUSTED, str(e)) from e
        except SequenceAllocationError as e:
            raise OrderOperationError(ErrorKind.ALLOCATION_ERROR, str(e)) from e
        finally:
            record_sequence_allocation(time.monotonic() - started)

        return OrderNumber.generate(available_date, sequence)

    async def _update(self, order: Order, timeout: float | None) -> None:
        try:
            await self._call_store(self.order_store.update, order, timeout=timeout)
        except OrderRowNotFoundError as e:
            raise OrderOperationError(
                ErrorKind.ORDER_NOT_FOUND, f"Order {order.order_number} not found"
            ) from e
        except OrderAlreadyCancelledError as e:
            raise OrderOperationError(
                ErrorKind.ALREADY_CANCELLED, f"Order {order.order_number} is already cancelled"
            ) from e

    async def _save_profile(self, user_id: str, user_info: UserInfo, timeout: float | None) -> None:
        # Best-effort: the order row is the authoritative record
        if self.profile_repository is None:
            return
        try:
            saved = await self._call_store(
                self.profile_repository.save_profile, user_id, user_info, timeout=timeout
            )
        except Exception as e:
            logger.warning(f"Profile snapshot for user {user_id} not saved: {e}")
            return
        if not saved:
            logger.warning(f"Profile snapshot for user {user_id} not saved")

    def _ensure_before_deadline(self, menu: Menu, now: datetime) -> None:
        if menu.is_past_deadline(now, self.timezone):
            raise OrderOperationError(
                ErrorKind.ORDER_DEADLINE_PASSED,
                f"Ordering for menu {menu.id} closed at {menu.deadline_in(self.timezone).isoformat()}",
            )
        # The model only checks the deadline date in its own offset
        if not menu.closes_before_delivery(self.timezone):
            raise OrderOperationError(
                ErrorKind.MENU_NOT_AVAILABLE,
                f"Menu {menu.id} closes on or after its delivery date in {self.timezone}",
            )

    @staticmethod
    def _ensure_owner(order: Order, caller_user_id: str) -> None:
        if order.user_id != caller_user_id:
            raise OrderOperationError(
                ErrorKind.UNAUTHORIZED, f"Order {order.order_number} belongs to another user"
            )

    @staticmethod
    def _ensure_valid_options(menu: Menu, options: dict[str, list[str]]) -> None:
        field_errors = validate_selected_options(menu, options)
        if field_errors:
            raise OrderOperationError(
                ErrorKind.VALIDATION_ERROR,
                f"{len(field_errors)} invalid option selection(s)",
                field_errors,
            )
