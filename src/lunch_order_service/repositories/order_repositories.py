"""DynamoDB repository classes for orders, sequence counters and user profiles.

The orders table is keyed by id with Global Secondary Indexes on menu_id and
user_id. Uniqueness that DynamoDB cannot express as an index (one active
order per user and menu, one order per order number) is enforced with guard
items in a separate locks table, written in the same transaction as the
order row.
"""

import logging
import time
from datetime import UTC, date, datetime
from typing import Any, NoReturn

from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table

from lunch_order_service.models.order_models import (
    MAX_SEQUENCE,
    Order,
    OrderStatus,
    UserInfo,
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

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "InternalServerError",
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
        "ServiceUnavailable",
        "ThrottlingException",
        "TransactionConflictException",
    }
)

# Positions of the items inside the insert transaction
ORDER_ITEM_INDEX = 0
ACTIVE_LOCK_INDEX = 1
NUMBER_LOCK_INDEX = 2


def active_lock_key(user_id: str, menu_id: str) -> str:
    return f"active#{user_id}#{menu_id}"


def number_lock_key(order_number: str) -> str:
    return f"number#{order_number}"


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _condition_failed(error: ClientError, index: int) -> bool:
    reasons = error.response.get("CancellationReasons", [])
    return index < len(reasons) and reasons[index].get("Code") == "ConditionalCheckFailed"


class OrderRepository(OrderStore):
    """Repository for order CRUD operations.

    Manages order rows in the orders table and their uniqueness guards in the
    locks table (partition key lock_key).
    """

    def __init__(
        self,
        dynamodb_resource: DynamoDBServiceResource,
        table_name: str,
        locks_table_name: str,
    ) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the orders table
            locks_table_name: Name of the uniqueness guard table
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.locks_table_name = locks_table_name
        self.table: Table = dynamodb_resource.Table(table_name)
        self.locks_table: Table = dynamodb_resource.Table(locks_table_name)
        self.client = dynamodb_resource.meta.client
        self._serializer = TypeSerializer()

    def _marshal(self, item: dict[str, Any]) -> dict[str, Any]:
        return {key: self._serializer.serialize(value) for key, value in item.items()}

    def find_active(self, user_id: str, menu_id: str) -> Order | None:
        """Retrieve the active order for a user-menu pair.

        Args:
            user_id: User identifier
            menu_id: Menu identifier

        Returns:
            Order if an active one exists, None otherwise
        """
        order_id = self._get_lock_owner(active_lock_key(user_id, menu_id))
        if order_id is None:
            return None

        order = self._get_by_id(order_id)
        if order is None or not order.is_active:
            return None
        return order

    def insert(self, order: Order) -> None:
        """Insert a new order together with its uniqueness guards.

        Args:
            order: Order to insert

        Raises:
            DuplicateActiveOrderError: If the pair already holds an active guard
            OrderStoreError: If the transaction fails for any other reason
        """
        lock_attributes = {"order_id": order.id, "created_at": datetime.now(UTC).isoformat()}
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        "Put": {
                            "TableName": self.table_name,
                            "Item": self._marshal(order.to_dynamodb_item()),
                            "ConditionExpression": "attribute_not_exists(id)",
                        }
                    },
                    {
                        "Put": {
                            "TableName": self.locks_table_name,
                            "Item": self._marshal(
                                {
                                    "lock_key": active_lock_key(order.user_id, order.menu_id),
                                    **lock_attributes,
                                }
                            ),
                            "ConditionExpression": "attribute_not_exists(lock_key)",
                        }
                    },
                    {
                        "Put": {
                            "TableName": self.locks_table_name,
                            "Item": self._marshal(
                                {
                                    "lock_key": number_lock_key(str(order.order_number)),
                                    **lock_attributes,
                                }
                            ),
                            "ConditionExpression": "attribute_not_exists(lock_key)",
                        }
                    },
                ]
            )

        except ClientError as e:
            if _error_code(e) == "TransactionCanceledException" and _condition_failed(
                e, ACTIVE_LOCK_INDEX
            ):
                raise DuplicateActiveOrderError(
                    f"Active order already exists for user {order.user_id} and menu {order.menu_id}"
                ) from e
            if _condition_failed(e, NUMBER_LOCK_INDEX):
                logger.error(f"Order number {order.order_number} was already issued")
            logger.error(f"Failed to insert order {order.order_number}: {e}")
            raise OrderStoreError(f"Failed to insert order {order.order_number}") from e

        except BotoCoreError as e:
            logger.error(f"Failed to insert order {order.order_number}: {e}")
            raise OrderStoreError(f"Failed to insert order {order.order_number}") from e

    def update(self, order: Order) -> None:
        """Replace an existing order.

        A cancellation releases the active guard in the same transaction so the
        user can order again from the same menu.

        Args:
            order: Order with updated fields

        Raises:
            OrderRowNotFoundError: If the order id does not exist
            OrderAlreadyCancelledError: If the stored order is already cancelled
            OrderStoreError: On any other failure
        """
        condition = "attribute_exists(id) AND #status <> :cancelled"
        item = order.to_dynamodb_item()

        try:
            if order.status == OrderStatus.CANCELLED:
                self.client.transact_write_items(
                    TransactItems=[
                        {
                            "Put": {
                                "TableName": self.table_name,
                                "Item": self._marshal(item),
                                "ConditionExpression": condition,
                                "ExpressionAttributeNames": {"#status": "status"},
                                "ExpressionAttributeValues": self._marshal(
                                    {":cancelled": OrderStatus.CANCELLED.value}
                                ),
                            }
                        },
                        {
                            "Delete": {
                                "TableName": self.locks_table_name,
                                "Key": self._marshal(
                                    {"lock_key": active_lock_key(order.user_id, order.menu_id)}
                                ),
                                "ConditionExpression": (
                                    "attribute_not_exists(lock_key) OR order_id = :order_id"
                                ),
                                "ExpressionAttributeValues": self._marshal(
                                    {":order_id": order.id}
                                ),
                            }
                        },
                    ]
                )
            else:
                self.table.put_item(
                    Item=item,
                    ConditionExpression=condition,
                    ExpressionAttributeNames={"#status": "status"},
                    ExpressionAttributeValues={":cancelled": OrderStatus.CANCELLED.value},
                )

        except ClientError as e:
            code = _error_code(e)
            if code == "ConditionalCheckFailedException" or (
                code == "TransactionCanceledException" and _condition_failed(e, ORDER_ITEM_INDEX)
            ):
                self._raise_update_conflict(order.id, e)
            logger.error(f"Failed to update order {order.order_number}: {e}")
            raise OrderStoreError(f"Failed to update order {order.order_number}") from e

        except BotoCoreError as e:
            logger.error(f"Failed to update order {order.order_number}: {e}")
            raise OrderStoreError(f"Failed to update order {order.order_number}") from e

    def _raise_update_conflict(self, order_id: str, cause: ClientError) -> NoReturn:
        if self._get_by_id(order_id) is None:
            raise OrderRowNotFoundError(f"Order {order_id} not found") from cause
        raise OrderAlreadyCancelledError(f"Order {order_id} is already cancelled") from cause

    def find_by_order_number(self, order_number: str) -> Order | None:
        """Retrieve an order by its rendered order number.

        Args:
            order_number: Order number in YYYYMMDD-NNNN form

        Returns:
            Order if found, None otherwise
        """
        order_id = self._get_lock_owner(number_lock_key(order_number))
        if order_id is None:
            return None
        return self._get_by_id(order_id)

    def find_by_menu_id(self, menu_id: str) -> list[Order]:
        """List all orders for a menu.

        Uses a Global Secondary Index on menu_id.

        Args:
            menu_id: Menu identifier

        Returns:
            list: List of Order objects (empty list if none found)
        """
        return self._query_index("menu_id-index", "menu_id", menu_id)

    def find_by_user_id(self, user_id: str) -> list[Order]:
        """List all orders placed by a user, newest first.

        Uses a Global Secondary Index on user_id.

        Args:
            user_id: User identifier

        Returns:
            list: List of Order objects (empty list if none found)
        """
        orders = self._query_index("user_id-index", "user_id", user_id)
        return sorted(orders, key=lambda o: o.ordered_at, reverse=True)

    def _query_index(self, index_name: str, attribute: str, value: str) -> list[Order]:
        query_args: dict[str, Any] = {
            "IndexName": index_name,
            "KeyConditionExpression": f"{attribute} = :value",
            "ExpressionAttributeValues": {":value": value},
        }
        orders: list[Order] = []
        try:
            while True:
                response = self.table.query(**query_args)
                orders.extend(Order.from_dynamodb_item(item) for item in response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    return orders
                query_args["ExclusiveStartKey"] = last_key

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to query {index_name} for {value}: {e}")
            raise OrderStoreError(f"Failed to query orders by {attribute}") from e

    def _get_lock_owner(self, lock_key: str) -> str | None:
        try:
            response = self.locks_table.get_item(Key={"lock_key": lock_key}, ConsistentRead=True)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to read lock {lock_key}: {e}")
            raise OrderStoreError(f"Failed to read lock {lock_key}") from e

        if "Item" not in response:
            return None
        return str(response["Item"]["order_id"])

    def _get_by_id(self, order_id: str) -> Order | None:
        try:
            response = self.table.get_item(Key={"id": order_id}, ConsistentRead=True)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to get order {order_id}: {e}")
            raise OrderStoreError(f"Failed to get order {order_id}") from e

        if "Item" not in response:
            return None
        return Order.from_dynamodb_item(response["Item"])


class SequenceCounterRepository(SequenceAllocator):
    """Repository for per-date order sequence counters.

    Each counter is a single item keyed by sequence_date (YYYYMMDD) holding
    last_sequence. Increments are one conditional UpdateItem, so concurrent
    callers for the same date serialize on that row only.
    """

    def __init__(
        self,
        dynamodb_resource: DynamoDBServiceResource,
        table_name: str,
        max_attempts: int = 3,
        backoff_base_seconds: float = 0.05,
    ) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the DynamoDB table
            max_attempts: Attempts before giving up on transient errors
            backoff_base_seconds: First backoff delay, doubled per attempt
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.table: Table = dynamodb_resource.Table(table_name)
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds

    def next_sequence(self, available_date: date) -> int:
        """Increment and return the counter for a date.

        A retry after a lost response may skip a value; it never repeats one.

        Args:
            available_date: Delivery date the sequence is scoped to

        Returns:
            int: The newly issued sequence value

        Raises:
            SequenceExhaustedError: If MAX_SEQUENCE was already issued
            SequenceAllocationError: If all attempts failed
        """
        sequence_date = f"{available_date:%Y%m%d}"
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.table.update_item(
                    Key={"sequence_date": sequence_date},
                    UpdateExpression="ADD last_sequence :one",
                    ConditionExpression=(
                        "attribute_not_exists(last_sequence) OR last_sequence < :max"
                    ),
                    ExpressionAttributeValues={":one": 1, ":max": MAX_SEQUENCE},
                    ReturnValues="UPDATED_NEW",
                )
                return int(response["Attributes"]["last_sequence"])

            except ClientError as e:
                code = _error_code(e)
                if code == "ConditionalCheckFailedException":
                    raise SequenceExhaustedError(
                        f"All {MAX_SEQUENCE} order numbers for {sequence_date} have been issued"
                    ) from e
                if code not in TRANSIENT_ERROR_CODES:
                    logger.error(f"Failed to allocate sequence for {sequence_date}: {e}")
                    raise SequenceAllocationError(
                        f"Failed to allocate sequence for {sequence_date}"
                    ) from e
                last_error = e

            except BotoCoreError as e:
                last_error = e

            if attempt < self.max_attempts:
                delay = self.backoff_base_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Sequence allocation attempt {attempt} for {sequence_date} failed, "
                    f"retrying in {delay:.2f}s: {last_error}"
                )
                time.sleep(delay)

        logger.error(
            f"Sequence allocation for {sequence_date} failed after {self.max_attempts} attempts"
        )
        raise SequenceAllocationError(
            f"Failed to allocate sequence for {sequence_date}"
        ) from last_error


class UserProfileRepository:
    """Repository for the latest declared attributes of each user.

    Profile writes are best-effort; the order row is the authoritative record.
    """

    def __init__(self, dynamodb_resource: DynamoDBServiceResource, table_name: str) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the DynamoDB table
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.table: Table = dynamodb_resource.Table(table_name)

    def save_profile(self, user_id: str, user_info: UserInfo) -> bool:
        """Save or update a user's profile snapshot.

        Args:
            user_id: User identifier
            user_info: Declared attributes to store

        Returns:
            bool: True if save succeeded, False otherwise
        """
        try:
            self.table.put_item(
                Item={
                    "user_id": user_id,
                    **user_info.to_dynamodb_item(),
                    "updated_at": datetime.now(UTC).isoformat(),
                }
            )
            return True

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to save profile for user {user_id}: {e}")  # pragma: no cover
            return False

    def get_profile(self, user_id: str) -> UserInfo | None:
        """Retrieve a user's last saved profile.

        Args:
            user_id: User identifier

        Returns:
            UserInfo if found, None otherwise
        """
        try:
            response = self.table.get_item(Key={"user_id": user_id})

            if "Item" not in response:
                return None

            item = response["Item"]
            return UserInfo(
                department=item["department"],
                display_name=item["display_name"],
                gender=item["gender"],
                age_group=item["age_group"],
            )

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to get profile for user {user_id}: {e}")
            return None
