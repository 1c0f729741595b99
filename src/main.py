"""Main application entry point for the lunch order service.

This module provides the FastAPI application factory and configuration
for running the service locally or in production.
"""

import logging
import os
from typing import Any
from zoneinfo import ZoneInfo

import boto3
from fastapi import FastAPI

from lunch_order_service.handlers.api_handler import create_app
from lunch_order_service.observability import configure_logging, setup_observability
from lunch_order_service.publishers.eventbridge_publisher import EventBridgePublisher
from lunch_order_service.repositories.order_repositories import (
    OrderRepository,
    SequenceCounterRepository,
    UserProfileRepository,
)
from lunch_order_service.services.event_emitter import OrderEventEmitter
from lunch_order_service.services.menu_service_client import MenuServiceClient
from lunch_order_service.services.order_service import OrderLifecycleService

logger = logging.getLogger(__name__)


def get_dynamodb_resource() -> Any:
    """Create DynamoDB resource with appropriate configuration.

    Returns:
        Boto3 DynamoDB resource configured for environment
    """
    endpoint_url = os.getenv("DYNAMODB_ENDPOINT")
    region = os.getenv("AWS_REGION", "us-east-1")

    if endpoint_url:
        # Local DynamoDB accepts any credentials
        logger.info(f"Using local DynamoDB at {endpoint_url}")
        return boto3.resource(
            "dynamodb",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID", "dummy"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", "dummy"),
        )

    logger.info(f"Using AWS DynamoDB in region {region}")
    return boto3.resource("dynamodb", region_name=region)


def create_order_service(dynamodb_resource: Any) -> OrderLifecycleService:
    """Wire repositories, the menu client and event publishing into the lifecycle service.

    Args:
        dynamodb_resource: Boto3 DynamoDB resource shared by all repositories

    Returns:
        Configured OrderLifecycleService

    Raises:
        ValueError: If required configuration is missing
    """
    orders_table = os.getenv("DYNAMODB_ORDERS_TABLE", "lunch-orders")
    locks_table = os.getenv("DYNAMODB_ORDER_LOCKS_TABLE", "lunch-order-locks")
    sequence_table = os.getenv("DYNAMODB_SEQUENCE_TABLE", "lunch-order-sequences")
    profiles_table = os.getenv("DYNAMODB_USER_PROFILES_TABLE", "lunch-user-profiles")
    store_timeout = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))

    order_repository = OrderRepository(
        dynamodb_resource=dynamodb_resource,
        table_name=orders_table,
        locks_table_name=locks_table,
    )
    sequence_repository = SequenceCounterRepository(
        dynamodb_resource=dynamodb_resource,
        table_name=sequence_table,
        max_attempts=int(os.getenv("SEQUENCE_MAX_ATTEMPTS", "3")),
    )
    profile_repository = UserProfileRepository(
        dynamodb_resource=dynamodb_resource, table_name=profiles_table
    )

    logger.info(
        f"Repositories configured - orders: {orders_table}, locks: {locks_table}, "
        f"sequences: {sequence_table}, profiles: {profiles_table}"
    )

    menu_service_url = os.getenv("MENU_SERVICE_BASE_URL")
    menu_service_api_key = os.getenv("MENU_SERVICE_API_KEY")

    if not menu_service_url or not menu_service_api_key:
        raise ValueError(
            "MENU_SERVICE_BASE_URL and MENU_SERVICE_API_KEY must be set in environment"
        )

    menu_service_client = MenuServiceClient(
        base_url=menu_service_url, api_key=menu_service_api_key, timeout_seconds=store_timeout
    )

    event_bus = os.getenv("EVENT_BUS_NAME", "default")
    events_client = boto3.client("events", region_name=os.getenv("AWS_REGION", "us-east-1"))
    event_emitter = OrderEventEmitter(
        publishers=[EventBridgePublisher(events_client=events_client, event_bus_name=event_bus)]
    )

    logger.info(f"Menu service URL: {menu_service_url}, event bus: {event_bus}")

    return OrderLifecycleService(
        menu_reader=menu_service_client,
        order_store=order_repository,
        sequence_allocator=sequence_repository,
        event_emitter=event_emitter,
        profile_repository=profile_repository,
        timezone=ZoneInfo(os.getenv("ORDER_TIMEZONE", "Asia/Tokyo")),
        store_timeout_seconds=store_timeout,
    )


def get_api_keys() -> list[str]:
    """Read admin API keys from ADMIN_API_KEY (comma-separated)."""
    api_keys_str = os.getenv("ADMIN_API_KEY", "")
    api_keys = [key.strip() for key in api_keys_str.split(",") if key.strip()]

    if not api_keys:
        logger.warning("No ADMIN_API_KEY configured - using development key")
        api_keys = ["dummy-key-for-development"]

    return api_keys


def create_application() -> FastAPI:
    """Create and configure the FastAPI application with all dependencies.

    This factory function:
    1. Configures logging
    2. Creates the DynamoDB resource
    3. Wires the order lifecycle service
    4. Creates the FastAPI app
    5. Sets up observability

    Returns:
        Configured FastAPI application instance
    """
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    logger.info("Initializing lunch order service...")

    order_service = create_order_service(get_dynamodb_resource())
    app = create_app(order_service=order_service, api_keys=get_api_keys())
    setup_observability(app)

    logger.info("Lunch order service initialized successfully")

    return app


# Only build the real application outside of test runs
if os.getenv("ENVIRONMENT") != "test":  # noqa: SIM108
    app = create_application()
else:
    app = FastAPI()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8001"))
    host = os.getenv("HOST", "0.0.0.0")

    logger.info(f"Starting development server on {host}:{port}")
    logger.info(f"API documentation available at http://{host}:{port}/docs")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=True,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
