"""Shared dependency factory for the Lambda handler.

Dependencies are created once per Lambda container and reused across warm
invocations. Wiring is delegated to the same factories the uvicorn entry
point uses so both deployments read identical configuration.
"""

import logging
import os
from typing import Any

import boto3
from fastapi import FastAPI

from lunch_order_service.handlers.api_handler import create_app
from lunch_order_service.observability import configure_logging, setup_observability
from lunch_order_service.services.order_service import OrderLifecycleService

logger = logging.getLogger(__name__)

# Module-level caches for Lambda container reuse
_dynamodb_resource: Any | None = None
_order_service: OrderLifecycleService | None = None
_fastapi_app: FastAPI | None = None


def get_dynamodb_resource() -> Any:
    """Create or retrieve cached DynamoDB resource.

    Returns:
        Boto3 DynamoDB resource configured for environment
    """
    global _dynamodb_resource

    if _dynamodb_resource is not None:
        return _dynamodb_resource

    endpoint_url = os.getenv("DYNAMODB_ENDPOINT")
    region = os.getenv("AWS_REGION", "us-east-1")

    if endpoint_url:
        logger.info(f"Using local DynamoDB at {endpoint_url}")
        _dynamodb_resource = boto3.resource(
            "dynamodb",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID", "dummy"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", "dummy"),
        )
    else:
        logger.info(f"Using AWS DynamoDB in region {region}")
        _dynamodb_resource = boto3.resource("dynamodb", region_name=region)

    return _dynamodb_resource


def get_order_service() -> OrderLifecycleService:
    """Create or retrieve cached order lifecycle service.

    Returns:
        Configured OrderLifecycleService instance
    """
    global _order_service

    if _order_service is not None:
        return _order_service

    from main import create_order_service

    _order_service = create_order_service(get_dynamodb_resource())

    logger.info("Order service initialized")
    return _order_service


def get_fastapi_app() -> FastAPI:
    """Create or retrieve cached FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    global _fastapi_app

    if _fastapi_app is not None:
        return _fastapi_app

    from main import get_api_keys

    _fastapi_app = create_app(order_service=get_order_service(), api_keys=get_api_keys())
    setup_observability(_fastapi_app)

    logger.info("FastAPI application initialized")
    return _fastapi_app


def initialize_lambda_environment() -> None:
    """Initialize Lambda environment with logging.

    Should be called once during Lambda cold start.
    """
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    logger.info("Lambda environment initialized")
