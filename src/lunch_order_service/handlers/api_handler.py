"""FastAPI application for order and admin endpoints."""

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from lunch_order_service.auth.api_dependencies import get_api_key_from_header, get_caller_user_id
from lunch_order_service.auth.api_key_validator import APIKeyValidator
from lunch_order_service.models.order_models import (
    AgeGroup,
    Gender,
    OptionCount,
    Order,
    OrderFilters,
    UserInfo,
)
from lunch_order_service.services.order_errors import ErrorKind, OrderError
from lunch_order_service.services.order_service import OrderLifecycleService

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str


class CreateOrderRequest(BaseModel):
    """Request body for placing an order."""

    menu_id: str
    user_info: UserInfo
    selected_options: dict[str, str | list[str]] = Field(default_factory=dict)


class ModifyOrderRequest(BaseModel):
    """Request body for modifying an order."""

    user_info: UserInfo
    selected_options: dict[str, str | list[str]] = Field(default_factory=dict)


class FieldErrorResponse(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    """Error body shared by every endpoint."""

    code: str
    message: str
    errors: list[FieldErrorResponse] = Field(default_factory=list)


ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status: {"model": ErrorResponse} for status in (400, 401, 404, 409, 500, 503)
}


def error_response(error: OrderError | None) -> JSONResponse:
    """Map an OrderError to its fixed HTTP status and stable code."""
    if error is None:
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(code="INTERNAL_ERROR", message="Unknown failure").model_dump(),
        )

    body = ErrorResponse(
        code=error.kind.value,
        message=error.message,
        errors=[FieldErrorResponse(field=fe.field, message=fe.message) for fe in error.field_errors],
    )
    headers = {"Retry-After": "1"} if error.retryable else None
    return JSONResponse(status_code=error.kind.http_status, content=body.model_dump(), headers=headers)


HTTP_ERROR_CODES: dict[int, str] = {
    401: ErrorKind.UNAUTHORIZED.value,
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def field_path(loc: Sequence[int | str]) -> str:
    """Render a pydantic error location as a dotted field path.

    Body fields are reported relative to the body (``user_info.department``);
    query and header fields keep their source prefix (``query.gender``).
    """
    parts = list(loc[1:]) if loc and loc[0] == "body" else list(loc)
    return ".".join(str(part) for part in parts)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return malformed requests as VALIDATION_ERROR with one entry per field."""
    errors = [
        FieldErrorResponse(field=field_path(err.get("loc", ())), message=err.get("msg", ""))
        for err in exc.errors()
    ]
    body = ErrorResponse(
        code=ErrorKind.VALIDATION_ERROR.value,
        message=f"{len(errors)} invalid request field(s)",
        errors=errors,
    )
    return JSONResponse(status_code=ErrorKind.VALIDATION_ERROR.http_status, content=body.model_dump())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap HTTPExceptions raised by dependencies and routing in the error body."""
    default_code = "INTERNAL_ERROR" if exc.status_code >= 500 else "BAD_REQUEST"
    body = ErrorResponse(
        code=HTTP_ERROR_CODES.get(exc.status_code, default_code),
        message=str(exc.detail),
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(), headers=exc.headers)


def create_app(order_service: OrderLifecycleService, api_keys: list[str]) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        order_service: Service for order lifecycle operations
        api_keys: List of valid API keys for admin authentication

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        # Mangum runs shutdown after every invocation, before Lambda freezes the container
        await app.state.order_service.drain_events()

    app = FastAPI(
        title="Lunch Order Service API",
        description="Reserve, modify and cancel daily boxed lunches; tally orders per menu",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Store services in app state for access in route handlers
    app.state.order_service = order_service
    app.state.api_key_validator = APIKeyValidator(api_keys=api_keys)

    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="healthy")

    def validate_api_key(x_api_key: str | None = Header(None)) -> str:
        """Dependency to validate API key."""
        return get_api_key_from_header(x_api_key=x_api_key, validator=app.state.api_key_validator)

    @app.post(
        "/orders",
        response_model=Order,
        status_code=201,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
    )
    async def create_order(
        request: CreateOrderRequest,
        user_id: str = Depends(get_caller_user_id),
    ) -> Order | JSONResponse:
        """Place an order for the caller against a menu.

        Returns:
            The confirmed order including its order number
        """
        result = await app.state.order_service.create_order(
            user_id=user_id,
            menu_id=request.menu_id,
            user_info=request.user_info,
            selected_options=request.selected_options,
        )
        if not result.success:
            return error_response(result.error)
        order: Order = result.order
        return order

    @app.get(
        "/orders/{order_number}",
        response_model=Order,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
    )
    async def get_order(
        order_number: str,
        user_id: str = Depends(get_caller_user_id),
    ) -> Order | JSONResponse:
        """Get one of the caller's orders."""
        result = await app.state.order_service.get_order(order_number, user_id)
        if not result.success:
            return error_response(result.error)
        order: Order = result.order
        return order

    @app.put(
        "/orders/{order_number}",
        response_model=Order,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
    )
    async def modify_order(
        order_number: str,
        request: ModifyOrderRequest,
        user_id: str = Depends(get_caller_user_id),
    ) -> Order | JSONResponse:
        """Replace the attributes and selections of the caller's order."""
        result = await app.state.order_service.modify_order(
            order_number=order_number,
            caller_user_id=user_id,
            new_user_info=request.user_info,
            new_selected_options=request.selected_options,
        )
        if not result.success:
            return error_response(result.error)
        order: Order = result.order
        return order

    @app.post(
        "/orders/{order_number}/cancel",
        response_model=Order,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
    )
    async def cancel_order(
        order_number: str,
        user_id: str = Depends(get_caller_user_id),
    ) -> Order | JSONResponse:
        """Cancel the caller's order."""
        result = await app.state.order_service.cancel_order(order_number, user_id)
        if not result.success:
            return error_response(result.error)
        order: Order = result.order
        return order

    @app.get("/me/orders", response_model=list[Order], tags=["Orders"])
    async def list_my_orders(
        user_id: str = Depends(get_caller_user_id),
    ) -> list[Order] | JSONResponse:
        """Get the caller's order history, newest first."""
        result = await app.state.order_service.list_orders_for_user(user_id)
        if not result.success:
            return error_response(result.error)
        orders: list[Order] = result.items
        return orders

    @app.get(
        "/me/profile",
        response_model=UserInfo,
        responses={404: {"model": ErrorResponse}},
        tags=["Orders"],
    )
    async def get_my_profile(
        user_id: str = Depends(get_caller_user_id),
    ) -> UserInfo | JSONResponse:
        """Get the attributes the caller declared on their last order, to prefill a new one."""
        profile: UserInfo | None = await app.state.order_service.get_profile(user_id)
        if profile is None:
            return JSONResponse(
                status_code=404,
                content=ErrorResponse(
                    code="PROFILE_NOT_FOUND", message="No saved profile for this user"
                ).model_dump(),
            )
        return profile

    @app.get("/admin/menus/{menu_id}/orders", response_model=list[Order], tags=["Admin"])
    async def list_menu_orders(
        menu_id: str,
        _api_key: str = Depends(validate_api_key),
    ) -> list[Order] | JSONResponse:
        """Get every order placed against a menu, cancelled ones included."""
        result = await app.state.order_service.list_orders_for_menu(menu_id)
        if not result.success:
            return error_response(result.error)
        orders: list[Order] = result.items
        return orders

    @app.get("/admin/menus/{menu_id}/option-counts", response_model=list[OptionCount], tags=["Admin"])
    async def count_menu_options(
        menu_id: str,
        department: str | None = None,
        gender: Gender | None = None,
        age_group: AgeGroup | None = None,
        _api_key: str = Depends(validate_api_key),
    ) -> list[OptionCount] | JSONResponse:
        """Tally active orders per option value, optionally filtered by orderer attributes."""
        filters = OrderFilters(department=department, gender=gender, age_group=age_group)
        result = await app.state.order_service.count_options(menu_id, filters)
        if not result.success:
            return error_response(result.error)
        counts: list[OptionCount] = result.items
        return counts

    return app
