"""Shared pytest fixtures and configuration for all tests."""

import os

# Entry-point modules only build real AWS clients outside of test runs
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import UTC, date, datetime  # noqa: E402

import pytest  # noqa: E402

from lunch_order_service.models.menu_models import (  # noqa: E402
    Menu,
    MenuStatus,
    OptionGroup,
    OptionGroupType,
)
from lunch_order_service.models.order_models import (  # noqa: E402
    AgeGroup,
    Gender,
    Money,
    Order,
    OrderNumber,
    OrderStatus,
    UserInfo,
)


@pytest.fixture
def mock_user_id() -> str:
    """Fixture providing a standard test user ID."""
    return "user_001"


@pytest.fixture
def mock_menu_id() -> str:
    """Fixture providing a standard test menu ID."""
    return "menu_20240120"


@pytest.fixture
def mock_user_info() -> UserInfo:
    """Fixture providing sample orderer attributes."""
    return UserInfo(
        department="Engineering",
        display_name="Sato",
        gender=Gender.FEMALE,
        age_group=AgeGroup.THIRTIES,
    )


@pytest.fixture
def mock_option_groups() -> list[OptionGroup]:
    """Fixture providing a required radio group and an optional checkbox group."""
    return [
        OptionGroup(
            id="rice",
            name="Rice size",
            type=OptionGroupType.RADIO,
            required=True,
            values=["small", "regular", "large"],
        ),
        OptionGroup(
            id="sides",
            name="Side dishes",
            type=OptionGroupType.CHECKBOX,
            required=False,
            values=["salad", "soup", "pickles"],
        ),
    ]


@pytest.fixture
def mock_menu(mock_menu_id: str, mock_option_groups: list[OptionGroup]) -> Menu:
    """Fixture providing an active menu delivered 2024-01-20 with a 2024-01-18 17:00 UTC deadline."""
    return Menu(
        id=mock_menu_id,
        name="Grilled salmon bento",
        price=Money(amount=650),
        available_date=date(2024, 1, 20),
        order_deadline=datetime(2024, 1, 18, 17, 0, tzinfo=UTC),
        status=MenuStatus.ACTIVE,
        option_groups=mock_option_groups,
    )


@pytest.fixture
def before_deadline() -> datetime:
    """Fixture providing a timestamp before the sample menu deadline."""
    return datetime(2024, 1, 17, 9, 30, tzinfo=UTC)


@pytest.fixture
def after_deadline() -> datetime:
    """Fixture providing a timestamp after the sample menu deadline."""
    return datetime(2024, 1, 18, 17, 0, 1, tzinfo=UTC)


@pytest.fixture
def mock_order(mock_user_id: str, mock_menu_id: str, mock_user_info: UserInfo) -> Order:
    """Fixture providing a confirmed order for the sample menu."""
    return Order(
        id="ord_0001",
        user_id=mock_user_id,
        menu_id=mock_menu_id,
        order_number=OrderNumber.generate(date(2024, 1, 20), 1),
        user_info=mock_user_info,
        selected_options={"rice": ["regular"], "sides": ["salad", "soup"]},
        price=Money(amount=650),
        status=OrderStatus.CONFIRMED,
        ordered_at=datetime(2024, 1, 17, 9, 30, tzinfo=UTC),
    )
