"""Client for reading menu snapshots from the Menu Service API."""

import logging

import httpx
from pydantic import ValidationError

from lunch_order_service.models.menu_models import Menu

logger = logging.getLogger(__name__)


class MenuServiceError(Exception):
    """The Menu Service could not be reached or returned an unusable response."""


class MenuServiceClient:
    """HTTP client for fetching menus from the Menu Service.

    Menus are read-only here. A missing menu is an expected outcome (None);
    anything else that prevents an answer raises MenuServiceError so the
    caller can report a retryable failure instead of "not found".
    """

    def __init__(self, base_url: str, api_key: str, timeout_seconds: float = 5.0) -> None:
        """Initialize the Menu Service client.

        Args:
            base_url: Base URL of the Menu Service API (e.g., "https://api.example.com")
            api_key: API key for service-to-service authentication
            timeout_seconds: Per-request timeout
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    async def get_menu(self, menu_id: str) -> Menu | None:
        """Fetch a menu snapshot.

        Args:
            menu_id: The menu to fetch

        Returns:
            Menu if it exists, None if the Menu Service reports 404

        Raises:
            MenuServiceError: On transport errors, other HTTP errors or an invalid payload
        """
        url = f"{self.base_url}/menus/{menu_id}"
        headers = {"X-API-Key": self.api_key}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url, headers=headers)
                if response.status_code == 404:
                    return None
                response.raise_for_status()
                return Menu(**response.json())

        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            logger.error(f"Failed to fetch menu {menu_id}: {e}")
            raise MenuServiceError(f"Failed to fetch menu {menu_id}") from e

        except (ValidationError, ValueError) as e:
            logger.error(f"Menu service returned an invalid menu {menu_id}: {e}")
            raise MenuServiceError(f"Invalid menu payload for {menu_id}") from e
