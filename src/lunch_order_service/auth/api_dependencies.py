"""FastAPI dependencies for caller identification.

User authentication happens upstream (session or anonymous sign-in); the
gateway forwards the authenticated user id in the X-User-Id header. Admin
endpoints are protected by an API key in the X-API-Key header.
"""

from typing import Annotated

from fastapi import Header, HTTPException

from lunch_order_service.auth.api_key_validator import APIKeyValidator


def get_api_key_from_header(
    x_api_key: Annotated[str | None, Header()] = None,
    validator: APIKeyValidator | None = None,
) -> str:
    """FastAPI dependency to extract and validate API key from X-API-Key header.

    Args:
        x_api_key: API key from X-API-Key header (injected by FastAPI)
        validator: APIKeyValidator instance

    Returns:
        str: The validated API key

    Raises:
        HTTPException: 401 if API key is missing or invalid
    """
    if not x_api_key:
        raise HTTPException(status_code=401, detail="Missing API key")

    if validator and not validator.validate(x_api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")

    return x_api_key


def get_caller_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """FastAPI dependency returning the authenticated caller's user id.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_id.strip()
