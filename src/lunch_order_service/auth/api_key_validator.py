"""API key validation for admin endpoints.

Admin tooling (tally screens, CSV export jobs) authenticates with a shared
API key. Keys are compared in constant time against the configured set.
"""

import hmac


class APIKeyValidator:
    """Validates API keys for admin endpoint authentication."""

    def __init__(self, api_keys: list[str]) -> None:
        """Initialize validator with list of valid API keys.

        Args:
            api_keys: List of valid API key strings

        Raises:
            ValueError: If api_keys contains no non-blank key
        """
        keys = [key for key in api_keys if key and key.strip()]
        if not keys:
            raise ValueError("At least one API key must be provided")

        self.api_keys = tuple(keys)

    def validate(self, api_key: str) -> bool:
        """Validate an API key.

        Args:
            api_key: The API key to validate

        Returns:
            bool: True if valid, False otherwise
        """
        candidate = api_key.encode()
        return any(hmac.compare_digest(candidate, key.encode()) for key in self.api_keys)
