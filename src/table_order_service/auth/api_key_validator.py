"""API key validation for staff endpoints.

Kitchen and floor staff move order items through their lifecycle with a
shared key sent in the X-API-Key header. Keys are matched exactly against
the configured set.
"""

import hmac


class APIKeyValidator:
    """Validates staff API keys."""

    def __init__(self, api_keys: list[str]) -> None:
        """Initialize validator with the accepted keys.

        Args:
            api_keys: Accepted API key strings (blank entries are ignored)

        Raises:
            ValueError: If no non-blank key is provided
        """
        keys = {key.strip() for key in api_keys if key and key.strip()}
        if not keys:
            raise ValueError("At least one API key must be provided")

        self.api_keys = keys

    def validate(self, api_key: str) -> bool:
        """Return True if the key is one of the accepted keys."""
        return any(hmac.compare_digest(api_key, key) for key in self.api_keys)
