"""Per-participant local storage with idle expiry.

Stands in for the diner's device storage: it keeps the cart snapshot, the
last order id and the chosen language so a participant who re-enters the
flow picks up where they left off. This copy is never the source of truth
for group consensus; the confirmation records are.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from table_order_service.models.cart_models import CartItem

logger = logging.getLogger(__name__)

# idle TTL in seconds (default: 4 hours)
DEFAULT_IDLE_TTL_SECONDS = 14400

Key = tuple[str, str]


class SessionStore:
    """In-memory key-value store scoped to (table_id, user_id)."""

    def __init__(
        self,
        idle_ttl_seconds: int = DEFAULT_IDLE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            idle_ttl_seconds: Seconds of inactivity before an entry is dropped (0 disables)
            clock: Time source, injectable for tests
        """
        self.idle_ttl_seconds = idle_ttl_seconds
        self._clock = clock
        self._entries: dict[Key, dict[str, Any]] = {}
        self._last_activity: dict[Key, float] = {}

    def _gc_expired(self) -> None:
        """Drop entries idle longer than the TTL. Called on every access."""
        if self.idle_ttl_seconds <= 0:
            return

        now = self._clock()
        expired = [
            key for key, ts in self._last_activity.items() if (now - ts) > self.idle_ttl_seconds
        ]
        for key in expired:
            self._last_activity.pop(key, None)
            self._entries.pop(key, None)

        if expired:
            logger.info(f"Session store cleared {len(expired)} idle participant(s)")

    def _entry(self, table_id: str, user_id: str) -> dict[str, Any]:
        self._gc_expired()
        key = (table_id, user_id)
        self._last_activity[key] = self._clock()
        return self._entries.setdefault(key, {})

    def save_cart(self, table_id: str, user_id: str, items: list[CartItem]) -> None:
        self._entry(table_id, user_id)["cart"] = [item.to_dynamodb_item() for item in items]

    def load_cart(self, table_id: str, user_id: str) -> list[CartItem]:
        stored = self._entry(table_id, user_id).get("cart") or []
        return [CartItem.from_dynamodb_item(item) for item in stored]

    def clear_cart(self, table_id: str, user_id: str) -> None:
        self._entry(table_id, user_id).pop("cart", None)

    def save_order_id(self, table_id: str, user_id: str, order_id: str) -> None:
        self._entry(table_id, user_id)["order_id"] = order_id

    def load_order_id(self, table_id: str, user_id: str) -> str | None:
        return self._entry(table_id, user_id).get("order_id")

    def save_language(self, table_id: str, user_id: str, language: str) -> None:
        self._entry(table_id, user_id)["language"] = language

    def load_language(self, table_id: str, user_id: str) -> str | None:
        return self._entry(table_id, user_id).get("language")

    def forget(self, table_id: str, user_id: str) -> None:
        """Remove everything stored for a participant."""
        key = (table_id, user_id)
        self._entries.pop(key, None)
        self._last_activity.pop(key, None)
