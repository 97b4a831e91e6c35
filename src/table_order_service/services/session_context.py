"""Explicit per-participant session state."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from table_order_service.services.cart_state import CartState
from table_order_service.services.session_store import SessionStore

DEFAULT_LANGUAGE = "en"
DEFAULT_AI_PROVIDER = "openai"


@dataclass
class SessionContext:
    """Everything one participant's session needs, passed to the engine.

    Attributes:
        table_id: Table the participant scanned in at
        user_id: Participant identifier
        cart: The participant's local cart
        store: Participant-local storage
        expires_at: When the session stops being accepted
        language: Language for menu translation and assistant replies
        ai_provider: AI provider for translation and assistant calls
        reservation_id: Reservation the participant entered with, if any
        order_id: Last order placed by this participant's session
    """

    table_id: str
    user_id: str
    cart: CartState
    store: SessionStore
    expires_at: datetime
    language: str = DEFAULT_LANGUAGE
    ai_provider: str = DEFAULT_AI_PROVIDER
    reservation_id: str | None = None
    order_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(UTC)) >= self.expires_at

    def record_order(self, order_id: str) -> None:
        self.order_id = order_id
        self.store.save_order_id(self.table_id, self.user_id, order_id)

    def set_language(self, language: str) -> None:
        self.language = language
        self.store.save_language(self.table_id, self.user_id, language)
