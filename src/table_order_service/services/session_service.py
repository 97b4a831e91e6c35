"""Entry parsing, reservation checks and the registry of participant sessions."""

import json
import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import unquote

from table_order_service.errors import (
    InvalidSessionError,
    ReservationError,
    SessionExpiredError,
    SessionNotFoundError,
)
from table_order_service.models.session_models import EntryParameters
from table_order_service.repositories.confirmation_repository import (
    ConfirmationRepository,
    SubmissionClaimRepository,
)
from table_order_service.repositories.order_repositories import ReservationRepository
from table_order_service.services.cart_state import CartState
from table_order_service.services.consensus import ConsensusEngine
from table_order_service.services.order_service import OrderService
from table_order_service.services.session_context import (
    DEFAULT_AI_PROVIDER,
    DEFAULT_LANGUAGE,
    SessionContext,
)
from table_order_service.services.session_store import SessionStore

logger = logging.getLogger(__name__)

INVALID_QR_MESSAGE = "Invalid QR Code. Please scan a valid table QR code."

# QR payloads use camelCase, URL parameters use snake_case
_ENTRY_FIELDS = {
    "table_id": ("table_id", "tableId"),
    "reservation_id": ("reservation_id", "reservationId"),
    "reservation_name": ("reservation_name", "reservationName"),
    "ai_provider": ("ai_provider", "aiProvider"),
    "language": ("language", "lang"),
}


def parse_qr_data(payload: str) -> dict[str, Any]:
    """Parse a QR payload.

    JSON objects are returned as-is. Anything else is read as
    ``key=value&key=value`` with URL decoding; pairs without a key or value
    are skipped.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        return data

    parsed: dict[str, Any] = {}
    for pair in payload.split("&"):
        key, _, value = pair.partition("=")
        if key and value:
            parsed[unquote(key)] = unquote(value)
    return parsed


def parse_entry_parameters(
    qr: str | None = None, params: dict[str, Any] | None = None
) -> EntryParameters:
    """Build entry parameters from a QR payload, or from direct parameters.

    Raises:
        InvalidSessionError: If no table identifier is present
    """
    data = parse_qr_data(qr) if qr else dict(params or {})

    values: dict[str, str] = {}
    for name, aliases in _ENTRY_FIELDS.items():
        for alias in aliases:
            value = data.get(alias)
            if value not in (None, ""):
                values[name] = str(value)
                break

    if "table_id" not in values:
        raise InvalidSessionError(INVALID_QR_MESSAGE)

    return EntryParameters(**values)


class ReservationValidator:
    """Checks the name a diner typed against the reservation on record."""

    def __init__(self, reservation_repository: ReservationRepository) -> None:
        self.reservation_repository = reservation_repository

    async def validate(self, reservation_id: str, name: str) -> bool:
        """Compare names case-insensitively, ignoring surrounding whitespace."""
        customer_name = await self.reservation_repository.get_customer_name(reservation_id)
        if not customer_name or not name:
            return False
        return customer_name.strip().lower() == name.strip().lower()


class SessionRegistry:
    """Live participant sessions, one consensus engine each.

    Re-entering replaces the participant's engine and tears down its old
    subscription, so a reload never leaves duplicate callbacks behind.
    """

    def __init__(
        self,
        confirmations: ConfirmationRepository,
        order_service: OrderService,
        store: SessionStore,
        reservation_validator: ReservationValidator | None = None,
        claims: SubmissionClaimRepository | None = None,
        session_duration_seconds: int = 3600,
    ) -> None:
        """Initialize the registry.

        Args:
            confirmations: Repository for confirmation records
            order_service: Order submission collaborator
            store: Participant-local storage
            reservation_validator: Validator for reservation entries (None skips the check)
            claims: Submission claims shared by every engine (None disables them)
            session_duration_seconds: Lifetime of a participant session
        """
        self.confirmations = confirmations
        self.order_service = order_service
        self.store = store
        self.reservation_validator = reservation_validator
        self.claims = claims
        self.session_duration = timedelta(seconds=session_duration_seconds)
        self._engines: dict[tuple[str, str], ConsensusEngine] = {}

    @property
    def active_count(self) -> int:
        return len(self._engines)

    async def enter(self, params: EntryParameters, user_id: str | None = None) -> ConsensusEngine:
        """Start (or restart) a participant's session at a table.

        Args:
            params: Parsed entry parameters
            user_id: Existing participant id; a new one is generated when omitted

        Returns:
            The participant's started ConsensusEngine

        Raises:
            ReservationError: If a reservation was given and the name does not match
            StorageError: If the initial fetch of the table's records fails
        """
        if params.reservation_id and self.reservation_validator is not None:
            valid = await self.reservation_validator.validate(
                params.reservation_id, params.reservation_name or ""
            )
            if not valid:
                raise ReservationError("Invalid reservation name. Please try again.")

        self.sweep_expired()

        user_id = user_id or str(uuid.uuid4())
        key = (params.table_id, user_id)

        previous = self._engines.pop(key, None)
        if previous is not None:
            previous.stop()
            logger.info(f"Replacing session for {user_id} at table {params.table_id}")

        language = params.language or self.store.load_language(*key) or DEFAULT_LANGUAGE
        context = SessionContext(
            table_id=params.table_id,
            user_id=user_id,
            cart=CartState(self.store, params.table_id, user_id),
            store=self.store,
            expires_at=datetime.now(UTC) + self.session_duration,
            language=language,
            ai_provider=params.ai_provider or DEFAULT_AI_PROVIDER,
            reservation_id=params.reservation_id,
            order_id=self.store.load_order_id(*key),
        )
        context.set_language(language)

        engine = ConsensusEngine(
            session=context,
            confirmations=self.confirmations,
            order_service=self.order_service,
            claims=self.claims,
        )
        self._engines[key] = engine
        await engine.start()
        return engine

    def get(self, table_id: str, user_id: str) -> ConsensusEngine:
        """Look up a live session.

        Raises:
            SessionNotFoundError: If the participant never entered
            SessionExpiredError: If the session outlived its duration (it is removed
                and its local state cleared)
        """
        engine = self._engines.get((table_id, user_id))
        if engine is None:
            raise SessionNotFoundError(f"No session for {user_id} at table {table_id}")

        if engine.session.is_expired():
            self.leave(table_id, user_id)
            self.store.forget(table_id, user_id)
            raise SessionExpiredError("Your session has expired. Please re-scan the QR code to continue.")

        return engine

    def sweep_expired(self) -> int:
        """Drop every expired session, stopping its engine and clearing its local state.

        Returns:
            Number of sessions removed
        """
        expired = [key for key, engine in self._engines.items() if engine.session.is_expired()]
        for table_id, user_id in expired:
            self.leave(table_id, user_id)
            self.store.forget(table_id, user_id)
        if expired:
            logger.info(f"Removed {len(expired)} expired participant session(s)")
        return len(expired)

    def leave(self, table_id: str, user_id: str) -> None:
        engine = self._engines.pop((table_id, user_id), None)
        if engine is not None:
            engine.stop()

    def close_all(self) -> None:
        for engine in self._engines.values():
            engine.stop()
        self._engines.clear()

    async def settle(self, table_id: str | None = None) -> None:
        """Wait for pending change notifications to be processed.

        Args:
            table_id: Only wait for this table's sessions (every table when omitted)
        """
        if table_id is None:
            await self.confirmations.gateway.settle()
        else:
            await self.confirmations.settle_for_table(table_id)
