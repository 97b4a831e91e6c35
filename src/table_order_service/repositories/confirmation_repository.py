"""Repositories for confirmation records and submission claims.

Confirmation records are keyed by (table_id, user_id); publishing is an
upsert so each participant has at most one live record per table.
"""

import logging
from datetime import UTC, datetime

from table_order_service.models.cart_models import CartItem, ConfirmationRecord
from table_order_service.storage.gateway import (
    CONFIRMATIONS_TABLE,
    SUBMISSION_CLAIMS_TABLE,
    ChangeCallback,
    StorageGateway,
    Subscription,
)

logger = logging.getLogger(__name__)


class ConfirmationRepository:
    """Repository for the shared per-participant confirmation records."""

    def __init__(self, gateway: StorageGateway) -> None:
        """Initialize repository.

        Args:
            gateway: Storage gateway holding the confirmations table
        """
        self.gateway = gateway

    async def publish(
        self, table_id: str, user_id: str, cart: list[CartItem], confirmed: bool
    ) -> ConfirmationRecord:
        """Upsert a participant's cart and readiness flag.

        Last writer wins per (table_id, user_id); the timestamp is always
        refreshed.

        Args:
            table_id: Table identifier
            user_id: Participant identifier
            cart: Participant's full cart
            confirmed: Whether the participant declared they are ready

        Returns:
            ConfirmationRecord: The record as stored

        Raises:
            StorageError: If the write fails
        """
        record = ConfirmationRecord(
            table_id=table_id,
            user_id=user_id,
            cart=list(cart),
            confirmed=confirmed,
            updated_at=datetime.now(UTC),
        )
        stored = await self.gateway.upsert(
            CONFIRMATIONS_TABLE,
            {"table_id": table_id, "user_id": user_id},
            record.to_dynamodb_item(),
        )
        logger.debug(
            f"Published confirmation for {user_id} at table {table_id} "
            f"(items={len(cart)}, confirmed={confirmed})"
        )
        return ConfirmationRecord.from_dynamodb_item(stored)

    async def list_for_table(self, table_id: str) -> list[ConfirmationRecord]:
        """Fetch every participant's record for a table.

        Raises:
            StorageError: If the read fails
        """
        items = await self.gateway.select(CONFIRMATIONS_TABLE, {"table_id": table_id})
        return [ConfirmationRecord.from_dynamodb_item(item) for item in items]

    async def delete_for_participant(self, table_id: str, user_id: str) -> bool:
        """Delete one participant's record.

        Returns:
            bool: True if a record was removed

        Raises:
            StorageError: If the delete fails
        """
        deleted = await self.gateway.delete(
            CONFIRMATIONS_TABLE, {"table_id": table_id, "user_id": user_id}
        )
        return deleted > 0

    def subscribe_for_table(self, table_id: str, on_change: ChangeCallback) -> Subscription:
        """Receive a change event for every write to this table's records."""
        return self.gateway.subscribe(CONFIRMATIONS_TABLE, {"table_id": table_id}, on_change)

    async def settle_for_table(self, table_id: str) -> None:
        """Wait until change notifications for this table have been handled."""
        await self.gateway.settle(CONFIRMATIONS_TABLE, {"table_id": table_id})


class SubmissionClaimRepository:
    """Conditional-write claims that let one client win each readiness round."""

    def __init__(self, gateway: StorageGateway) -> None:
        self.gateway = gateway

    async def try_claim(self, table_id: str, round_key: str, user_id: str) -> bool:
        """Attempt to become the submitter for a readiness round.

        Args:
            table_id: Table identifier
            round_key: Digest identifying the agreed snapshot
            user_id: Participant attempting the claim

        Returns:
            bool: True if this participant won the claim

        Raises:
            StorageError: If the conditional write fails for any other reason
        """
        won = await self.gateway.insert_if_absent(
            SUBMISSION_CLAIMS_TABLE,
            {"table_id": table_id, "round_key": round_key},
            {"user_id": user_id, "claimed_at": datetime.now(UTC).isoformat()},
        )
        if won:
            logger.info(f"Participant {user_id} claimed submission round {round_key} at {table_id}")
        else:
            logger.info(f"Submission round {round_key} at {table_id} already claimed")
        return won

    async def release(self, table_id: str, round_key: str) -> bool:
        """Delete a claim whose holder could not place the order.

        Returns:
            bool: True if a claim was removed

        Raises:
            StorageError: If the delete fails
        """
        deleted = await self.gateway.delete(
            SUBMISSION_CLAIMS_TABLE, {"table_id": table_id, "round_key": round_key}
        )
        if deleted:
            logger.info(f"Released submission round {round_key} at {table_id}")
        return deleted > 0
