"""Group-cart consensus for one participant session.

Every participant at a table runs its own engine. Engines never talk to each
other: they publish their own confirmation record, and on every change
notification for the table they re-fetch the full record set and evaluate
the readiness predicate. Re-fetching instead of applying the event payload
means a client that saw a stale snapshot corrects itself on the next
notification, and event ordering across participants never matters.

When every participant with a non-empty cart has confirmed, the engine
submits the concatenated carts as one order and deletes the table's
records. A per-engine flag stops the same client from submitting twice for
one readiness event. A failed submission clears the flag, so the next change
notification (for example someone confirming again) retries it. Across
clients, an optional submission claim (a conditional insert keyed by a
digest of the agreed snapshot) lets exactly one client submit; without it,
two clients that both observe readiness before cleanup will both submit.
"""

import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from enum import Enum

from table_order_service.errors import OrderSubmissionError, StorageError
from table_order_service.models.cart_models import CartItem, ConfirmationRecord
from table_order_service.models.menu_models import MenuItem
from table_order_service.observability import traced
from table_order_service.observability.metrics import (
    record_claim_lost,
    record_consensus_evaluation,
    record_resync_failure,
)
from table_order_service.repositories.confirmation_repository import (
    ConfirmationRepository,
    SubmissionClaimRepository,
)
from table_order_service.services.order_service import OrderService
from table_order_service.services.session_context import SessionContext
from table_order_service.storage.gateway import ChangeEvent, Subscription

logger = logging.getLogger(__name__)

WAITING_BUTTON_LABEL = "Waiting for others..."
READY_BUTTON_LABEL = "I am Ready to Order"


class ConsensusState(str, Enum):
    """Consensus state of one table as seen by one participant."""

    IDLE = "idle"
    WAITING = "waiting"
    READY = "ready"
    SUBMITTING = "submitting"
    CLOSED = "closed"


@dataclass(frozen=True)
class ConsensusSnapshot:
    """Result of one readiness evaluation plus its display outputs.

    Attributes:
        state: Consensus state
        confirmed_count: Participants with items who confirmed
        total_count: Participants with items
        status_label: Readiness text, e.g. "1 of 2 people are ready."
        ready_button_label: Text for the participant's ready action
        can_confirm: Whether the ready action should be offered
        group_items: Every fetched cart, concatenated
        order_id: Order placed by this session when closed
        claimed_elsewhere: Another participant's session placed the order
    """

    state: ConsensusState
    confirmed_count: int = 0
    total_count: int = 0
    status_label: str = ""
    ready_button_label: str = READY_BUTTON_LABEL
    can_confirm: bool = False
    group_items: list[CartItem] = field(default_factory=list)
    order_id: str | None = None
    claimed_elsewhere: bool = False


def evaluate_readiness(
    records: list[ConfirmationRecord], local_cart_size: int = 0
) -> ConsensusSnapshot:
    """Evaluate the readiness predicate over a table's records.

    Only records with a non-empty cart take part. None of them gives IDLE,
    all of them confirmed gives READY, anything else gives WAITING.

    Args:
        records: Every confirmation record currently stored for the table
        local_cart_size: Number of items in the evaluating participant's cart

    Returns:
        ConsensusSnapshot for the records
    """
    with_items = [record for record in records if record.has_items]
    confirmed = sum(1 for record in with_items if record.confirmed)
    total = len(with_items)
    group_items = [item for record in records for item in record.cart]

    if total == 0:
        state = ConsensusState.IDLE
    elif confirmed == total:
        state = ConsensusState.READY
    else:
        state = ConsensusState.WAITING

    waiting = state is ConsensusState.WAITING
    if waiting:
        status_label = f"{confirmed} of {total} people are ready."
    elif total > 0:
        status_label = f"All {total} people are ready!"
    else:
        status_label = ""

    return ConsensusSnapshot(
        state=state,
        confirmed_count=confirmed,
        total_count=total,
        status_label=status_label,
        ready_button_label=WAITING_BUTTON_LABEL if waiting else READY_BUTTON_LABEL,
        can_confirm=not waiting and local_cart_size > 0,
        group_items=group_items,
    )


def round_key_for(records: list[ConfirmationRecord]) -> str:
    """Digest identifying one agreed set of carts at a table.

    Built from participant ids and cart instance ids, so every client that
    fetched the same carts computes the same key even if someone confirmed
    twice, and a conditional insert on it admits exactly one submitter.
    """
    parts = sorted(
        f"{record.user_id}:{item.cart_id}"
        for record in records
        for item in record.cart
    )
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:32]


SnapshotListener = Callable[[ConsensusSnapshot], Awaitable[None]]


class ConsensusEngine:
    """Maintains one participant's view of the table and submits on consensus."""

    def __init__(
        self,
        session: SessionContext,
        confirmations: ConfirmationRepository,
        order_service: OrderService,
        claims: SubmissionClaimRepository | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            session: The participant's session context
            confirmations: Repository for the shared confirmation records
            order_service: Collaborator that creates the order
            claims: Submission claims; None accepts the cross-client race
        """
        self.session = session
        self.confirmations = confirmations
        self.order_service = order_service
        self.claims = claims

        self._state = ConsensusState.IDLE
        self._snapshot = ConsensusSnapshot(state=ConsensusState.IDLE)
        self._records: list[ConfirmationRecord] = []
        self._consensus_reached = False
        self._claimed_elsewhere = False
        self._order_id: str | None = None
        self._last_error: str | None = None
        self._subscription: Subscription | None = None
        self._lock = asyncio.Lock()
        self._listeners: list[SnapshotListener] = []
        self._unsent: ConsensusSnapshot | None = None
        self._pusher: asyncio.Task[None] | None = None

    @property
    def state(self) -> ConsensusState:
        return self._state

    @property
    def snapshot(self) -> ConsensusSnapshot:
        return self._snapshot

    @property
    def records(self) -> list[ConfirmationRecord]:
        return list(self._records)

    @property
    def consensus_reached(self) -> bool:
        return self._consensus_reached

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SnapshotListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def start(self) -> ConsensusSnapshot:
        """Subscribe to the table and load its current records.

        Any earlier subscription of this engine is torn down first. The
        initial load never triggers a submission.

        Raises:
            StorageError: If the initial fetch fails
        """
        self.stop()
        self._subscription = self.confirmations.subscribe_for_table(
            self.session.table_id, self._on_change
        )
        async with self._lock:
            records = await self.confirmations.list_for_table(self.session.table_id)
            await self._apply(records)
        logger.info(
            f"Participant {self.session.user_id} joined table {self.session.table_id} "
            f"({self._snapshot.status_label or 'no carts yet'})"
        )
        return self._snapshot

    def stop(self) -> None:
        """Tear down the change subscription."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def add_item(self, menu_item_id: str, menu: list[MenuItem]) -> CartItem | None:
        """Add a menu item locally and re-open consensus by publishing unconfirmed.

        Returns:
            The new CartItem, or None if the item is not on the menu

        Raises:
            StorageError: If publishing fails (the item stays in the local cart)
        """
        item = self.session.cart.add_item(menu_item_id, menu)
        if item is None:
            return None

        await self.confirmations.publish(
            self.session.table_id, self.session.user_id, self.session.cart.items, confirmed=False
        )
        return item

    async def mark_ready(self) -> ConfirmationRecord:
        """Declare this participant ready with their current cart.

        An explicit confirmation starts a new readiness event, so a round
        that failed to submit (or was lost to a claim that was then
        released) can be submitted again.

        Raises:
            StorageError: If publishing fails
        """
        self._consensus_reached = False
        record = await self.confirmations.publish(
            self.session.table_id, self.session.user_id, self.session.cart.items, confirmed=True
        )
        logger.info(f"Participant {self.session.user_id} is ready at table {self.session.table_id}")
        return record

    async def resync(self) -> ConsensusSnapshot:
        """Re-fetch all records for the table, re-evaluate, submit on consensus.

        Calls are serialized per engine.

        Raises:
            StorageError: If the fetch or a submission step fails
            OrderSubmissionError: If the order could not be created
        """
        async with self._lock:
            records = await self.confirmations.list_for_table(self.session.table_id)
            snapshot = await self._apply(records)

            if snapshot.state is ConsensusState.READY and not self._consensus_reached:
                self._consensus_reached = True
                await self._submit(records)

            return self._snapshot

    async def _on_change(self, event: ChangeEvent) -> None:
        if self._state is ConsensusState.SUBMITTING:
            return
        if self.session.is_expired():
            logger.info(f"Session for {self.session.user_id} expired, unsubscribing")
            self.stop()
            return

        logger.debug(
            f"Table {self.session.table_id} changed ({event.change_type.value}), "
            f"resyncing for {self.session.user_id}"
        )
        try:
            await self.resync()
        except StorageError as e:
            # Keep the previous snapshot; the next notification retries the fetch
            record_resync_failure(type(e).__name__)
            logger.warning(f"Resync failed for table {self.session.table_id}: {e}")
        except OrderSubmissionError as e:
            logger.error(f"Group order for table {self.session.table_id} was not placed: {e}")

    async def _apply(self, records: list[ConfirmationRecord]) -> ConsensusSnapshot:
        """Store an evaluation of ``records`` and notify listeners.

        Returns:
            The raw predicate result (before CLOSED is carried over)
        """
        evaluated = evaluate_readiness(records, len(self.session.cart))
        record_consensus_evaluation(evaluated.state.value)

        if evaluated.state is not ConsensusState.READY:
            self._consensus_reached = False

        if self._claimed_elsewhere and not any(
            record.user_id == self.session.user_id for record in records
        ):
            # The winning client cleaned up our record, so the order went through
            self.session.cart.clear()

        stay_closed = self._state is ConsensusState.CLOSED and (
            evaluated.state is ConsensusState.IDLE
            or (evaluated.state is ConsensusState.READY and self._consensus_reached)
        )
        if stay_closed:
            state = ConsensusState.CLOSED
        else:
            state = evaluated.state
            self._claimed_elsewhere = False
            self._order_id = None

        self._records = records
        self._state = state
        self._snapshot = replace(
            evaluated,
            state=state,
            order_id=self._order_id,
            claimed_elsewhere=self._claimed_elsewhere,
        )
        self._notify_listeners()
        return evaluated

    @traced("consensus_submit")
    async def _submit(self, records: list[ConfirmationRecord]) -> None:
        """Place the group order and clear the table's records."""
        table_id = self.session.table_id
        self._set_state(ConsensusState.SUBMITTING)
        self._notify_listeners()

        claimed_round: str | None = None
        try:
            if self.claims is not None:
                round_key = round_key_for(records)
                won = await self.claims.try_claim(table_id, round_key, self.session.user_id)
                if not won:
                    record_claim_lost()
                    self._claimed_elsewhere = True
                    self._close(order_id=None)
                    self._notify_listeners()
                    return
                claimed_round = round_key

            items = [item for record in records for item in record.cart]
            order_id = await self.order_service.submit_group_order(table_id=table_id, items=items)
        except (StorageError, OrderSubmissionError) as e:
            self._last_error = str(e)
            self._consensus_reached = False
            if claimed_round is not None:
                await self._release_claim(claimed_round)
            self._set_state(ConsensusState.READY)
            self._notify_listeners()
            raise

        try:
            for record in records:
                await self.confirmations.delete_for_participant(table_id, record.user_id)
        except StorageError as e:
            logger.error(f"Order {order_id} placed but table {table_id} cleanup failed: {e}")

        self._last_error = None
        self._close(order_id=order_id)
        self._notify_listeners()

    async def _release_claim(self, round_key: str) -> None:
        """Give up a won claim so the same carts can be submitted again."""
        if self.claims is None:
            return
        try:
            await self.claims.release(self.session.table_id, round_key)
        except StorageError as e:
            logger.error(
                f"Could not release claim {round_key} at table {self.session.table_id}; "
                f"the table cannot submit these carts until one of them changes: {e}"
            )

    def _close(self, order_id: str | None) -> None:
        if order_id is not None:
            self.session.cart.clear()
            self.session.record_order(order_id)
            logger.info(f"Table {self.session.table_id} closed with order {order_id}")
        else:
            logger.info(f"Table {self.session.table_id} closed by another participant")
        self._order_id = order_id
        self._set_state(ConsensusState.CLOSED)

    def _set_state(self, state: ConsensusState) -> None:
        self._state = state
        self._snapshot = replace(
            self._snapshot,
            state=state,
            order_id=self._order_id,
            claimed_elsewhere=self._claimed_elsewhere,
            can_confirm=self._snapshot.can_confirm and state is not ConsensusState.SUBMITTING,
        )

    def _notify_listeners(self) -> None:
        """Hand the current snapshot to listeners without waiting for them.

        Delivery runs in a background task outside the resync lock. A slow
        listener only sees the newest snapshot once it catches up.
        """
        if not self._listeners:
            return
        self._unsent = self._snapshot
        if self._pusher is None or self._pusher.done():
            self._pusher = asyncio.get_running_loop().create_task(self._push_snapshots())

    async def _push_snapshots(self) -> None:
        while self._unsent is not None:
            snapshot, self._unsent = self._unsent, None
            for listener in list(self._listeners):
                try:
                    await listener(snapshot)
                except Exception as e:
                    logger.warning(f"Consensus listener failed for {self.session.user_id}: {e}")

    async def flush_listeners(self) -> None:
        """Wait until listeners have received the latest snapshot."""
        if self._pusher is not None:
            await self._pusher
