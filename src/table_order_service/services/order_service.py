"""Service for turning an agreed group cart into a tracked order."""

import logging
import time
import uuid
from datetime import UTC, datetime

from table_order_service.errors import OrderSubmissionError, StorageError
from table_order_service.models.cart_models import CartItem
from table_order_service.models.order_models import Order, OrderItem, OrderStatusEnum
from table_order_service.observability import traced
from table_order_service.observability.metrics import (
    record_group_order,
    record_order_submission_duration,
)
from table_order_service.repositories.order_repositories import OrderRepository
from table_order_service.storage.gateway import ChangeCallback, Subscription

logger = logging.getLogger(__name__)


class OrderService:
    """Service for order creation and kitchen status tracking.

    Order creation is never retried here; failures propagate to whoever
    triggered the submission.
    """

    def __init__(self, order_repository: OrderRepository) -> None:
        """Initialize the OrderService.

        Args:
            order_repository: Repository for orders and order items
        """
        self.order_repository = order_repository

    @traced("submit_group_order")
    async def submit_group_order(self, table_id: str, items: list[CartItem]) -> str:
        """Create one order and one pending tracking row per cart item.

        Args:
            table_id: Table the order is placed from
            items: Concatenated cart items of every confirmed participant

        Returns:
            The new order's identifier

        Raises:
            OrderSubmissionError: If the order or any tracking row could not be stored
        """
        started = time.perf_counter()
        order = Order(
            id=str(uuid.uuid4()),
            table_id=table_id,
            status=OrderStatusEnum.PENDING,
            created_at=datetime.now(UTC),
            notes="",
        )

        try:
            await self.order_repository.save_order(order)
            await self.order_repository.save_order_items(
                [
                    OrderItem(
                        id=str(uuid.uuid4()),
                        order_id=order.id,
                        menu_item_id=item.id,
                        menu_item_name=item.name,
                        quantity=1,
                        status=OrderStatusEnum.PENDING,
                    )
                    for item in items
                ]
            )
        except StorageError as e:
            logger.error(f"Failed to submit order for table {table_id}: {e}")
            raise OrderSubmissionError(f"Failed to submit order for table {table_id}") from e

        record_group_order(len(items))
        record_order_submission_duration(time.perf_counter() - started)
        logger.info(f"Submitted order {order.id} for table {table_id} with {len(items)} item(s)")
        return order.id

    async def get_order_status(self, order_id: str) -> list[OrderItem]:
        """Get the tracking rows for an order, empty if none exist."""
        return await self.order_repository.list_order_items(order_id)

    async def update_item_status(
        self, order_id: str, item_id: str, status: OrderStatusEnum
    ) -> OrderItem | None:
        """Move an order item along the kitchen lifecycle.

        Returns:
            The updated OrderItem, or None if it does not exist
        """
        updated = await self.order_repository.update_item_status(order_id, item_id, status)
        if updated is not None:
            logger.info(f"Order {order_id} item {item_id} is now {status.value}")
        return updated

    def subscribe_order_items(self, order_id: str, on_change: ChangeCallback) -> Subscription:
        return self.order_repository.subscribe_order_items(order_id, on_change)
