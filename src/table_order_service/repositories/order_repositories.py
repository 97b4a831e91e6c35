"""Repositories for menu, orders, order items, feedback and reservations."""

import logging
from typing import Any

from table_order_service.models.menu_models import MenuItem
from table_order_service.models.order_models import (
    Feedback,
    Order,
    OrderItem,
    OrderStatusEnum,
)
from table_order_service.storage.gateway import (
    FEEDBACK_TABLE,
    MENU_ITEMS_TABLE,
    ORDER_ITEMS_TABLE,
    ORDERS_TABLE,
    RESERVATIONS_TABLE,
    ChangeCallback,
    StorageGateway,
    Subscription,
)

logger = logging.getLogger(__name__)


class MenuRepository:
    """Read access to the menu."""

    def __init__(self, gateway: StorageGateway) -> None:
        self.gateway = gateway

    async def list_items(self) -> list[MenuItem]:
        """List all menu items ordered by category, then name.

        Raises:
            StorageError: If the read fails
        """
        rows = await self.gateway.select(MENU_ITEMS_TABLE, {})
        items = [MenuItem.from_dynamodb_item(row) for row in rows]
        return sorted(items, key=lambda item: (item.category or "", item.name))


class OrderRepository:
    """Repository for orders and their per-item tracking rows."""

    def __init__(self, gateway: StorageGateway) -> None:
        """Initialize repository.

        Args:
            gateway: Storage gateway holding the orders and order_items tables
        """
        self.gateway = gateway

    async def save_order(self, order: Order) -> Order:
        stored = await self.gateway.upsert(ORDERS_TABLE, {"id": order.id}, order.to_dynamodb_item())
        return Order.from_dynamodb_item(stored)

    async def get_order(self, order_id: str) -> Order | None:
        items = await self.gateway.select(ORDERS_TABLE, {"id": order_id})
        if not items:
            return None
        return Order.from_dynamodb_item(items[0])

    async def save_order_items(self, items: list[OrderItem]) -> list[OrderItem]:
        stored: list[OrderItem] = []
        for item in items:
            record = await self.gateway.upsert(
                ORDER_ITEMS_TABLE,
                {"order_id": item.order_id, "id": item.id},
                item.to_dynamodb_item(),
            )
            stored.append(OrderItem.from_dynamodb_item(record))
        return stored

    async def list_order_items(self, order_id: str) -> list[OrderItem]:
        items = await self.gateway.select(ORDER_ITEMS_TABLE, {"order_id": order_id})
        return [OrderItem.from_dynamodb_item(item) for item in items]

    async def update_item_status(
        self, order_id: str, item_id: str, status: OrderStatusEnum
    ) -> OrderItem | None:
        """Move one order item to a new status.

        Returns:
            OrderItem if found, None otherwise
        """
        existing = await self.gateway.select(ORDER_ITEMS_TABLE, {"order_id": order_id, "id": item_id})
        if not existing:
            return None

        record: dict[str, Any] = {**existing[0], "status": status.value}
        stored = await self.gateway.upsert(
            ORDER_ITEMS_TABLE, {"order_id": order_id, "id": item_id}, record
        )
        return OrderItem.from_dynamodb_item(stored)

    def subscribe_order_items(self, order_id: str, on_change: ChangeCallback) -> Subscription:
        return self.gateway.subscribe(ORDER_ITEMS_TABLE, {"order_id": order_id}, on_change)


class FeedbackRepository:
    """Repository for diner feedback."""

    def __init__(self, gateway: StorageGateway) -> None:
        self.gateway = gateway

    async def save_feedback(self, feedback: Feedback) -> Feedback:
        await self.gateway.upsert(FEEDBACK_TABLE, {"id": feedback.id}, feedback.to_dynamodb_item())
        logger.info(f"Feedback {feedback.id} saved with rating {feedback.rating}")
        return feedback


class ReservationRepository:
    """Read access to reservations for entry validation."""

    def __init__(self, gateway: StorageGateway) -> None:
        self.gateway = gateway

    async def get_customer_name(self, reservation_id: str) -> str | None:
        """Look up the name a reservation was booked under.

        Returns:
            The customer name if the reservation exists, None otherwise
        """
        items = await self.gateway.select(RESERVATIONS_TABLE, {"id": reservation_id})
        if not items:
            return None
        return items[0].get("customer_name")
