"""Order, order item and feedback models.

Orders are created once per agreed group cart. Each cart entry becomes an
order item row that the kitchen moves through the status lifecycle.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OrderStatusEnum(str, Enum):
    """Enumeration of order and order item status values, in lifecycle order."""

    PENDING = "pending"
    COOKING = "cooking"
    READY = "ready"
    SERVED = "served"
    COMPLETED = "completed"


ORDER_STATUS_SEQUENCE: list[OrderStatusEnum] = list(OrderStatusEnum)


class Order(BaseModel):
    """A submitted group order for one table.

    Stored with id as partition key.
    """

    id: str = Field(..., description="Unique order identifier")
    table_id: str = Field(..., description="Table the order was placed from")
    status: OrderStatusEnum = Field(default=OrderStatusEnum.PENDING, description="Order status")
    created_at: datetime = Field(..., description="Order creation timestamp")
    notes: str = Field(default="", description="Free-form notes for the kitchen")

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        return {
            "id": self.id,
            "table_id": self.table_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "notes": self.notes,
        }

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "Order":
        """Create Order from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Order: Parsed model instance
        """
        return cls(
            id=item["id"],
            table_id=item["table_id"],
            status=OrderStatusEnum(item["status"]),
            created_at=datetime.fromisoformat(item["created_at"]),
            notes=item.get("notes", ""),
        )


class OrderItem(BaseModel):
    """Tracking row for one item of an order.

    Stored with (order_id, id) as composite key.
    """

    id: str = Field(..., description="Unique order item identifier")
    order_id: str = Field(..., description="Order this item belongs to")
    menu_item_id: str = Field(..., description="Menu item that was ordered")
    menu_item_name: str | None = Field(None, description="Menu item name at order time")
    quantity: int = Field(default=1, description="Quantity ordered", gt=0)
    status: OrderStatusEnum = Field(default=OrderStatusEnum.PENDING, description="Item status")

    @property
    def progress_percentage(self) -> float:
        """Calculate progress through the status lifecycle.

        Returns:
            float: Progress percentage (0.0 to 100.0)
        """
        position = ORDER_STATUS_SEQUENCE.index(self.status) + 1
        return (position / len(ORDER_STATUS_SEQUENCE)) * 100.0

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "id": self.id,
            "order_id": self.order_id,
            "menu_item_id": self.menu_item_id,
            "quantity": self.quantity,
            "status": self.status.value,
        }

        if self.menu_item_name is not None:
            item["menu_item_name"] = self.menu_item_name

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "OrderItem":
        """Create OrderItem from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            OrderItem: Parsed model instance
        """
        return cls(
            id=item["id"],
            order_id=item["order_id"],
            menu_item_id=item["menu_item_id"],
            menu_item_name=item.get("menu_item_name"),
            quantity=int(item.get("quantity", 1)),
            status=OrderStatusEnum(item["status"]),
        )


class Feedback(BaseModel):
    """Diner feedback after a meal."""

    id: str = Field(..., description="Unique feedback identifier")
    rating: int = Field(..., description="Star rating", ge=1, le=5)
    feedback: str = Field(default="", description="Free-text comment")
    created_at: datetime = Field(..., description="Submission timestamp")

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format."""
        return {
            "id": self.id,
            "rating": self.rating,
            "feedback": self.feedback,
            "created_at": self.created_at.isoformat(),
        }
