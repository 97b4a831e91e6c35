"""Cart and confirmation record models.

A confirmation record is the shared, per-(table, participant) row that carries
one diner's cart snapshot and readiness flag. Stored with (table_id, user_id)
as composite key.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from table_order_service.models.menu_models import MenuItem


class CartItem(BaseModel):
    """One addition of a menu item to a participant's cart.

    Display fields are copied from the menu at add time. ``cart_id`` makes
    repeated additions of the same menu item distinguishable.
    """

    model_config = ConfigDict(frozen=True)

    cart_id: str = Field(..., description="Unique identifier of this addition")
    id: str = Field(..., description="Menu item identifier")
    name: str = Field(..., description="Menu item name at add time")
    price: Decimal = Field(..., description="Menu item price at add time", ge=0)
    category: str | None = Field(None, description="Menu category")
    translated_name: str | None = Field(None, description="Name in the diner's language")

    @classmethod
    def from_menu_item(cls, item: MenuItem) -> "CartItem":
        """Create a cart entry for a menu item with a fresh instance id."""
        return cls(
            cart_id=str(uuid.uuid4()),
            id=item.id,
            name=item.name,
            price=item.price,
            category=item.category,
            translated_name=item.translated_name,
        )

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "cart_id": self.cart_id,
            "id": self.id,
            "name": self.name,
            "price": self.price,
        }

        if self.category is not None:
            item["category"] = self.category

        if self.translated_name is not None:
            item["translated_name"] = self.translated_name

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "CartItem":
        """Create CartItem from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            CartItem: Parsed model instance
        """
        return cls(
            cart_id=item["cart_id"],
            id=item["id"],
            name=item["name"],
            price=Decimal(str(item["price"])),
            category=item.get("category"),
            translated_name=item.get("translated_name"),
        )


class ConfirmationRecord(BaseModel):
    """A participant's published cart and readiness flag for one table."""

    table_id: str = Field(..., description="Table identifier from the QR payload")
    user_id: str = Field(..., description="Participant identifier")
    cart: list[CartItem] = Field(default_factory=list, description="Cart as of last publish")
    confirmed: bool = Field(default=False, description="Whether the participant is ready")
    updated_at: datetime = Field(..., description="Timestamp of the last write")

    @property
    def has_items(self) -> bool:
        return len(self.cart) > 0

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        return {
            "table_id": self.table_id,
            "user_id": self.user_id,
            "cart": [item.to_dynamodb_item() for item in self.cart],
            "confirmed": self.confirmed,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "ConfirmationRecord":
        """Create ConfirmationRecord from DynamoDB item.

        Records written by older clients may carry a null cart; it is read
        as an empty cart.

        Args:
            item: DynamoDB item dictionary

        Returns:
            ConfirmationRecord: Parsed model instance
        """
        return cls(
            table_id=item["table_id"],
            user_id=item["user_id"],
            cart=[CartItem.from_dynamodb_item(entry) for entry in item.get("cart") or []],
            confirmed=bool(item.get("confirmed", False)),
            updated_at=datetime.fromisoformat(item["updated_at"]),
        )
