"""Menu data models.

Menu items are read from the ``menu_items`` table. Translated fields are
filled in per request for diners who picked a language other than English.
"""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class MenuItem(BaseModel):
    """Menu item model."""

    id: str = Field(..., description="Unique identifier for the menu item")
    name: str = Field(..., description="Item name")
    description: str | None = Field(None, description="Item description")
    price: Decimal = Field(..., description="Item price", ge=0)
    category: str | None = Field(None, description="Menu category")
    allergens: list[str] = Field(default_factory=list, description="Declared allergens")
    dietary: list[str] = Field(default_factory=list, description="Dietary tags")
    image_urls: list[str] = Field(default_factory=list, description="Item image URLs")
    translated_name: str | None = Field(None, description="Name in the requested language")
    translated_description: str | None = Field(
        None, description="Description in the requested language"
    )

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "MenuItem":
        """Create MenuItem from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            MenuItem: Parsed model instance
        """
        return cls(
            id=item["id"],
            name=item["name"],
            description=item.get("description"),
            price=Decimal(str(item["price"])),
            category=item.get("category"),
            allergens=list(item.get("allergens") or []),
            dietary=list(item.get("dietary") or []),
            image_urls=list(item.get("image_urls") or []),
        )
