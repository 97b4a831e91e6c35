"""Shared pytest fixtures and configuration for all tests."""

import os

# main.py skips building the real application when imported under test
os.environ["ENVIRONMENT"] = "test"

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402

from table_order_service.models.menu_models import MenuItem  # noqa: E402
from table_order_service.storage.memory_gateway import InMemoryGateway  # noqa: E402


@pytest.fixture
def mock_table_id() -> str:
    """Fixture providing a standard test table ID."""
    return "table_12"


@pytest.fixture
def mock_menu_items() -> list[dict]:
    """Fixture providing sample menu rows as stored in the menu_items table."""
    return [
        {
            "id": "item_1",
            "name": "Cheeseburger",
            "description": "Classic beef cheeseburger",
            "price": Decimal("12.99"),
            "category": "Mains",
            "allergens": ["dairy", "gluten"],
            "dietary": [],
        },
        {
            "id": "item_2",
            "name": "Caesar Salad",
            "description": "Fresh romaine with caesar dressing",
            "price": Decimal("9.99"),
            "category": "Starters",
            "allergens": ["egg"],
            "dietary": ["vegetarian"],
        },
        {
            "id": "item_3",
            "name": "Lemonade",
            "description": None,
            "price": Decimal("3.50"),
            "category": "Drinks",
        },
    ]


@pytest.fixture
def menu(mock_menu_items: list[dict]) -> list[MenuItem]:
    """Fixture providing the sample menu as models."""
    return [MenuItem.from_dynamodb_item(row) for row in mock_menu_items]


@pytest.fixture
def gateway() -> InMemoryGateway:
    """Fixture providing an empty in-memory storage gateway."""
    return InMemoryGateway()
