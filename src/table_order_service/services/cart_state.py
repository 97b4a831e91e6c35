"""A single participant's cart."""

import logging

from table_order_service.models.cart_models import CartItem
from table_order_service.models.menu_models import MenuItem
from table_order_service.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class CartState:
    """Ordered items one participant has added, mirrored to local storage.

    Carts only grow during a session; there is no removal.
    """

    def __init__(self, store: SessionStore, table_id: str, user_id: str) -> None:
        """Restore the cart for a participant from local storage.

        Args:
            store: Participant-local storage
            table_id: Table identifier
            user_id: Participant identifier
        """
        self.store = store
        self.table_id = table_id
        self.user_id = user_id
        self._items: list[CartItem] = store.load_cart(table_id, user_id)

    @property
    def items(self) -> list[CartItem]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def add_item(self, menu_item_id: str, menu: list[MenuItem]) -> CartItem | None:
        """Append a menu item to the cart and persist it locally.

        Args:
            menu_item_id: Identifier of the menu item to add
            menu: The menu currently shown to the participant

        Returns:
            The new CartItem, or None if the id is not on the menu (no-op)
        """
        menu_item = next((item for item in menu if item.id == menu_item_id), None)
        if menu_item is None:
            logger.debug(f"Ignoring add of unknown menu item {menu_item_id}")
            return None

        cart_item = CartItem.from_menu_item(menu_item)
        self._items.append(cart_item)
        self.store.save_cart(self.table_id, self.user_id, self._items)
        return cart_item

    def clear(self) -> None:
        """Empty the cart after the group order was placed."""
        self._items = []
        self.store.clear_cart(self.table_id, self.user_id)
