"""Service for serving the menu in a diner's language."""

import asyncio
import logging

from table_order_service.models.menu_models import MenuItem
from table_order_service.repositories.order_repositories import MenuRepository
from table_order_service.services.ai_client import AIClient

logger = logging.getLogger(__name__)


class MenuService:
    """Reads the menu and fills in translated fields on request."""

    def __init__(self, menu_repository: MenuRepository, ai_client: AIClient) -> None:
        self.menu_repository = menu_repository
        self.ai_client = ai_client

    async def get_menu(self, language: str = "en", provider: str | None = None) -> list[MenuItem]:
        """List the menu, translating names and descriptions for non-English diners.

        Args:
            language: Language code the diner selected
            provider: AI provider to translate with

        Returns:
            Menu items ordered by category; translation failures keep the original text

        Raises:
            StorageError: If the menu cannot be read
        """
        items = await self.menu_repository.list_items()
        if language == "en":
            return items

        translated = await asyncio.gather(
            *(self._translate_item(item, language, provider) for item in items)
        )
        logger.info(f"Translated {len(translated)} menu item(s) to {language}")
        return list(translated)

    async def _translate_item(self, item: MenuItem, language: str, provider: str | None) -> MenuItem:
        name = await self.ai_client.translate(item.name, language, provider)
        description = None
        if item.description:
            description = await self.ai_client.translate(item.description, language, provider)
        return item.model_copy(update={"translated_name": name, "translated_description": description})
