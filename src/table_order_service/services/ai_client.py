"""Client for the chat-completion APIs behind translation and the assistant."""

import logging
import os
from dataclasses import dataclass

import httpx

from table_order_service.errors import AIServiceError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a helpful restaurant assistant."
UNAVAILABLE_MESSAGE = "Sorry, the AI assistant is currently unavailable."
WELCOME_MESSAGE = (
    "Welcome! I'm here to help you discover our delicious menu. Feel free to ask me "
    "about our specialties, recommendations, or any dietary preferences you have."
)

RECOMMENDATION_PROMPT = """\
You are an intelligent restaurant assistant. Based on the following context, provide \
personalized recommendations to enhance the customer's dining experience.

Context: {context}
Customer Language: {language}

Please provide:
1. Personalized dish recommendations based on time of day, weather, and menu popularity
2. Complementary item suggestions
3. Special occasion recommendations if applicable
4. Seasonal or local event-based suggestions

Respond in {language} and keep it friendly, helpful, and concise.
"""

CHAT_PROMPT = """\
You are an intelligent, friendly, and helpful restaurant assistant chatbot.
Your personality is witty and charming.
You are speaking to a customer who is looking at a menu.
Your goal is to answer their questions about the menu items, help them choose, and \
provide a delightful experience.
NEVER suggest items not on the menu.
Keep your responses concise and conversational.

MENU CONTEXT:
{context}

Respond in {language}.
"""


@dataclass(frozen=True)
class AIProvider:
    """Chat-completion endpoint and model of one provider."""

    name: str
    url: str
    model: str


PROVIDERS: dict[str, AIProvider] = {
    "openai": AIProvider("openai", "https://api.openai.com/v1/chat/completions", "gpt-3.5-turbo"),
    "deepseek": AIProvider("deepseek", "https://api.deepseek.com/v1/chat/completions", "deepseek-chat"),
}
DEFAULT_PROVIDER = "openai"


class AIClient:
    """HTTP client for OpenAI-compatible chat completion providers.

    Translation and recommendations degrade to fixed fallbacks on any
    failure. Chat replies with an "unavailable" message when no key is
    configured and raises ``AIServiceError`` when the provider fails.
    """

    def __init__(
        self,
        api_keys: dict[str, str] | None = None,
        max_tokens: int = 300,
        temperature: float = 0.7,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the AI client.

        Args:
            api_keys: API key per provider name (defaults to OPENAI_API_KEY / DEEPSEEK_API_KEY)
            max_tokens: Completion length limit
            temperature: Sampling temperature
            timeout: Request timeout in seconds
        """
        if api_keys is None:
            api_keys = {
                "openai": os.getenv("OPENAI_API_KEY", ""),
                "deepseek": os.getenv("DEEPSEEK_API_KEY", ""),
            }
        self.api_keys = api_keys
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout

    def resolve_provider(self, provider: str | None) -> AIProvider:
        """Return the named provider, falling back to OpenAI for unknown names."""
        return PROVIDERS.get((provider or "").lower(), PROVIDERS[DEFAULT_PROVIDER])

    def has_key(self, provider: str | None) -> bool:
        return bool(self.api_keys.get(self.resolve_provider(provider).name))

    async def complete(self, prompt: str, provider: str | None = None) -> str:
        """Send one prompt and return the trimmed completion text.

        Raises:
            AIServiceError: If no key is configured or the request fails
        """
        resolved = self.resolve_provider(provider)
        api_key = self.api_keys.get(resolved.name)
        if not api_key:
            raise AIServiceError(f"No API key configured for {resolved.name}")

        payload = {
            "model": resolved.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        headers = {"Authorization": f"Bearer {api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(resolved.url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            logger.error(f"{resolved.name} request failed: {e}")
            raise AIServiceError(f"{resolved.name} request failed") from e

        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        return content.strip()

    async def translate(self, text: str, language: str, provider: str | None = None) -> str:
        """Translate text, returning the original text on any failure."""
        if not text or language == "en":
            return text

        prompt = (
            f"Translate the following text to {language}. "
            f'Only return the translated text, nothing else: "{text}"'
        )
        try:
            return await self.complete(prompt, provider)
        except AIServiceError as e:
            logger.warning(f"Translation to {language} failed, using original text: {e}")
            return text

    async def recommend(self, context: str, language: str, provider: str | None = None) -> str:
        try:
            recommendations = await self.complete(
                RECOMMENDATION_PROMPT.format(context=context, language=language), provider
            )
        except AIServiceError as e:
            logger.warning(f"Recommendations failed, using welcome message: {e}")
            return WELCOME_MESSAGE
        return recommendations or WELCOME_MESSAGE

    async def chat(self, context: str, language: str, provider: str | None = None) -> str:
        """Answer a diner's question about the menu.

        Raises:
            AIServiceError: If the provider request fails
        """
        if not self.has_key(provider):
            return UNAVAILABLE_MESSAGE
        return await self.complete(CHAT_PROMPT.format(context=context, language=language), provider)
