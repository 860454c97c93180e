from typing import Any, Dict
from openai import AsyncOpenAI
from ...exceptions import ConfigurationException


class OpenAIClientMixin:
    """Builds the AsyncOpenAI client shared by the OpenAI-compatible providers."""

    config: Dict[str, Any]

    def _initialize_client(self) -> AsyncOpenAI:
        api_key = self.config.get("api_key")
        if not api_key:
            raise ConfigurationException(f"{type(self).__name__} requires an API key")

        # Retries are owned by callers, not the SDK
        return AsyncOpenAI(
            api_key=api_key,
            base_url=self.config.get("base_url"),
            timeout=self.config.get("timeout", 200),
            max_retries=self.config.get("max_retries", 0),
        )

    async def close(self):
        if getattr(self, "client", None) is not None:
            await self.client.close()
