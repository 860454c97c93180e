from abc import ABC, abstractmethod
from typing import Dict, Any, List


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def chat_completion(self, messages: List[Dict], **kwargs) -> Dict[str, Any]:
        """
        Generate a chat completion.

        Returns:
            Dict with at least a ``content`` key holding the response text
        """
        pass

    async def close(self):
        """Close the provider and cleanup resources."""
        pass
