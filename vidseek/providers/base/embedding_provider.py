from abc import ABC, abstractmethod
from typing import List


class EmbeddingProvider(ABC):
    """Abstract base class for text-space embedding providers."""

    dimensions: int

    @abstractmethod
    async def embedding(self, text: str, **kwargs) -> List[float]:
        """Generate text embedding."""
        pass

    async def close(self):
        """Close the provider and cleanup resources."""
        pass
