from abc import ABC, abstractmethod
from typing import List, Union
from PIL import Image


class ImageEmbeddingProvider(ABC):
    """
    Abstract base class for joint image-text embedding providers.

    Images and text are embedded into the same space so a text query can be
    compared directly against frame image vectors.
    """

    dimensions: int
    # Providers backed by a throttled hosted API set this so callers pace requests
    rate_limited: bool = False

    @abstractmethod
    async def image_embedding(self, image: Union[bytes, str, Image.Image], **kwargs) -> List[float]:
        """
        Generate embedding for a single image.

        Args:
            image: Raw encoded bytes, a file path, or a PIL Image
            **kwargs: Additional provider-specific parameters

        Returns:
            Image embedding as a list of floats
        """
        pass

    @abstractmethod
    async def text_embedding(self, text: str, **kwargs) -> List[float]:
        """
        Embed text into the same space as images.

        Args:
            text: Query text

        Returns:
            Text embedding as a list of floats
        """
        pass

    @abstractmethod
    async def close(self):
        """Close the provider and cleanup resources."""
        pass
