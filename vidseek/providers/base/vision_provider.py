from abc import ABC, abstractmethod


class VisionProvider(ABC):
    """Abstract base class for vision providers."""

    @abstractmethod
    async def describe_image(self, image_data: bytes, prompt: str, **kwargs) -> str:
        """Answer ``prompt`` about the image and return the raw response text."""
        pass

    @abstractmethod
    async def close(self):
        """Close the provider and cleanup resources."""
        pass
