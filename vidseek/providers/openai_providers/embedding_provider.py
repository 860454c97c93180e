from typing import Any, Dict, List
from loguru import logger
from openai import OpenAIError
from ..base import EmbeddingProvider
from ...exceptions import UpstreamError
from ...utils.error_handler import convert_exceptions
from .client import OpenAIClientMixin


class OpenAIEmbeddingProvider(OpenAIClientMixin, EmbeddingProvider):
    """OpenAI text embedding provider (text-embedding-ada-002 by default)."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.model = config.get("model", "text-embedding-ada-002")
        self.dimensions = config.get("dimensions", 1536)
        self.client = self._initialize_client()

    def _check_dimensions(self, vector: List[float]) -> List[float]:
        if len(vector) != self.dimensions:
            raise UpstreamError(
                f"Embedding model {self.model} returned {len(vector)} dimensions, expected {self.dimensions}",
                error_code="DIMENSION_MISMATCH"
            )
        return vector

    @convert_exceptions({OpenAIError: UpstreamError})
    async def embedding(self, text: str, **kwargs) -> List[float]:
        """Generate embedding using OpenAI."""
        response = await self.client.embeddings.create(model=self.model, input=text, **kwargs)
        logger.debug(f"Embedded {len(text)} chars with {self.model}")
        return self._check_dimensions(response.data[0].embedding)
