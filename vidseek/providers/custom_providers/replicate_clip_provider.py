import asyncio
import base64
from typing import Any, Dict, List, Optional, Union

import aiohttp
from loguru import logger
from PIL import Image

from ..base import ImageEmbeddingProvider
from ...exceptions import ConfigurationException, RateLimitError, UpstreamError, ValidationError
from ...utils.error_handler import ErrorHandler, call_with_retries


class ReplicateCLIPProvider(ImageEmbeddingProvider):
    """
    Hosted CLIP embeddings through the Replicate predictions API.

    Predictions are created with one POST and then polled until they finish.
    A 429 on creation raises RateLimitError carrying the server's
    ``retry_after`` hint; creation is retried a bounded number of times,
    waiting that long plus one second between attempts.
    """

    rate_limited = True

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.api_token = config.get("api_token")
        if not self.api_token:
            raise ConfigurationException("Replicate CLIP provider requires IMAGE_EMBEDDING_API_TOKEN")
        self.api_url = config.get("api_url", "https://api.replicate.com/v1/predictions").rstrip("/")
        self.model_version = config["model_version"]
        self.dimensions = config.get("dimensions", 512)
        self.poll_interval = config.get("poll_interval_seconds", 1.0)
        self.max_rate_limit_retries = config.get("max_rate_limit_retries", 5)
        self.default_retry_after = config.get("default_retry_after", 10.0)
        self.timeout = aiohttp.ClientTimeout(total=config.get("timeout", 120))
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Token {self.api_token}",
            "Content-Type": "application/json",
        }

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _create_prediction(self, inputs: str) -> Dict[str, Any]:
        body = {"version": self.model_version, "input": {"inputs": inputs}}
        session = self._get_session()
        async with session.post(self.api_url, headers=self.headers, json=body) as response:
            if response.status == 429:
                error_data = await response.json(content_type=None)
                retry_after = (error_data or {}).get("retry_after") or self.default_retry_after
                logger.warning(f"Replicate rate limited; server asks to wait {retry_after}s")
                raise RateLimitError("Replicate rate limit exceeded", retry_after=float(retry_after))
            if response.status >= 400:
                error = await response.text()
                raise UpstreamError(
                    f"Replicate API error: {response.status} - {error}",
                    details={"status": response.status}
                )
            return await response.json()

    async def _wait_for_prediction(self, prediction: Dict[str, Any]) -> Dict[str, Any]:
        result = prediction
        session = self._get_session()
        while result.get("status") not in ("succeeded", "failed", "canceled"):
            await asyncio.sleep(self.poll_interval)
            async with session.get(f"{self.api_url}/{prediction['id']}", headers=self.headers) as response:
                if response.status >= 400:
                    error = await response.text()
                    raise UpstreamError(f"Replicate poll error: {response.status} - {error}")
                result = await response.json()

        if result.get("status") != "succeeded":
            raise UpstreamError(f"CLIP embedding failed: {result.get('error')}")
        return result

    def _extract_embedding(self, output: Any) -> List[float]:
        # Output is either [{"embedding": [...]}], a bare list of numbers, or {"embedding": [...]}
        if isinstance(output, list) and output and isinstance(output[0], dict):
            embedding = output[0].get("embedding")
        elif isinstance(output, dict):
            embedding = output.get("embedding")
        else:
            embedding = output

        if not isinstance(embedding, list) or not embedding:
            raise UpstreamError(f"Unexpected CLIP output format: {type(output).__name__}")
        if len(embedding) != self.dimensions:
            raise UpstreamError(
                f"CLIP returned {len(embedding)} dimensions, expected {self.dimensions}",
                error_code="DIMENSION_MISMATCH"
            )
        return [float(x) for x in embedding]

    async def _embed(self, inputs: str) -> List[float]:
        try:
            prediction = await call_with_retries(
                self._create_prediction, inputs,
                retries=self.max_rate_limit_retries + 1,
                exceptions=(RateLimitError,),
            )
            result = await self._wait_for_prediction(prediction)
        except aiohttp.ClientError as e:
            raise ErrorHandler.handle_provider_error(e, "replicate") from e
        return self._extract_embedding(result.get("output"))

    async def image_embedding(self, image: Union[bytes, str, Image.Image], **kwargs) -> List[float]:
        """Embed an image given as JPEG bytes or a public URL."""
        if isinstance(image, bytes):
            inputs = "data:image/jpeg;base64," + base64.b64encode(image).decode("utf-8")
        elif isinstance(image, str):
            inputs = image
        else:
            raise ValidationError("Replicate CLIP provider accepts JPEG bytes or an image URL")
        return await self._embed(inputs)

    async def text_embedding(self, text: str, **kwargs) -> List[float]:
        return await self._embed(text)

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
