import asyncio
import io
from typing import Any, Dict, List, Optional, Union

import numpy as np
import torch
from loguru import logger
from PIL import Image
from transformers import CLIPModel, CLIPProcessor

from ..base import ImageEmbeddingProvider
from ...exceptions import ConfigurationException, UpstreamError, ValidationError
from ...utils.error_handler import convert_exceptions


class CLIPEmbeddingProvider(ImageEmbeddingProvider):
    """Local CLIP provider embedding frames and query text into one space."""

    rate_limited = False

    def __init__(self, config: Dict[str, Any]):
        """
        Args:
            config: dict with keys
                - model_name: CLIP model name (default: "openai/clip-vit-base-patch32")
                - device: "auto", "cpu" or "cuda" (default: "auto")
                - max_image_size: longest image side before preprocessing (default: 224)
                - dimensions: expected embedding size (default: 512)
        """
        self.config = config
        self.model_name = config.get("model_name", "openai/clip-vit-base-patch32")
        self.max_image_size = config.get("max_image_size", 224)
        self.dimensions = config.get("dimensions", 512)
        self.device = self._get_device()

        self.model: Optional[CLIPModel] = None
        self.processor: Optional[CLIPProcessor] = None
        self._initialize_model()

    def _get_device(self) -> str:
        device_config = self.config.get("device", "auto")
        if device_config == "auto":
            return "cuda" if torch.cuda.is_available() else "cpu"
        return device_config

    def _initialize_model(self):
        try:
            logger.info(f"Initializing CLIP model {self.model_name} on {self.device}")
            self.model = CLIPModel.from_pretrained(self.model_name).to(self.device)
            self.model.eval()
            self.processor = CLIPProcessor.from_pretrained(self.model_name)
        except (OSError, ValueError) as e:
            raise ConfigurationException(f"Failed to initialize CLIP model {self.model_name}: {e}")

    def _load_image(self, image: Union[bytes, str, Image.Image]) -> Image.Image:
        if isinstance(image, bytes):
            img = Image.open(io.BytesIO(image))
        elif isinstance(image, str):
            img = Image.open(image)
        else:
            img = image
        img = img.convert("RGB")
        if max(img.size) > self.max_image_size:
            img.thumbnail((self.max_image_size, self.max_image_size), Image.Resampling.LANCZOS)
        return img

    def _finish(self, features: torch.Tensor) -> List[float]:
        # CLIP vectors are always L2 normalised
        features = features / features.norm(dim=-1, keepdim=True)
        vector = features.cpu().numpy().astype(np.float32)[0].tolist()
        if len(vector) != self.dimensions:
            raise ValidationError(
                f"CLIP model {self.model_name} produced {len(vector)} dimensions, expected {self.dimensions}"
            )
        return vector

    def _image_embedding_sync(self, image: Union[bytes, str, Image.Image]) -> List[float]:
        img = self._load_image(image)
        inputs = self.processor(images=[img], return_tensors="pt")
        inputs = {k: v.to(self.device) for k, v in inputs.items()}
        with torch.no_grad():
            features = self.model.get_image_features(**inputs)
        return self._finish(features)

    def _text_embedding_sync(self, text: str) -> List[float]:
        inputs = self.processor(text=[text], return_tensors="pt", padding=True, truncation=True)
        inputs = {k: v.to(self.device) for k, v in inputs.items()}
        with torch.no_grad():
            features = self.model.get_text_features(**inputs)
        return self._finish(features)

    @convert_exceptions({OSError: UpstreamError, RuntimeError: UpstreamError})
    async def image_embedding(self, image: Union[bytes, str, Image.Image], **kwargs) -> List[float]:
        """Embed one image; inference runs in a worker thread."""
        return await asyncio.to_thread(self._image_embedding_sync, image)

    @convert_exceptions({RuntimeError: UpstreamError})
    async def text_embedding(self, text: str, **kwargs) -> List[float]:
        """Embed query text into the image space."""
        return await asyncio.to_thread(self._text_embedding_sync, text)

    async def close(self):
        self.model = None
        self.processor = None
        if torch.cuda.is_available():
            torch.cuda.empty_cache()
        logger.info("CLIP embedding provider closed")
