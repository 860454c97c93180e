import base64
from typing import Any, Dict
from openai import OpenAIError
from ..base import VisionProvider
from ...exceptions import UpstreamError
from ...utils.error_handler import convert_exceptions
from .client import OpenAIClientMixin


class OpenAIVisionProvider(OpenAIClientMixin, VisionProvider):
    """OpenAI vision provider (gpt-4o-mini, low detail by default)."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.client = self._initialize_client()

    @convert_exceptions({OpenAIError: UpstreamError})
    async def describe_image(self, image_data: bytes, prompt: str, **kwargs) -> str:
        """Ask the vision model about a JPEG image."""
        image_base64 = base64.b64encode(image_data).decode("utf-8")
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:image/jpeg;base64,{image_base64}",
                            "detail": kwargs.get("detail", self.config.get("detail", "low"))
                        }
                    }
                ]
            }
        ]

        response = await self.client.chat.completions.create(
            model=self.config.get("model", "gpt-4o-mini"),
            messages=messages,
            max_tokens=kwargs.get("max_tokens", self.config.get("max_tokens", 300)),
            temperature=kwargs.get("temperature", 0.0)
        )
        if not response.choices:
            raise UpstreamError("Vision model returned no choices")
        return response.choices[0].message.content or ""
