from typing import Any, Dict, List
from loguru import logger
from openai import OpenAIError
from ..base import LLMProvider
from ...exceptions import UpstreamError
from ...utils.error_handler import convert_exceptions
from .client import OpenAIClientMixin


class OpenAILLMProvider(OpenAIClientMixin, LLMProvider):
    """
    Chat completion provider for any OpenAI-compatible endpoint.

    Point ``base_url`` at Groq (https://api.groq.com/openai/v1) to run the
    default llama-3.3-70b-versatile analysis model.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.client = self._initialize_client()

    @convert_exceptions({OpenAIError: UpstreamError})
    async def chat_completion(self, messages: List[Dict], **kwargs) -> Dict[str, Any]:
        """Generate chat completion."""
        model = kwargs.pop("model", self.config.get("model_name"))
        temperature = kwargs.pop("temperature", self.config.get("temperature", 0.3))
        max_tokens = kwargs.pop("max_tokens", self.config.get("max_tokens", 1500))

        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )
        if not response.choices:
            raise UpstreamError(f"Chat completion from {model} returned no choices")

        logger.debug(f"Chat completion from {model}: finish_reason={response.choices[0].finish_reason}")
        return {
            "content": response.choices[0].message.content,
            "usage": response.usage.model_dump() if response.usage else None,
            "model": response.model,
            "finish_reason": response.choices[0].finish_reason
        }
