from .llm_provider import OpenAILLMProvider
from .embedding_provider import OpenAIEmbeddingProvider
from .vision_provider import OpenAIVisionProvider
from .transcription_provider import OpenAITranscriptionProvider

__all__ = [
    'OpenAILLMProvider',
    'OpenAIEmbeddingProvider',
    'OpenAIVisionProvider',
    'OpenAITranscriptionProvider',
]
