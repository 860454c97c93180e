"""Provider system for vidseek."""

from .base import (
    LLMProvider,
    EmbeddingProvider,
    ImageEmbeddingProvider,
    VisionProvider,
    TranscriptionProvider,
    StorageProvider,
    FrameSampler,
)
from .factory import ProviderFactory, provider_factory

__all__ = [
    'LLMProvider',
    'EmbeddingProvider',
    'ImageEmbeddingProvider',
    'VisionProvider',
    'TranscriptionProvider',
    'StorageProvider',
    'FrameSampler',
    'ProviderFactory',
    'provider_factory',
]
