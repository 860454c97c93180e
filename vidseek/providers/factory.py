import importlib
from typing import Any, Dict, Optional, Type, Union

from loguru import logger

from .base import (
    LLMProvider,
    EmbeddingProvider,
    ImageEmbeddingProvider,
    VisionProvider,
    TranscriptionProvider,
    StorageProvider,
    FrameSampler,
)
from .openai_providers import (
    OpenAILLMProvider,
    OpenAIEmbeddingProvider,
    OpenAIVisionProvider,
    OpenAITranscriptionProvider,
)
from .custom_providers import LocalStorageProvider, OpenCVFrameSampler
from ..config.settings import VidSeekConfig
from ..exceptions import ConfigurationException

# Registry entries are classes or "module:Class" paths imported on first use
ProviderEntry = Union[Type[Any], str]


class ProviderFactory:
    """Factory class for creating provider instances."""

    _llm_providers: Dict[str, ProviderEntry] = {
        'openai': OpenAILLMProvider,
    }

    _embedding_providers: Dict[str, ProviderEntry] = {
        'openai': OpenAIEmbeddingProvider,
    }

    _image_embedding_providers: Dict[str, ProviderEntry] = {
        # torch and transformers load only when CLIP is actually selected
        'clip': 'vidseek.providers.custom_providers.clip_embedding_provider:CLIPEmbeddingProvider',
        'replicate': 'vidseek.providers.custom_providers.replicate_clip_provider:ReplicateCLIPProvider',
    }

    _vision_providers: Dict[str, ProviderEntry] = {
        'openai': OpenAIVisionProvider,
    }

    _transcription_providers: Dict[str, ProviderEntry] = {
        'openai': OpenAITranscriptionProvider,
    }

    _storage_providers: Dict[str, ProviderEntry] = {
        'local': LocalStorageProvider,
    }

    _frame_samplers: Dict[str, ProviderEntry] = {
        'opencv': OpenCVFrameSampler,
    }

    @staticmethod
    def _resolve(entry: ProviderEntry) -> Type[Any]:
        if isinstance(entry, str):
            module_name, class_name = entry.split(":")
            return getattr(importlib.import_module(module_name), class_name)
        return entry

    @classmethod
    def _create(cls, kind: str, registry: Dict[str, ProviderEntry], provider_name: str,
                provider_config: Dict[str, Any]):
        if provider_name not in registry:
            raise ConfigurationException(
                f"Unknown {kind} provider: {provider_name}. "
                f"Supported providers: {list(registry.keys())}"
            )
        provider_class = cls._resolve(registry[provider_name])
        logger.info(f"Creating {kind} provider: {provider_name}")
        return provider_class(provider_config)

    @classmethod
    def create_llm_provider(cls, provider_name: str = None,
                            config: Optional[VidSeekConfig] = None) -> LLMProvider:
        """
        Create LLM provider instance.

        Args:
            provider_name: Name of the provider (optional, defaults to config)
            config: Configuration to read provider settings from

        Raises:
            ConfigurationException: If provider is not supported
        """
        config = config or VidSeekConfig()
        return cls._create("LLM", cls._llm_providers, provider_name or config.llm.provider,
                           config.llm.model_dump())

    @classmethod
    def create_embedding_provider(cls, provider_name: str = None,
                                  config: Optional[VidSeekConfig] = None) -> EmbeddingProvider:
        """Create text embedding provider instance."""
        config = config or VidSeekConfig()
        return cls._create("embedding", cls._embedding_providers,
                           provider_name or config.embedding.provider, config.embedding.model_dump())

    @classmethod
    def create_image_embedding_provider(cls, provider_name: str = None,
                                        config: Optional[VidSeekConfig] = None) -> ImageEmbeddingProvider:
        """Create joint image-text embedding provider instance."""
        config = config or VidSeekConfig()
        return cls._create("image embedding", cls._image_embedding_providers,
                           provider_name or config.image_embedding.provider,
                           config.image_embedding.to_provider_config())

    @classmethod
    def create_vision_provider(cls, provider_name: str = None,
                               config: Optional[VidSeekConfig] = None) -> VisionProvider:
        """Create vision provider instance."""
        config = config or VidSeekConfig()
        return cls._create("vision", cls._vision_providers,
                           provider_name or config.vision.provider, config.vision.model_dump())

    @classmethod
    def create_transcription_provider(cls, provider_name: str = None,
                                      config: Optional[VidSeekConfig] = None) -> TranscriptionProvider:
        """Create transcription provider instance."""
        config = config or VidSeekConfig()
        return cls._create("transcription", cls._transcription_providers,
                           provider_name or config.transcription.provider, config.transcription.model_dump())

    @classmethod
    def create_storage_provider(cls, provider_name: str = None,
                                config: Optional[VidSeekConfig] = None) -> StorageProvider:
        """Create storage provider instance."""
        config = config or VidSeekConfig()
        return cls._create("storage", cls._storage_providers,
                           provider_name or config.storage.provider, config.storage.model_dump())

    @classmethod
    def create_frame_sampler(cls, provider_name: str = None,
                             config: Optional[VidSeekConfig] = None) -> FrameSampler:
        """Create frame sampler instance."""
        config = config or VidSeekConfig()
        return cls._create("frame sampler", cls._frame_samplers,
                           provider_name or config.frame_sampler.provider, config.frame_sampler.model_dump())

    @classmethod
    def get_supported_providers(cls) -> Dict[str, list]:
        """Get list of supported providers by type."""
        return {
            "llm": list(cls._llm_providers.keys()),
            "embedding": list(cls._embedding_providers.keys()),
            "image_embedding": list(cls._image_embedding_providers.keys()),
            "vision": list(cls._vision_providers.keys()),
            "transcription": list(cls._transcription_providers.keys()),
            "storage": list(cls._storage_providers.keys()),
            "frame_sampler": list(cls._frame_samplers.keys()),
        }

    @classmethod
    def register_llm_provider(cls, name: str, provider_class: Type[LLMProvider]):
        """Register a new LLM provider."""
        cls._llm_providers[name] = provider_class
        logger.info(f"Registered LLM provider: {name}")

    @classmethod
    def register_embedding_provider(cls, name: str, provider_class: Type[EmbeddingProvider]):
        """Register a new embedding provider."""
        cls._embedding_providers[name] = provider_class
        logger.info(f"Registered embedding provider: {name}")

    @classmethod
    def register_image_embedding_provider(cls, name: str, provider_class: Type[ImageEmbeddingProvider]):
        """Register a new image embedding provider."""
        cls._image_embedding_providers[name] = provider_class
        logger.info(f"Registered image embedding provider: {name}")

    @classmethod
    def register_vision_provider(cls, name: str, provider_class: Type[VisionProvider]):
        """Register a new vision provider."""
        cls._vision_providers[name] = provider_class
        logger.info(f"Registered vision provider: {name}")

    @classmethod
    def register_transcription_provider(cls, name: str, provider_class: Type[TranscriptionProvider]):
        """Register a new transcription provider."""
        cls._transcription_providers[name] = provider_class
        logger.info(f"Registered transcription provider: {name}")

    @classmethod
    def register_storage_provider(cls, name: str, provider_class: Type[StorageProvider]):
        """Register a new storage provider."""
        cls._storage_providers[name] = provider_class
        logger.info(f"Registered storage provider: {name}")

    @classmethod
    def register_frame_sampler(cls, name: str, provider_class: Type[FrameSampler]):
        """Register a new frame sampler."""
        cls._frame_samplers[name] = provider_class
        logger.info(f"Registered frame sampler: {name}")


# Global provider factory instance
provider_factory = ProviderFactory()
