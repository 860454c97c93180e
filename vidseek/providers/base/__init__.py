from .llm_provider import LLMProvider
from .embedding_provider import EmbeddingProvider
from .image_embedding_provider import ImageEmbeddingProvider
from .transcription_provider import TranscriptionProvider, TranscriptionResult, TranscriptSegmentResult
from .vision_provider import VisionProvider
from .storage_provider import StorageProvider
from .frame_sampler import FrameSampler, SampledFrame, SampledVideo

__all__ = [
    'LLMProvider',
    'EmbeddingProvider',
    'ImageEmbeddingProvider',
    'TranscriptionProvider',
    'TranscriptionResult',
    'TranscriptSegmentResult',
    'VisionProvider',
    'StorageProvider',
    'FrameSampler',
    'SampledFrame',
    'SampledVideo',
]
