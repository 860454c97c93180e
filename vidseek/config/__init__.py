from .settings import (
    VidSeekConfig,
    EmbeddingConfig,
    ImageEmbeddingConfig,
    LLMConfig,
    VisionConfig,
    TranscriptionConfig,
    StorageConfig,
    FrameSamplerConfig,
    StoreConfig,
    PipelineConfig,
    SearchConfig,
    LoggingConfig,
)

__all__ = [
    'VidSeekConfig',
    'EmbeddingConfig',
    'ImageEmbeddingConfig',
    'LLMConfig',
    'VisionConfig',
    'TranscriptionConfig',
    'StorageConfig',
    'FrameSamplerConfig',
    'StoreConfig',
    'PipelineConfig',
    'SearchConfig',
    'LoggingConfig',
]
