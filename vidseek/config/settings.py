from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, PrivateAttr
from typing import Optional
from dotenv import load_dotenv, find_dotenv


def _settings_config(env_prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=env_prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        validate_assignment=True,
        extra="ignore",
        case_sensitive=False
    )


class _EnvSettings(BaseSettings):
    """Base settings class that loads the nearest .env file before validation."""

    def __init__(self, **kwargs):
        # Force load environment variables before validation
        load_dotenv(find_dotenv())
        super().__init__(**kwargs)


class EmbeddingConfig(_EnvSettings):
    """Text embedding provider configuration."""

    provider: str = Field(default="openai")
    api_key: Optional[str] = Field(default=None)
    base_url: Optional[str] = Field(default=None)
    model: str = Field(default="text-embedding-ada-002")
    dimensions: int = Field(default=1536, gt=0)
    max_input_chars: int = Field(default=8000, gt=0)
    timeout: int = Field(default=60)
    max_retries: int = Field(default=0, ge=0)

    model_config = _settings_config("EMBEDDING_")


class ImageEmbeddingConfig(_EnvSettings):
    """Joint image-text embedding provider configuration."""

    provider: str = Field(default="clip")
    model_name: str = Field(default="openai/clip-vit-base-patch32")
    device: str = Field(default="auto")
    max_image_size: int = Field(default=224)
    batch_size: int = Field(default=8)
    dimensions: int = Field(default=512, gt=0)
    # hosted CLIP (replicate)
    api_token: Optional[str] = Field(default=None)
    api_url: str = Field(default="https://api.replicate.com/v1/predictions")
    model_version: str = Field(
        default="75b33f253f7714a281ad3e9b28f63e3232d583716ef6718f2e46641077ea040a"
    )
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    timeout: int = Field(default=120)
    throttle_seconds: float = Field(default=0.2, ge=0)
    max_rate_limit_retries: int = Field(default=5, ge=0)
    default_retry_after: float = Field(default=10.0, ge=0)

    model_config = _settings_config("IMAGE_EMBEDDING_")

    def to_provider_config(self) -> dict:
        """Convert to provider configuration dictionary."""
        return {
            "model_name": self.model_name,
            "device": self.device,
            "max_image_size": self.max_image_size,
            "batch_size": self.batch_size,
            "dimensions": self.dimensions,
            "api_token": self.api_token,
            "api_url": self.api_url,
            "model_version": self.model_version,
            "poll_interval_seconds": self.poll_interval_seconds,
            "timeout": self.timeout,
            "max_rate_limit_retries": self.max_rate_limit_retries,
            "default_retry_after": self.default_retry_after,
        }


class LLMConfig(_EnvSettings):
    """Text analysis LLM configuration (any OpenAI-compatible endpoint, e.g. Groq)."""

    provider: str = Field(default="openai")
    api_key: Optional[str] = Field(default=None)
    base_url: Optional[str] = Field(default=None)
    model_name: str = Field(default="llama-3.3-70b-versatile")
    temperature: float = Field(default=0.3)
    max_tokens: int = Field(default=1500)
    timeout: int = Field(default=200)
    max_retries: int = Field(default=0, ge=0)

    model_config = _settings_config("LLM_")


class VisionConfig(_EnvSettings):
    """Frame description (vision LLM) configuration."""

    provider: str = Field(default="openai")
    api_key: Optional[str] = Field(default=None)
    base_url: Optional[str] = Field(default=None)
    model: str = Field(default="gpt-4o-mini")
    max_tokens: int = Field(default=300)
    detail: str = Field(default="low")
    timeout: int = Field(default=200)
    max_retries: int = Field(default=0, ge=0)

    model_config = _settings_config("VISION_")


class TranscriptionConfig(_EnvSettings):
    """Speech-to-text configuration."""

    provider: str = Field(default="openai")
    api_key: Optional[str] = Field(default=None)
    base_url: Optional[str] = Field(default=None)
    model: str = Field(default="whisper-large-v3-turbo")
    language: str = Field(default="en")
    max_audio_mb: float = Field(default=25.0, gt=0)
    timeout: int = Field(default=200)
    max_retries: int = Field(default=0, ge=0)

    model_config = _settings_config("TRANSCRIPTION_")


class StorageConfig(_EnvSettings):
    """Blob storage configuration."""

    provider: str = Field(default="local")
    base_path: str = Field(default="./local_storage")
    base_url: Optional[str] = Field(default=None)

    model_config = _settings_config("STORAGE_")


class FrameSamplerConfig(_EnvSettings):
    """Frame sampler configuration."""

    provider: str = Field(default="opencv")
    jpeg_quality: int = Field(default=85, ge=1, le=100)
    max_width: int = Field(default=640, gt=0)

    model_config = _settings_config("FRAME_SAMPLER_")


class StoreConfig(_EnvSettings):
    """Video/frame record store configuration."""

    data_dir: str = Field(default="./vidseek_data")

    model_config = _settings_config("STORE_")


class PipelineConfig(_EnvSettings):
    """Pipeline orchestration configuration."""

    frame_interval_seconds: float = Field(default=10.0, gt=0)
    vision_sample_interval_seconds: float = Field(default=10.0, gt=0)
    max_concurrent_runs: int = Field(default=2, gt=0)
    poll_interval_seconds: float = Field(default=2.0, gt=0)

    model_config = _settings_config("PIPELINE_")


class SearchConfig(_EnvSettings):
    """Hybrid search configuration."""

    default_limit: int = Field(default=20, gt=0)
    max_gap_seconds: float = Field(default=5.0, ge=0)
    video_candidate_pool: int = Field(default=10, gt=0)
    frame_pool_multiplier: int = Field(default=2, gt=0)
    weight_image: float = Field(default=0.35, ge=0)
    weight_keywords: float = Field(default=0.30, ge=0)
    weight_transcript: float = Field(default=0.20, ge=0)
    weight_summary: float = Field(default=0.15, ge=0)

    model_config = _settings_config("SEARCH_")


class LoggingConfig(_EnvSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    file: Optional[str] = Field(default=None)
    enable_json: bool = Field(default=False)
    enable_file: bool = Field(default=False)
    max_file_size: str = Field(default="10 MB")
    retention_days: int = Field(default=7)

    model_config = _settings_config("LOG_")


class VidSeekConfig(_EnvSettings):
    """Main configuration class."""

    app_name: str = Field(default="vidseek")
    environment: str = Field(default="development")

    model_config = _settings_config("VIDSEEK_")

    _embedding: Optional[EmbeddingConfig] = PrivateAttr(default=None)
    _image_embedding: Optional[ImageEmbeddingConfig] = PrivateAttr(default=None)
    _llm: Optional[LLMConfig] = PrivateAttr(default=None)
    _vision: Optional[VisionConfig] = PrivateAttr(default=None)
    _transcription: Optional[TranscriptionConfig] = PrivateAttr(default=None)
    _storage: Optional[StorageConfig] = PrivateAttr(default=None)
    _frame_sampler: Optional[FrameSamplerConfig] = PrivateAttr(default=None)
    _store: Optional[StoreConfig] = PrivateAttr(default=None)
    _pipeline: Optional[PipelineConfig] = PrivateAttr(default=None)
    _search: Optional[SearchConfig] = PrivateAttr(default=None)
    _logging: Optional[LoggingConfig] = PrivateAttr(default=None)

    @property
    def embedding(self) -> EmbeddingConfig:
        if self._embedding is None:
            self._embedding = EmbeddingConfig()
        return self._embedding

    @property
    def image_embedding(self) -> ImageEmbeddingConfig:
        if self._image_embedding is None:
            self._image_embedding = ImageEmbeddingConfig()
        return self._image_embedding

    @property
    def llm(self) -> LLMConfig:
        if self._llm is None:
            self._llm = LLMConfig()
        return self._llm

    @property
    def vision(self) -> VisionConfig:
        if self._vision is None:
            self._vision = VisionConfig()
        return self._vision

    @property
    def transcription(self) -> TranscriptionConfig:
        if self._transcription is None:
            self._transcription = TranscriptionConfig()
        return self._transcription

    @property
    def storage(self) -> StorageConfig:
        if self._storage is None:
            self._storage = StorageConfig()
        return self._storage

    @property
    def frame_sampler(self) -> FrameSamplerConfig:
        if self._frame_sampler is None:
            self._frame_sampler = FrameSamplerConfig()
        return self._frame_sampler

    @property
    def store(self) -> StoreConfig:
        if self._store is None:
            self._store = StoreConfig()
        return self._store

    @property
    def pipeline(self) -> PipelineConfig:
        if self._pipeline is None:
            self._pipeline = PipelineConfig()
        return self._pipeline

    @property
    def search(self) -> SearchConfig:
        if self._search is None:
            self._search = SearchConfig()
        return self._search

    @property
    def logging(self) -> LoggingConfig:
        if self._logging is None:
            self._logging = LoggingConfig()
        return self._logging
