from abc import ABC, abstractmethod
from typing import List, Optional
from pydantic import BaseModel, Field


class TranscriptSegmentResult(BaseModel):
    start: float
    end: float
    text: str


class TranscriptionResult(BaseModel):
    text: str
    duration: Optional[float] = None
    language: Optional[str] = None
    segments: List[TranscriptSegmentResult] = Field(default_factory=list)


class TranscriptionProvider(ABC):
    """Abstract base class for transcription providers."""

    @abstractmethod
    async def transcribe(self, audio_data: bytes, filename: str = "audio.mp3",
                         language: str = None, **kwargs) -> TranscriptionResult:
        """Transcribe audio to text."""
        pass

    @abstractmethod
    async def transcribe_file(self, audio_path: str, language: str = None, **kwargs) -> TranscriptionResult:
        """Transcribe audio file to text."""
        pass

    async def close(self):
        """Close the provider and cleanup resources."""
        pass
