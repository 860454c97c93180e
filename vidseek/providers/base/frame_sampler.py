from abc import ABC, abstractmethod
from typing import List, Optional
from pydantic import BaseModel, Field


class SampledFrame(BaseModel):
    timestamp: float = Field(..., ge=0)
    image_data: bytes


class SampledVideo(BaseModel):
    duration: Optional[float] = None
    frames: List[SampledFrame] = Field(default_factory=list)


class FrameSampler(ABC):
    """Abstract base class for fixed-interval frame samplers."""

    @abstractmethod
    async def sample(self, video_path: str, interval_seconds: float, **kwargs) -> SampledVideo:
        """
        Sample one JPEG frame at each of 0, I, 2I, ... up to the video duration.

        Args:
            video_path: Local path of the video file
            interval_seconds: Sampling interval I

        Returns:
            Frames in timestamp order plus the probed duration
        """
        pass
