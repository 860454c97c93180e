"""In-memory collaborators used by the test suite."""
import json
import os
from typing import Dict, List, Optional

import aiofiles

from vidseek.exceptions import NotFoundError, UpstreamError
from vidseek.providers.base import (
    EmbeddingProvider,
    FrameSampler,
    ImageEmbeddingProvider,
    LLMProvider,
    StorageProvider,
    TranscriptionProvider,
    VisionProvider,
)
from vidseek.providers.base.frame_sampler import SampledFrame, SampledVideo
from vidseek.providers.base.transcription_provider import TranscriptionResult, TranscriptSegmentResult

TEXT_DIM = 4
IMAGE_DIM = 3


class MemoryStorage(StorageProvider):
    def __init__(self):
        self.blobs: Dict[str, bytes] = {}
        self.deleted: List[str] = []

    async def get_file_url(self, key: str, **kwargs) -> str:
        return f"mem://{key}"

    async def save_file(self, key: str, src_file_path: str, **kwargs) -> str:
        async with aiofiles.open(src_file_path, "rb") as f:
            self.blobs[key] = await f.read()
        return key

    async def save_bytes(self, key: str, data: bytes, **kwargs) -> str:
        self.blobs[key] = data
        return key

    async def download_to_file(self, key: str, download_path: str, **kwargs) -> str:
        if key not in self.blobs:
            raise NotFoundError(f"Blob not found: {key}")
        async with aiofiles.open(download_path, "wb") as f:
            await f.write(self.blobs[key])
        return download_path

    async def load_file_to_memory(self, key: str) -> bytes:
        if key not in self.blobs:
            raise NotFoundError(f"Blob not found: {key}")
        return self.blobs[key]

    async def delete_file(self, key: str) -> bool:
        self.deleted.append(key)
        return self.blobs.pop(key, None) is not None

    async def close(self):
        pass


class FakeSampler(FrameSampler):
    def __init__(self, duration: Optional[float] = 25.0):
        self.duration = duration
        self.calls = 0

    async def sample(self, video_path: str, interval_seconds: float, **kwargs) -> SampledVideo:
        self.calls += 1
        assert os.path.exists(video_path)
        timestamps = []
        t = 0.0
        end = self.duration or 0.0
        while t <= end:
            timestamps.append(t)
            t += interval_seconds
        return SampledVideo(
            duration=self.duration,
            frames=[SampledFrame(timestamp=ts, image_data=f"jpeg@{ts:g}".encode()) for ts in timestamps],
        )


class FakeTranscriber(TranscriptionProvider):
    def __init__(self, text: str = "a chef dices onions and fries them in butter"):
        self.text = text
        self.calls = 0

    async def transcribe(self, audio_data: bytes, filename: str = "audio.mp3",
                         language: str = None, **kwargs) -> TranscriptionResult:
        return await self.transcribe_file(filename, language)

    async def transcribe_file(self, audio_path: str, language: str = None, **kwargs) -> TranscriptionResult:
        self.calls += 1
        return TranscriptionResult(
            text=self.text,
            duration=25.0,
            language=language,
            segments=[TranscriptSegmentResult(start=0.0, end=5.0, text=self.text)],
        )


class FakeLLM(LLMProvider):
    def __init__(self, content: Optional[str] = None):
        self.content = content or json.dumps({
            "summary": "A cooking lesson about onions.",
            "keywords": ["cooking", "onions", "butter"],
            "categories": ["tutorial"],
        })
        self.calls = 0

    async def chat_completion(self, messages, **kwargs):
        self.calls += 1
        return {"content": self.content, "tokens_used": 0}


class FakeVision(VisionProvider):
    def __init__(self, fail_after: Optional[int] = None):
        self.calls = 0
        self.fail_after = fail_after

    async def describe_image(self, image_data: bytes, prompt: str, **kwargs) -> str:
        if self.fail_after is not None and self.calls >= self.fail_after:
            raise UpstreamError("vision service unavailable")
        self.calls += 1
        return "```json\n" + json.dumps({
            "description": f"Frame {image_data.decode()} shows a kitchen.",
            "keywords": ["kitchen", "knife"],
        }) + "\n```"

    async def close(self):
        pass


class FakeEmbedder(EmbeddingProvider):
    """Text embedder answering from a lookup table, with a fixed fallback vector."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, fail: bool = False):
        self.vectors = vectors or {}
        self.fail = fail
        self.calls: List[str] = []

    async def embedding(self, text: str, **kwargs) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise UpstreamError("embedding service unavailable")
        return list(self.vectors.get(text, [1.0, 0.0, 0.0, 0.0]))


class FakeImageEmbedder(ImageEmbeddingProvider):
    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, rate_limited: bool = False):
        self.vectors = vectors or {}
        self.rate_limited = rate_limited
        self.image_calls = 0
        self.text_calls: List[str] = []

    async def image_embedding(self, image, **kwargs) -> List[float]:
        self.image_calls += 1
        return [1.0, 0.0, 0.0]

    async def text_embedding(self, text: str, **kwargs) -> List[float]:
        self.text_calls.append(text)
        return list(self.vectors.get(text, [1.0, 0.0, 0.0]))

    async def close(self):
        pass
