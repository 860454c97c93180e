import io
import os
import aiofiles
from typing import Any, Dict
from loguru import logger
from openai import OpenAIError
from ..base import TranscriptionProvider, TranscriptionResult, TranscriptSegmentResult
from ...exceptions import UpstreamError
from ...utils.error_handler import convert_exceptions
from .client import OpenAIClientMixin


class OpenAITranscriptionProvider(OpenAIClientMixin, TranscriptionProvider):
    """
    Whisper transcription over an OpenAI-compatible audio endpoint.

    Requests ``verbose_json`` so the result carries the audio duration and
    timed segments as well as the full text.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.client = self._initialize_client()

    @staticmethod
    def _to_result(response) -> TranscriptionResult:
        segments = [
            TranscriptSegmentResult(start=s.start, end=s.end, text=s.text.strip())
            for s in (getattr(response, "segments", None) or [])
        ]
        return TranscriptionResult(
            text=(response.text or "").strip(),
            duration=getattr(response, "duration", None),
            language=getattr(response, "language", None),
            segments=segments,
        )

    @convert_exceptions({OpenAIError: UpstreamError})
    async def transcribe(self, audio_data: bytes, filename: str = "audio.mp3",
                         language: str = None, **kwargs) -> TranscriptionResult:
        """Transcribe audio bytes."""
        audio_file = io.BytesIO(audio_data)
        audio_file.name = filename  # the endpoint infers the format from the name

        response = await self.client.audio.transcriptions.create(
            model=self.config.get("model", "whisper-large-v3-turbo"),
            file=audio_file,
            language=language or self.config.get("language"),
            response_format="verbose_json",
            **kwargs
        )
        result = self._to_result(response)
        logger.info(f"Transcribed {filename}: {len(result.text)} chars, {len(result.segments)} segments")
        return result

    async def transcribe_file(self, audio_path: str, language: str = None, **kwargs) -> TranscriptionResult:
        """Transcribe an audio file."""
        async with aiofiles.open(audio_path, "rb") as f:
            audio_data = await f.read()
        return await self.transcribe(audio_data, filename=os.path.basename(audio_path),
                                     language=language, **kwargs)
