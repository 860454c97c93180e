"""
Pipeline stages.

Each stage takes a StageContext and a video id, calls its collaborators,
persists what they return and marks its processing step done. Stages do not
check which earlier stages ran; the orchestrator owns ordering. A stage that
needs data nobody produced raises ValidationError.

Collection stages (frame extraction, frame embedding) skip work that is
already persisted. Whole-record stages (transcription, transcript analysis,
video text embedding) recompute and overwrite.
"""
import asyncio
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger

from ..config.settings import EmbeddingConfig, ImageEmbeddingConfig, PipelineConfig, TranscriptionConfig
from ..exceptions import ValidationError
from ..models import Frame, KeyMoment, ProcessingStep, StageType, TranscriptSegment
from ..providers.base import (
    EmbeddingProvider,
    FrameSampler,
    ImageEmbeddingProvider,
    StorageProvider,
    TranscriptionProvider,
)
from ..store import VideoStore
from ..utils.media import extract_audio, has_audio_stream
from .analysis import TextAnalyzer, VisionDescriber, select_frames_for_sampling


@dataclass
class StageContext:
    """Collaborators and settings shared by every stage of a pipeline."""

    store: VideoStore
    storage: StorageProvider
    frame_sampler: Optional[FrameSampler] = None
    transcriber: Optional[TranscriptionProvider] = None
    text_analyzer: Optional[TextAnalyzer] = None
    vision_describer: Optional[VisionDescriber] = None
    embedder: Optional[EmbeddingProvider] = None
    image_embedder: Optional[ImageEmbeddingProvider] = None
    pipeline_config: PipelineConfig = field(default_factory=PipelineConfig)
    embedding_config: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    image_embedding_config: ImageEmbeddingConfig = field(default_factory=ImageEmbeddingConfig)
    transcription_config: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    work_dir: Optional[str] = None
    # ffprobe/ffmpeg helpers, replaceable where no ffmpeg binary is available
    probe_audio: Callable[[str], Awaitable[bool]] = has_audio_stream
    extract_audio: Callable[[str, str], Awaitable[str]] = extract_audio

    def require(self, name: str):
        collaborator = getattr(self, name)
        if collaborator is None:
            raise ValidationError(f"Pipeline is missing collaborator '{name}'")
        return collaborator


StageFn = Callable[[StageContext, str], Awaitable[Dict[str, Any]]]


def frame_storage_key(video_id: str, timestamp: float) -> str:
    return f"frames/{video_id}/{int(round(timestamp * 1000)):010d}.jpg"


async def _download_video(ctx: StageContext, storage_key: str, tmp_dir: str) -> str:
    local_path = os.path.join(tmp_dir, os.path.basename(storage_key) or "video")
    return await ctx.storage.download_to_file(storage_key, local_path)


async def extract_frames(ctx: StageContext, video_id: str) -> Dict[str, Any]:
    video = await ctx.store.get_video(video_id)
    existing = await ctx.store.list_frames(video_id)
    if video.processing_steps.frames_extracted and existing:
        logger.info(f"Video {video_id} already has {len(existing)} frames; reusing them")
        return {"frames": len(existing), "reused": True}

    sampler = ctx.require("frame_sampler")
    interval = ctx.pipeline_config.frame_interval_seconds

    with tempfile.TemporaryDirectory(dir=ctx.work_dir) as tmp_dir:
        local_path = await _download_video(ctx, video.storage_key, tmp_dir)
        sampled = await sampler.sample(local_path, interval)

    if not sampled.frames:
        raise ValidationError(f"No frames could be sampled from video {video_id}")

    # Leftovers of an interrupted extraction share the new thumbnail keys,
    # so they must be gone before the new blobs are written
    if existing:
        logger.info(f"Discarding {len(existing)} frames of an incomplete extraction for video {video_id}")
        await ctx.store.delete_frames(video_id)

    frames = []
    for sample in sampled.frames:
        key = frame_storage_key(video_id, sample.timestamp)
        await ctx.storage.save_bytes(key, sample.image_data)
        frames.append(Frame(video_id=video_id, timestamp=sample.timestamp, storage_key=key))

    await ctx.store.create_frames(video_id, frames)

    duration = sampled.duration
    if duration is None:
        # Unknown container duration: the sampling grid bounds it from below
        duration = (len(frames) - 1) * interval
    await ctx.store.update_duration(video_id, duration)
    await ctx.store.mark_step(video_id, ProcessingStep.FRAMES_EXTRACTED)
    return {"frames": len(frames), "duration": duration, "reused": False}


async def transcribe(ctx: StageContext, video_id: str) -> Dict[str, Any]:
    transcriber = ctx.require("transcriber")
    config = ctx.transcription_config
    video = await ctx.store.get_video(video_id)

    with tempfile.TemporaryDirectory(dir=ctx.work_dir) as tmp_dir:
        local_path = await _download_video(ctx, video.storage_key, tmp_dir)
        if not await ctx.probe_audio(local_path):
            raise ValidationError(f"Video {video_id} has no audio stream to transcribe")

        audio_path = await ctx.extract_audio(local_path, os.path.join(tmp_dir, "audio.mp3"))
        size_mb = os.path.getsize(audio_path) / (1024 * 1024)
        if size_mb > config.max_audio_mb:
            raise ValidationError(
                f"Audio of video {video_id} is {size_mb:.1f}MB, above the {config.max_audio_mb}MB limit",
                details={"size_mb": size_mb, "limit_mb": config.max_audio_mb}
            )
        result = await transcriber.transcribe_file(audio_path, language=config.language)

    segments = [TranscriptSegment(start=s.start, end=s.end, text=s.text) for s in result.segments]
    await ctx.store.store_transcript(video_id, result.text, segments, duration=result.duration)
    await ctx.store.mark_step(video_id, ProcessingStep.TRANSCRIBED)
    return {"characters": len(result.text), "segments": len(segments), "duration": result.duration}


async def analyze_transcript(ctx: StageContext, video_id: str) -> Dict[str, Any]:
    video = await ctx.store.get_video(video_id)
    if not video.transcript:
        raise ValidationError(f"Video {video_id} has no transcript. Run transcription first.")

    analysis = await ctx.require("text_analyzer").analyze(video.transcript)
    await ctx.store.store_transcript_analysis(video_id, analysis)
    return {"keywords": len(analysis.keywords), "categories": analysis.categories}


async def embed_frames(ctx: StageContext, video_id: str) -> Dict[str, Any]:
    store = ctx.store
    described = 0
    embedded = 0

    undescribed = await store.frames_without_description(video_id)
    if undescribed:
        describer = ctx.require("vision_describer")
        for frame in undescribed:
            image_data = await ctx.storage.load_file_to_memory(frame.storage_key)
            result = await describer.describe(image_data, frame.timestamp)
            await store.update_frame_analysis(frame.id, result.description, result.keywords)
            described += 1

    unembedded = await store.frames_without_embeddings(video_id)
    if unembedded:
        image_embedder = ctx.require("image_embedder")
        embedder = ctx.require("embedder")
        throttle = ctx.image_embedding_config.throttle_seconds if image_embedder.rate_limited else 0

        for position, frame in enumerate(unembedded):
            image_data = await ctx.storage.load_file_to_memory(frame.storage_key)
            image_vector = await image_embedder.image_embedding(image_data)
            keywords_vector = None
            if frame.keywords:
                keywords_vector = await embedder.embedding(", ".join(frame.keywords))
            await store.update_frame_embeddings(
                frame.id, image_embedding=image_vector, keywords_embedding=keywords_vector
            )
            embedded += 1
            if throttle and position < len(unembedded) - 1:
                await asyncio.sleep(throttle)

    # Flags are only set once the whole stage has gone through
    if not await store.frames_without_description(video_id):
        await store.mark_step(video_id, ProcessingStep.FRAMES_ANALYZED)
    remaining = await store.frames_without_embeddings(video_id)
    if not remaining:
        await store.mark_step(video_id, ProcessingStep.EMBEDDED)
    return {"described": described, "embedded": embedded, "remaining": len(remaining)}


async def embed_video_text(ctx: StageContext, video_id: str) -> Dict[str, Any]:
    video = await ctx.store.get_video(video_id)
    if not video.transcript and not video.summary:
        raise ValidationError(f"Video {video_id} has neither transcript nor summary to embed")

    embedder = ctx.require("embedder")
    transcript_vector = None
    summary_vector = None
    if video.transcript:
        transcript_vector = await embedder.embedding(video.transcript[:ctx.embedding_config.max_input_chars])
    if video.summary:
        summary_vector = await embedder.embedding(video.summary)

    await ctx.store.store_video_embeddings(
        video_id, transcript_embedding=transcript_vector, summary_embedding=summary_vector
    )
    return {"transcript": transcript_vector is not None, "summary": summary_vector is not None}


async def analyze_video_vision(ctx: StageContext, video_id: str) -> Dict[str, Any]:
    video = await ctx.store.get_video(video_id)
    frames = await ctx.store.list_frames(video_id)
    if not frames:
        raise ValidationError(f"Video {video_id} has no frames. Run frame extraction first.")

    selected = select_frames_for_sampling(
        frames, video.duration, ctx.pipeline_config.vision_sample_interval_seconds
    )
    moments = []
    for frame in selected:
        description = frame.description
        if not description:
            image_data = await ctx.storage.load_file_to_memory(frame.storage_key)
            description = (await ctx.require("vision_describer").describe(image_data, frame.timestamp)).description
        moments.append(KeyMoment(timestamp=frame.timestamp, description=description))

    analysis = await ctx.require("text_analyzer").summarize_moments(moments)
    await ctx.store.store_vision_analysis(video_id, analysis)
    return {"frames_sampled": len(selected), "keywords": len(analysis.keywords)}


STAGES: Dict[StageType, StageFn] = {
    StageType.EXTRACT_FRAMES: extract_frames,
    StageType.TRANSCRIBE: transcribe,
    StageType.ANALYZE_TRANSCRIPT: analyze_transcript,
    StageType.EMBED_FRAMES: embed_frames,
    StageType.EMBED_VIDEO: embed_video_text,
    StageType.ANALYZE_VIDEO_VISION: analyze_video_vision,
}
