"""
Tests for the pipeline orchestrator, its stages and the task runner.
All collaborators are in-memory fakes; no network or ffmpeg is needed.
"""
import asyncio

import pytest

from vidseek.exceptions import PrereqRaceError, UpstreamError, ValidationError
from vidseek.models import (
    Frame,
    JobStatus,
    PipelineVariant,
    RunStatus,
    StageOutcome,
    StageType,
    VideoStatus,
)
from vidseek.pipeline import FAST_PATH, FULL_PATH, plan_stages
from vidseek.pipeline.stages import (
    embed_frames,
    embed_video_text,
    extract_frames,
    frame_storage_key,
    transcribe,
)
from vidseek.store import VideoStore
from vidseek.tests.fakes import IMAGE_DIM, TEXT_DIM


async def _ingest(runner, video_file, **kwargs):
    video, run = await runner.ingest(video_file, **kwargs)
    return video, run


def test_plan_stages_appends_extra_stage_once():
    assert plan_stages(PipelineVariant.FAST) == FAST_PATH
    assert plan_stages(PipelineVariant.FULL) == FULL_PATH
    stages = plan_stages(PipelineVariant.FULL, [StageType.ANALYZE_VIDEO_VISION, StageType.EXTRACT_FRAMES])
    assert stages == FULL_PATH + [StageType.ANALYZE_VIDEO_VISION]


def test_full_pipeline_reaches_ready(runner, store, storage, video_file):
    async def scenario():
        video, run = await _ingest(runner, video_file)
        assert video.status == VideoStatus.UPLOADING
        assert run.status == RunStatus.QUEUED
        assert video.storage_key in storage.blobs

        finished = await runner.run_pending()
        assert [r.id for r in finished] == [run.id]
        return await store.get_video(video.id), await store.get_run(run.id), await store.list_frames(video.id), \
            await store.list_jobs(video.id)

    video, run, frames, jobs = asyncio.run(scenario())

    assert video.status == VideoStatus.READY
    assert video.processing_steps.frames_extracted
    assert video.processing_steps.frames_analyzed
    assert video.processing_steps.transcribed
    assert video.processing_steps.embedded
    assert video.duration == 25.0
    assert video.summary == "A cooking lesson about onions."
    assert video.analysis.transcript.keywords == ["cooking", "onions", "butter"]
    assert len(video.transcript_embedding) == TEXT_DIM
    assert len(video.summary_embedding) == TEXT_DIM

    assert [f.timestamp for f in frames] == [0.0, 10.0, 20.0]
    assert all(f.description and f.keywords == ["kitchen", "knife"] for f in frames)
    assert all(len(f.image_embedding) == IMAGE_DIM for f in frames)
    assert all(len(f.keywords_embedding) == TEXT_DIM for f in frames)
    assert frames[1].storage_key == frame_storage_key(video.id, 10.0)

    assert run.status == RunStatus.COMPLETED
    assert run.finished_at is not None
    assert [s.stage for s in run.stages] == FULL_PATH
    assert all(s.outcome == StageOutcome.SUCCEEDED for s in run.stages)

    assert [j.type for j in jobs] == FULL_PATH
    assert all(j.status == JobStatus.COMPLETED and j.progress == 100 for j in jobs)


def test_fast_pipeline_only_extracts_frames(orchestrator, store, runner, video_file, fakes):
    async def scenario():
        video, _ = await _ingest(runner, video_file, auto_process=False)
        run = await orchestrator.run(video.id, PipelineVariant.FAST)
        return await store.get_video(video.id), run

    video, run = asyncio.run(scenario())

    assert run.status == RunStatus.COMPLETED
    assert video.status == VideoStatus.READY
    assert video.processing_steps.frames_extracted
    assert not video.processing_steps.transcribed
    assert not video.processing_steps.embedded
    assert fakes["transcriber"].calls == 0


def test_stage_failure_marks_video_failed_and_keeps_artifacts(runner, store, video_file, fakes):
    fakes["embedder"].fail = True

    async def scenario():
        video, run = await _ingest(runner, video_file)
        await runner.run_pending()
        return await store.get_video(video.id), await store.get_run(run.id), await store.list_jobs(video.id)

    video, run, jobs = asyncio.run(scenario())

    assert video.status == VideoStatus.FAILED
    assert run.status == RunStatus.FAILED
    assert run.error.startswith("embed_frames:")
    assert run.stages[-1].stage == StageType.EMBED_FRAMES
    assert run.stages[-1].outcome == StageOutcome.FAILED
    assert run.stages[-1].error_type == "UpstreamError"

    # Earlier stages keep their work
    assert video.processing_steps.frames_extracted
    assert video.processing_steps.transcribed
    assert video.summary is not None
    assert not video.processing_steps.embedded
    # The failing stage leaves none of its own flags behind
    assert not video.processing_steps.frames_analyzed

    # Remaining stages never started
    assert [j.type for j in jobs] == FULL_PATH[:4]
    assert jobs[-1].status == JobStatus.FAILED
    assert "embedding service unavailable" in jobs[-1].error


def test_retry_resumes_partially_described_frames(runner, store, video_file, fakes):
    fakes["vision"].fail_after = 1

    async def scenario():
        video, _ = await _ingest(runner, video_file)
        await runner.run_pending()
        failed = await store.get_video(video.id)
        described = [f for f in await store.list_frames(video.id) if f.description]

        fakes["vision"].fail_after = None
        retry_run = await runner.retry(video.id)
        await runner.run_pending()
        return failed, described, retry_run, await store.get_video(video.id), await store.get_run(retry_run.id)

    failed, described, retry_run, video, finished = asyncio.run(scenario())

    assert failed.status == VideoStatus.FAILED
    assert len(described) == 1
    assert retry_run.attempt == 2
    assert finished.status == RunStatus.COMPLETED
    assert video.status == VideoStatus.READY
    # One description from the first attempt, two from the retry
    assert fakes["vision"].calls == 3
    # Frames were reused, not re-sampled
    assert fakes["sampler"].calls == 1


def test_embed_frames_is_idempotent(context, store, runner, video_file, fakes):
    async def scenario():
        video, _ = await _ingest(runner, video_file, auto_process=False)
        await extract_frames(context, video.id)
        first = await embed_frames(context, video.id)
        second = await embed_frames(context, video.id)
        return first, second

    first, second = asyncio.run(scenario())

    assert first == {"described": 3, "embedded": 3, "remaining": 0}
    assert second == {"described": 0, "embedded": 0, "remaining": 0}
    assert fakes["vision"].calls == 3
    assert fakes["image_embedder"].image_calls == 3


def test_extract_frames_replaces_an_interrupted_extraction(context, store, storage, runner, video_file, fakes):
    async def scenario():
        video, _ = await _ingest(runner, video_file, auto_process=False)
        # Rows and blobs written before a crash, without the step flag
        stale = []
        for ts in (0.0, 10.0):
            key = frame_storage_key(video.id, ts)
            await storage.save_bytes(key, b"stale")
            stale.append(Frame(video_id=video.id, timestamp=ts, storage_key=key))
        await store.create_frames(video.id, stale)

        result = await extract_frames(context, video.id)
        frames = await store.list_frames(video.id)
        described = await embed_frames(context, video.id)
        return video, result, frames, described, await store.get_video(video.id)

    video, result, frames, described, reloaded = asyncio.run(scenario())

    assert result["reused"] is False
    assert [f.timestamp for f in frames] == [0.0, 10.0, 20.0]
    for frame in frames:
        assert storage.blobs[frame.storage_key] == f"jpeg@{frame.timestamp:g}".encode()
    assert described["remaining"] == 0
    assert reloaded.processing_steps.frames_extracted
    assert reloaded.processing_steps.embedded


def test_processing_flags_never_regress(runner, orchestrator, store, video_file, fakes):
    async def scenario():
        video, _ = await _ingest(runner, video_file)
        await runner.run_pending()
        before = await store.get_video(video.id)

        fakes["transcriber"].text = ""
        rerun = await orchestrator.run(video.id, PipelineVariant.FULL)
        return before, rerun, await store.get_video(video.id)

    before, rerun, after = asyncio.run(scenario())

    assert before.processing_steps.completed() == after.processing_steps.completed()
    assert rerun.status == RunStatus.FAILED
    assert after.status == VideoStatus.FAILED
    assert all(getattr(after.processing_steps, step.value) for step in before.processing_steps.completed())


def test_second_active_run_is_rejected(runner, store, video_file):
    async def scenario():
        video, _ = await _ingest(runner, video_file)
        with pytest.raises(PrereqRaceError) as exc_info:
            await runner.submit(video.id)
        return exc_info.value

    error = asyncio.run(scenario())
    assert error.error_code == "PIPELINE_ACTIVE"


def test_retry_requires_failed_video(runner, video_file):
    async def scenario():
        video, _ = await _ingest(runner, video_file)
        await runner.run_pending()
        await runner.retry(video.id)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_transcribe_rejects_silent_video(context, runner, video_file):
    async def no_audio(path):
        return False

    context.probe_audio = no_audio

    async def scenario():
        video, _ = await _ingest(runner, video_file, auto_process=False)
        await transcribe(context, video.id)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_transcribe_rejects_oversized_audio(context, runner, video_file):
    context.transcription_config.max_audio_mb = 0.000001

    async def scenario():
        video, _ = await _ingest(runner, video_file, auto_process=False)
        await transcribe(context, video.id)

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(scenario())
    assert "limit" in str(exc_info.value)


def test_interrupted_runs_are_requeued(tmp_path, store, storage, runner, video_file):
    async def scenario():
        video, run = await _ingest(runner, video_file)
        claimed = await store.claim_next_run()
        assert claimed.status == RunStatus.RUNNING

        restarted = VideoStore(str(tmp_path / "data"), text_dimensions=TEXT_DIM,
                               image_dimensions=IMAGE_DIM, storage=storage)
        requeued = await restarted.requeue_interrupted_runs()
        return run, requeued, await restarted.get_run(run.id)

    run, requeued, reloaded = asyncio.run(scenario())

    assert [r.id for r in requeued] == [run.id]
    assert reloaded.status == RunStatus.QUEUED
    assert reloaded.started_at is None


def test_embedder_failure_during_video_embedding_propagates(context, runner, store, video_file, fakes):
    async def scenario():
        video, _ = await _ingest(runner, video_file, auto_process=False)
        await store.store_transcript(video.id, "hello world")
        fakes["embedder"].fail = True
        await embed_video_text(context, video.id)

    with pytest.raises(UpstreamError):
        asyncio.run(scenario())


def test_vision_analysis_stage_summarizes_sampled_frames(orchestrator, runner, store, video_file, fakes):
    async def scenario():
        video, _ = await _ingest(runner, video_file, auto_process=False)
        run = await orchestrator.run(video.id, PipelineVariant.FAST, [StageType.ANALYZE_VIDEO_VISION])
        return run, await store.get_video(video.id)

    run, video = asyncio.run(scenario())

    assert run.status == RunStatus.COMPLETED
    assert video.analysis.vision is not None
    assert [m.timestamp for m in video.analysis.vision.key_moments] == [0.0, 10.0, 20.0]
    assert video.summary == video.analysis.vision.summary
