import time
from typing import List, Optional, Sequence

from loguru import logger

from ..exceptions import PrereqRaceError
from ..models import (
    JobStatus,
    PipelineRun,
    PipelineVariant,
    RunStatus,
    StageOutcome,
    StageResult,
    StageType,
    VideoStatus,
    utcnow,
)
from .stages import STAGES, StageContext

FAST_PATH: List[StageType] = [StageType.EXTRACT_FRAMES]

FULL_PATH: List[StageType] = [
    StageType.EXTRACT_FRAMES,
    StageType.TRANSCRIBE,
    StageType.ANALYZE_TRANSCRIPT,
    StageType.EMBED_FRAMES,
    StageType.EMBED_VIDEO,
]

PATHS = {
    PipelineVariant.FAST: FAST_PATH,
    PipelineVariant.FULL: FULL_PATH,
}


def plan_stages(variant: PipelineVariant, extra_stages: Optional[Sequence[StageType]] = None) -> List[StageType]:
    """Stage sequence for a variant, with optional extra stages appended once each."""
    stages = list(PATHS[variant])
    for stage in extra_stages or []:
        if stage not in stages:
            stages.append(stage)
    return stages


class PipelineOrchestrator:
    """
    Drives one video through an ordered list of stages.

    The video moves to ``processing`` before the first stage and to ``ready``
    after the last. The first stage that raises stops the run: the error is
    logged with the stage name, recorded on the run and its audit job, and
    turned into a single ``failed`` status write. Artifacts written by earlier
    stages are kept.
    """

    def __init__(self, context: StageContext):
        self.context = context
        self.store = context.store

    async def run(
        self,
        video_id: str,
        variant: PipelineVariant = PipelineVariant.FULL,
        extra_stages: Optional[Sequence[StageType]] = None
    ) -> PipelineRun:
        """
        Queue, claim and execute a pipeline for a video in one call.

        Raises:
            PrereqRaceError: if the video already has an active pipeline
        """
        queued = await self.store.enqueue_run(video_id, variant, list(extra_stages or []))
        run = await self.store.claim_run(queued.id)
        if run is None:
            raise PrereqRaceError(f"Pipeline run {queued.id} was claimed by another worker")
        return await self.execute(run)

    async def execute(self, run: PipelineRun) -> PipelineRun:
        """Execute a claimed (running) pipeline run to completion or failure."""
        video_id = run.video_id
        stages = plan_stages(run.variant, run.extra_stages)
        logger.info(
            f"Starting {run.variant.value} pipeline {run.id} for video {video_id}: "
            f"{[s.value for s in stages]}"
        )

        await self.store.update_status(video_id, VideoStatus.PROCESSING)

        for position, stage in enumerate(stages):
            job = await self.store.create_job(video_id, stage, run_id=run.id)
            await self.store.update_job(job.id, JobStatus.RUNNING)
            started_at = utcnow()
            t0 = time.perf_counter()

            try:
                detail = await STAGES[stage](self.context, video_id)
            except Exception as e:
                elapsed = time.perf_counter() - t0
                logger.exception(f"Stage {stage.value} failed for video {video_id} (run {run.id}): {e}")
                run.stages.append(StageResult(
                    stage=stage,
                    outcome=StageOutcome.FAILED,
                    started_at=started_at,
                    duration_seconds=elapsed,
                    error=str(e),
                    error_type=type(e).__name__,
                ))
                await self.store.update_job(job.id, JobStatus.FAILED, error=str(e))
                await self.store.update_status(video_id, VideoStatus.FAILED)
                return await self._finish(run, RunStatus.FAILED, error=f"{stage.value}: {e}")

            elapsed = time.perf_counter() - t0
            run.stages.append(StageResult(
                stage=stage,
                outcome=StageOutcome.SUCCEEDED,
                started_at=started_at,
                duration_seconds=elapsed,
                detail=detail or {},
            ))
            await self.store.update_job(job.id, JobStatus.COMPLETED, progress=100)
            await self.store.save_run(run)
            logger.info(
                f"Stage {stage.value} done for video {video_id} in {elapsed:.2f}s "
                f"({position + 1}/{len(stages)})"
            )

        await self.store.update_status(video_id, VideoStatus.READY)
        return await self._finish(run, RunStatus.COMPLETED)

    async def _finish(self, run: PipelineRun, status: RunStatus, error: Optional[str] = None) -> PipelineRun:
        run.status = status
        run.error = error
        run.finished_at = utcnow()
        await self.store.save_run(run)
        logger.info(f"Pipeline {run.id} for video {run.video_id} finished: {status.value}")
        return run
