import asyncio
import os
import uuid
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from ..config.settings import PipelineConfig
from ..exceptions import NotFoundError, ValidationError
from ..models import PipelineRun, PipelineVariant, RunStatus, StageType, Video, VideoStatus
from ..providers.base import StorageProvider
from ..store import VideoStore
from .orchestrator import PipelineOrchestrator


class TaskRunner:
    """
    Executes durable pipeline runs recorded in the store.

    Ingestion only records a queued run; a worker (``run_pending`` or
    ``serve``) claims queued runs and hands them to the orchestrator. Runs for
    different videos execute concurrently up to ``max_concurrent_runs``. A run
    left ``running`` by a crashed worker is re-queued by ``recover``.
    """

    def __init__(
        self,
        store: VideoStore,
        orchestrator: Optional[PipelineOrchestrator],
        storage: StorageProvider,
        config: Optional[PipelineConfig] = None
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.storage = storage
        self.config = config or PipelineConfig()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_runs)

    async def ingest(
        self,
        file_path: str,
        filename: Optional[str] = None,
        auto_process: bool = True,
        variant: PipelineVariant = PipelineVariant.FULL,
        extra_stages: Optional[Sequence[StageType]] = None
    ) -> Tuple[Video, Optional[PipelineRun]]:
        """
        Store a video file and create its record in ``uploading`` status.

        Args:
            file_path: Local path of the video file
            filename: Display name (defaults to the file's base name)
            auto_process: Queue a pipeline run right away
            variant: Pipeline variant to queue
            extra_stages: Optional stages to append to the variant

        Returns:
            The new video and the queued run, if any
        """
        if not os.path.isfile(file_path):
            raise ValidationError(f"Video file not found: {file_path}")

        filename = filename or os.path.basename(file_path)
        video_id = uuid.uuid4().hex
        storage_key = f"videos/{video_id}/{filename}"

        await self.storage.save_file(storage_key, file_path)
        video = await self.store.create_video(filename, storage_key, video_id=video_id)

        run = None
        if auto_process:
            run = await self.submit(video.id, variant, extra_stages)
        return video, run

    async def submit(
        self,
        video_id: str,
        variant: PipelineVariant = PipelineVariant.FULL,
        extra_stages: Optional[Sequence[StageType]] = None
    ) -> PipelineRun:
        """Queue a pipeline run for a video."""
        return await self.store.enqueue_run(video_id, variant, list(extra_stages or []))

    async def retry(
        self,
        video_id: str,
        variant: Optional[PipelineVariant] = None,
        extra_stages: Optional[Sequence[StageType]] = None
    ) -> PipelineRun:
        """
        Queue a new run for a video whose last pipeline failed.

        Defaults to the variant and extra stages of the previous run.
        """
        video = await self.store.get_video(video_id)
        if video.status != VideoStatus.FAILED:
            raise ValidationError(
                f"Only failed videos can be retried; video {video_id} is {video.status.value}"
            )
        previous = await self.store.list_runs(video_id)
        if variant is None:
            variant = previous[-1].variant if previous else PipelineVariant.FULL
        if extra_stages is None and previous:
            extra_stages = previous[-1].extra_stages
        logger.info(f"Retrying video {video_id} with {variant.value} pipeline")
        return await self.submit(video_id, variant, extra_stages)

    async def recover(self) -> List[PipelineRun]:
        """Re-queue runs interrupted by a previous worker."""
        return await self.store.requeue_interrupted_runs()

    async def _execute(self, run: PipelineRun) -> PipelineRun:
        async with self._semaphore:
            try:
                return await self.orchestrator.execute(run)
            except NotFoundError as e:
                # Video disappeared between queueing and execution
                logger.exception(f"Pipeline run {run.id} cannot start: {e}")
                run.status = RunStatus.FAILED
                run.error = str(e)
                await self.store.save_run(run)
                return run

    async def run_pending(self) -> List[PipelineRun]:
        """Claim every queued run and execute them; returns the finished runs."""
        tasks = []
        while True:
            run = await self.store.claim_next_run()
            if run is None:
                break
            tasks.append(asyncio.create_task(self._execute(run)))

        if not tasks:
            return []
        logger.info(f"Executing {len(tasks)} pipeline runs")
        return list(await asyncio.gather(*tasks))

    async def serve(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Poll for queued runs until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        await self.recover()
        logger.info(
            f"Worker started (max {self.config.max_concurrent_runs} concurrent runs, "
            f"poll every {self.config.poll_interval_seconds}s)"
        )
        while not stop_event.is_set():
            finished = await self.run_pending()
            if finished:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Worker stopped")
