import asyncio
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from ..exceptions import NotFoundError, PrereqRaceError, ValidationError
from ..models import (
    Frame,
    JobStatus,
    KeywordAnalysis,
    PipelineRun,
    PipelineVariant,
    ProcessingJob,
    ProcessingStep,
    RunStatus,
    StageType,
    TranscriptAnalysis,
    TranscriptSegment,
    Video,
    VideoStatus,
    VisionAnalysis,
    VisionAnalysisResponse,
    utcnow,
)
from ..providers.base import StorageProvider
from .vector_index import VectorIndex

FRAME_VECTOR_FIELDS = {
    "image_embedding": "frame_image",
    "keywords_embedding": "frame_keywords",
}
VIDEO_VECTOR_FIELDS = {
    "transcript_embedding": "video_transcript",
    "summary_embedding": "video_summary",
}


class VideoStore:
    """
    Record store for videos, frames, processing jobs and pipeline runs.

    This store:
    - Keeps records in memory and persists them as JSON under ``data_dir``
      (one file per collection, one file per video for frames)
    - Writes files atomically (temp file, fsync, replace)
    - Maintains FAISS cosine indexes for the four searchable vector fields,
      rebuilt from the records on load
    - Serialises every mutation behind a single lock, which also makes the
      pipeline run claim atomic
    """

    def __init__(
        self,
        data_dir: str,
        text_dimensions: int = 1536,
        image_dimensions: int = 512,
        storage: Optional[StorageProvider] = None
    ):
        self.base_path = Path(data_dir)
        (self.base_path / "frames").mkdir(parents=True, exist_ok=True)
        self.storage = storage

        self._videos: Dict[str, Video] = {}
        self._frames: Dict[str, Dict[str, Frame]] = {}
        self._frame_owner: Dict[str, str] = {}
        self._jobs: Dict[str, ProcessingJob] = {}
        self._runs: Dict[str, PipelineRun] = {}
        self._lock = threading.RLock()
        self._file_lock = threading.Lock()

        self._indexes: Dict[str, VectorIndex] = {
            "frame_image": VectorIndex("frame_image", image_dimensions),
            "frame_keywords": VectorIndex("frame_keywords", text_dimensions),
            "video_transcript": VectorIndex("video_transcript", text_dimensions),
            "video_summary": VectorIndex("video_summary", text_dimensions),
        }

        self._load_sync()

    @classmethod
    def from_config(cls, config, storage: Optional[StorageProvider] = None) -> "VideoStore":
        return cls(
            data_dir=config.store.data_dir,
            text_dimensions=config.embedding.dimensions,
            image_dimensions=config.image_embedding.dimensions,
            storage=storage,
        )

    # ============================================================================
    # Helper Methods - Persistence
    # ============================================================================

    def _collection_file(self, name: str) -> Path:
        return self.base_path / f"{name}.json"

    def _frames_file(self, video_id: str) -> Path:
        return self.base_path / "frames" / f"{video_id}.json"

    @staticmethod
    def _read_json(path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            # Corrupt or partial JSON: move the broken file aside and start fresh
            logger.exception(f"Failed to load records from '{path}': {e}")
            corrupt_path = str(path) + ".corrupt"
            os.replace(path, corrupt_path)
            logger.warning(f"Moved corrupt record file to {corrupt_path}")
            return []

    @staticmethod
    def _write_json(path: Path, records: List[Dict[str, Any]]) -> None:
        tmp_path = str(path) + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(records, f, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)

    def _load_sync(self) -> None:
        """Blocking load of all records and rebuild of the vector indexes."""
        with self._lock:
            for raw in self._read_json(self._collection_file("videos")):
                video = Video.model_validate(raw)
                self._videos[video.id] = video
                for field, index_name in VIDEO_VECTOR_FIELDS.items():
                    vector = getattr(video, field)
                    if vector is not None:
                        self._indexes[index_name].upsert(video.id, vector)

            for frames_path in sorted((self.base_path / "frames").glob("*.json")):
                for raw in self._read_json(frames_path):
                    frame = Frame.model_validate(raw)
                    self._frames.setdefault(frame.video_id, {})[frame.id] = frame
                    self._frame_owner[frame.id] = frame.video_id
                    for field, index_name in FRAME_VECTOR_FIELDS.items():
                        vector = getattr(frame, field)
                        if vector is not None:
                            self._indexes[index_name].upsert(frame.id, vector)

            for raw in self._read_json(self._collection_file("jobs")):
                job = ProcessingJob.model_validate(raw)
                self._jobs[job.id] = job

            for raw in self._read_json(self._collection_file("runs")):
                run = PipelineRun.model_validate(raw)
                self._runs[run.id] = run

        logger.info(
            f"VideoStore loaded from {self.base_path}: {len(self._videos)} videos, "
            f"{len(self._frame_owner)} frames, {len(self._runs)} runs"
        )

    def _snapshot(self, target: str) -> Tuple[Path, Optional[List[Dict[str, Any]]]]:
        """Records to write for one save target; ``None`` means the file should be removed."""
        if target == "videos":
            return self._collection_file("videos"), [v.model_dump(mode="json") for v in self._videos.values()]
        if target == "jobs":
            return self._collection_file("jobs"), [j.model_dump(mode="json") for j in self._jobs.values()]
        if target == "runs":
            return self._collection_file("runs"), [r.model_dump(mode="json") for r in self._runs.values()]
        if target.startswith("frames:"):
            video_id = target.split(":", 1)[1]
            frames = self._frames.get(video_id)
            records = [f.model_dump(mode="json") for f in frames.values()] if frames else None
            return self._frames_file(video_id), records
        raise ValidationError(f"Unknown save target: {target}")

    def _save_sync(self, targets: Sequence[str]) -> None:
        """Blocking atomic save of the named collections (``frames:<video_id>`` for frames).

        Records are copied under the data lock; disk writes happen under the
        file lock only, so readers never wait on fsync.
        """
        with self._file_lock:
            with self._lock:
                snapshots = [self._snapshot(target) for target in targets]
            for path, records in snapshots:
                if records is not None:
                    self._write_json(path, records)
                elif path.exists():
                    path.unlink()

    async def _save(self, *targets: str) -> None:
        await asyncio.to_thread(self._save_sync, targets)

    # ============================================================================
    # Helper Methods - Lookups (caller holds the lock)
    # ============================================================================

    def _require_video(self, video_id: str) -> Video:
        video = self._videos.get(video_id)
        if video is None:
            raise NotFoundError(f"Video not found: {video_id}", error_code="VIDEO_NOT_FOUND")
        return video

    def _require_frame(self, frame_id: str) -> Frame:
        video_id = self._frame_owner.get(frame_id)
        if video_id is None:
            raise NotFoundError(f"Frame not found: {frame_id}", error_code="FRAME_NOT_FOUND")
        return self._frames[video_id][frame_id]

    def _require_run(self, run_id: str) -> PipelineRun:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError(f"Pipeline run not found: {run_id}", error_code="RUN_NOT_FOUND")
        return run

    @staticmethod
    def _sorted_frames(frames: Iterable[Frame]) -> List[Frame]:
        return sorted(frames, key=lambda f: (f.timestamp, f.created_at))

    # ============================================================================
    # Videos
    # ============================================================================

    async def create_video(self, filename: str, storage_key: str, video_id: Optional[str] = None) -> Video:
        """Create a video record in ``uploading`` status with all steps incomplete."""
        kwargs = {"id": video_id} if video_id else {}
        video = Video(filename=filename, storage_key=storage_key, **kwargs)
        with self._lock:
            if video.id in self._videos:
                raise ValidationError(f"Video already exists: {video.id}")
            self._videos[video.id] = video
            snapshot = video.model_copy(deep=True)
        await self._save("videos")
        logger.info(f"Created video {video.id} ({filename})")
        return snapshot

    async def get_video(self, video_id: str) -> Video:
        with self._lock:
            return self._require_video(video_id).model_copy(deep=True)

    async def find_video(self, video_id: str) -> Optional[Video]:
        with self._lock:
            video = self._videos.get(video_id)
            return video.model_copy(deep=True) if video else None

    async def list_videos(self, status: Optional[VideoStatus] = None) -> List[Video]:
        """List videos, newest first, optionally filtered by status."""
        with self._lock:
            videos = [
                v.model_copy(deep=True)
                for v in self._videos.values()
                if status is None or v.status == status
            ]
        return sorted(videos, key=lambda v: v.created_at, reverse=True)

    async def update_status(self, video_id: str, status: VideoStatus) -> Video:
        with self._lock:
            video = self._require_video(video_id)
            video.status = status
            video.updated_at = utcnow()
            snapshot = video.model_copy(deep=True)
        await self._save("videos")
        logger.info(f"Video {video_id} status -> {status.value}")
        return snapshot

    async def mark_step(self, video_id: str, step: ProcessingStep) -> Video:
        """Mark a processing step as done. Steps can never be marked undone."""
        with self._lock:
            video = self._require_video(video_id)
            setattr(video.processing_steps, step.value, True)
            video.updated_at = utcnow()
            snapshot = video.model_copy(deep=True)
        await self._save("videos")
        logger.debug(f"Video {video_id} step {step.value} done")
        return snapshot

    async def update_duration(self, video_id: str, duration: float) -> Video:
        if duration < 0:
            raise ValidationError(f"Invalid duration {duration} for video {video_id}")
        with self._lock:
            video = self._require_video(video_id)
            video.duration = duration
            video.updated_at = utcnow()
            snapshot = video.model_copy(deep=True)
        await self._save("videos")
        return snapshot

    async def store_transcript(
        self,
        video_id: str,
        transcript: str,
        segments: Optional[List[TranscriptSegment]] = None,
        duration: Optional[float] = None
    ) -> Video:
        with self._lock:
            video = self._require_video(video_id)
            video.transcript = transcript
            video.transcript_segments = list(segments or [])
            if duration is not None:
                video.duration = duration
            video.updated_at = utcnow()
            snapshot = video.model_copy(deep=True)
        await self._save("videos")
        return snapshot

    async def store_transcript_analysis(self, video_id: str, analysis: KeywordAnalysis) -> Video:
        """Store the transcript keyword analysis; its summary becomes the video summary."""
        with self._lock:
            video = self._require_video(video_id)
            video.summary = analysis.summary
            video.analysis.transcript = TranscriptAnalysis.model_validate(analysis.model_dump())
            video.updated_at = utcnow()
            snapshot = video.model_copy(deep=True)
        await self._save("videos")
        return snapshot

    async def store_vision_analysis(self, video_id: str, analysis: VisionAnalysisResponse) -> Video:
        """Store the frame-sampled analysis; its summary becomes the video summary."""
        with self._lock:
            video = self._require_video(video_id)
            video.summary = analysis.summary
            video.analysis.vision = VisionAnalysis.model_validate(analysis.model_dump())
            video.updated_at = utcnow()
            snapshot = video.model_copy(deep=True)
        await self._save("videos")
        return snapshot

    async def store_video_embeddings(
        self,
        video_id: str,
        transcript_embedding: Optional[List[float]] = None,
        summary_embedding: Optional[List[float]] = None
    ) -> Video:
        updates = {
            "transcript_embedding": transcript_embedding,
            "summary_embedding": summary_embedding,
        }
        for field, vector in updates.items():
            if vector is not None:
                self._indexes[VIDEO_VECTOR_FIELDS[field]].validate(vector)

        with self._lock:
            video = self._require_video(video_id)
            for field, vector in updates.items():
                if vector is None:
                    continue
                setattr(video, field, list(vector))
                self._indexes[VIDEO_VECTOR_FIELDS[field]].upsert(video_id, vector)
            video.updated_at = utcnow()
            snapshot = video.model_copy(deep=True)
        await self._save("videos")
        return snapshot

    # ============================================================================
    # Frames
    # ============================================================================

    async def create_frames(self, video_id: str, frames: List[Frame]) -> List[Frame]:
        """Insert frame records for a video in one batch."""
        with self._lock:
            self._require_video(video_id)
            bucket = self._frames.setdefault(video_id, {})
            for frame in frames:
                if frame.video_id != video_id:
                    raise ValidationError(f"Frame {frame.id} belongs to {frame.video_id}, not {video_id}")
                bucket[frame.id] = frame
                self._frame_owner[frame.id] = video_id
            snapshot = [f.model_copy(deep=True) for f in self._sorted_frames(frames)]
        await self._save(f"frames:{video_id}")
        logger.info(f"Stored {len(frames)} frames for video {video_id}")
        return snapshot

    async def get_frame(self, frame_id: str) -> Frame:
        with self._lock:
            return self._require_frame(frame_id).model_copy(deep=True)

    async def find_frame(self, frame_id: str) -> Optional[Frame]:
        with self._lock:
            video_id = self._frame_owner.get(frame_id)
            if video_id is None:
                return None
            return self._frames[video_id][frame_id].model_copy(deep=True)

    async def list_frames(self, video_id: str) -> List[Frame]:
        """Frames of a video in timestamp order."""
        with self._lock:
            frames = self._frames.get(video_id, {}).values()
            return [f.model_copy(deep=True) for f in self._sorted_frames(frames)]

    async def frames_without_description(self, video_id: str) -> List[Frame]:
        return [f for f in await self.list_frames(video_id) if not f.description]

    async def frames_without_embeddings(self, video_id: str) -> List[Frame]:
        return [f for f in await self.list_frames(video_id) if f.image_embedding is None]

    async def update_frame_analysis(self, frame_id: str, description: str, keywords: List[str]) -> Frame:
        with self._lock:
            frame = self._require_frame(frame_id)
            frame.description = description
            frame.keywords = list(keywords)
            snapshot = frame.model_copy(deep=True)
        await self._save(f"frames:{snapshot.video_id}")
        return snapshot

    async def update_frame_embeddings(
        self,
        frame_id: str,
        image_embedding: Optional[List[float]] = None,
        keywords_embedding: Optional[List[float]] = None
    ) -> Frame:
        updates = {
            "image_embedding": image_embedding,
            "keywords_embedding": keywords_embedding,
        }
        for field, vector in updates.items():
            if vector is not None:
                self._indexes[FRAME_VECTOR_FIELDS[field]].validate(vector)

        with self._lock:
            frame = self._require_frame(frame_id)
            for field, vector in updates.items():
                if vector is None:
                    continue
                setattr(frame, field, list(vector))
                self._indexes[FRAME_VECTOR_FIELDS[field]].upsert(frame_id, vector)
            snapshot = frame.model_copy(deep=True)
        await self._save(f"frames:{snapshot.video_id}")
        return snapshot

    async def delete_frames(self, video_id: str) -> int:
        """Delete every frame of a video together with its thumbnail blob."""
        with self._lock:
            frames = list(self._frames.pop(video_id, {}).values())
            for frame in frames:
                self._frame_owner.pop(frame.id, None)
                for index_name in FRAME_VECTOR_FIELDS.values():
                    self._indexes[index_name].remove(frame.id)
        await self._save(f"frames:{video_id}")

        if self.storage is not None:
            for frame in frames:
                await self.storage.delete_file(frame.storage_key)

        logger.info(f"Deleted {len(frames)} frames for video {video_id}")
        return len(frames)

    # ============================================================================
    # Vector search
    # ============================================================================

    async def search_frames(self, field: str, vector: Sequence[float], limit: int) -> List[Tuple[Frame, float]]:
        """Nearest frames by ``image_embedding`` or ``keywords_embedding``."""
        if field not in FRAME_VECTOR_FIELDS:
            raise ValidationError(f"Unknown frame vector field: {field}")
        hits = await asyncio.to_thread(self._indexes[FRAME_VECTOR_FIELDS[field]].search, vector, limit)
        results = []
        with self._lock:
            for frame_id, score in hits:
                video_id = self._frame_owner.get(frame_id)
                if video_id is None:
                    continue
                results.append((self._frames[video_id][frame_id].model_copy(deep=True), score))
        return results

    async def search_videos(
        self,
        field: str,
        vector: Sequence[float],
        limit: int,
        status: Optional[VideoStatus] = VideoStatus.READY
    ) -> List[Tuple[Video, float]]:
        """Nearest videos by ``transcript_embedding`` or ``summary_embedding``, filtered by status."""
        if field not in VIDEO_VECTOR_FIELDS:
            raise ValidationError(f"Unknown video vector field: {field}")

        def allowed(video_id: str) -> bool:
            video = self._videos.get(video_id)
            return video is not None and (status is None or video.status == status)

        hits = await asyncio.to_thread(
            self._indexes[VIDEO_VECTOR_FIELDS[field]].search, vector, limit, allowed
        )
        results = []
        with self._lock:
            for video_id, score in hits:
                video = self._videos.get(video_id)
                if video is not None:
                    results.append((video.model_copy(deep=True), score))
        return results

    async def keyword_frames(self, words: List[str]) -> List[Frame]:
        """Frames having at least one keyword that contains one of ``words`` (case-insensitive)."""
        needles = [w.lower() for w in words if w]
        matches = []
        with self._lock:
            for frames in self._frames.values():
                for frame in frames.values():
                    keywords = [k.lower() for k in frame.keywords or []]
                    if any(n in k for n in needles for k in keywords):
                        matches.append(frame.model_copy(deep=True))
        return self._sorted_frames(matches)

    # ============================================================================
    # Processing jobs (audit log)
    # ============================================================================

    async def create_job(self, video_id: str, stage: StageType, run_id: Optional[str] = None) -> ProcessingJob:
        job = ProcessingJob(video_id=video_id, type=stage, run_id=run_id)
        with self._lock:
            self._jobs[job.id] = job
            snapshot = job.model_copy()
        await self._save("jobs")
        return snapshot

    async def update_job(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[int] = None,
        error: Optional[str] = None
    ) -> ProcessingJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Processing job not found: {job_id}")
            job.status = status
            if progress is not None:
                job.progress = progress
            if error is not None:
                job.error = error
            job.updated_at = utcnow()
            snapshot = job.model_copy()
        await self._save("jobs")
        return snapshot

    async def list_jobs(self, video_id: Optional[str] = None) -> List[ProcessingJob]:
        with self._lock:
            jobs = [
                j.model_copy()
                for j in self._jobs.values()
                if video_id is None or j.video_id == video_id
            ]
        return sorted(jobs, key=lambda j: j.created_at)

    # ============================================================================
    # Pipeline runs
    # ============================================================================

    async def enqueue_run(
        self,
        video_id: str,
        variant: PipelineVariant = PipelineVariant.FULL,
        extra_stages: Optional[List[StageType]] = None
    ) -> PipelineRun:
        """
        Record a durable request to run a pipeline over a video.

        Raises:
            PrereqRaceError: if the video already has a queued or running pipeline
        """
        with self._lock:
            self._require_video(video_id)
            previous = [r for r in self._runs.values() if r.video_id == video_id]
            active = [r for r in previous if r.status.is_active]
            if active:
                raise PrereqRaceError(
                    f"Video {video_id} already has an active pipeline run {active[0].id}",
                    error_code="PIPELINE_ACTIVE",
                    details={"run_id": active[0].id, "status": active[0].status.value}
                )
            run = PipelineRun(
                video_id=video_id,
                variant=variant,
                extra_stages=list(extra_stages or []),
                attempt=len(previous) + 1,
            )
            self._runs[run.id] = run
            snapshot = run.model_copy(deep=True)
        await self._save("runs")
        logger.info(f"Queued {variant.value} pipeline run {run.id} for video {video_id}")
        return snapshot

    async def claim_run(self, run_id: str) -> Optional[PipelineRun]:
        """Move a queued run to running. Returns None if another worker got it first."""
        with self._lock:
            run = self._require_run(run_id)
            if run.status != RunStatus.QUEUED:
                return None
            run.status = RunStatus.RUNNING
            run.started_at = utcnow()
            snapshot = run.model_copy(deep=True)
        await self._save("runs")
        return snapshot

    async def claim_next_run(self) -> Optional[PipelineRun]:
        """Claim the oldest queued run, if any."""
        with self._lock:
            queued = sorted(
                (r for r in self._runs.values() if r.status == RunStatus.QUEUED),
                key=lambda r: r.created_at
            )
            if not queued:
                return None
            run = queued[0]
            run.status = RunStatus.RUNNING
            run.started_at = utcnow()
            snapshot = run.model_copy(deep=True)
        await self._save("runs")
        return snapshot

    async def save_run(self, run: PipelineRun) -> PipelineRun:
        with self._lock:
            self._require_run(run.id)
            self._runs[run.id] = run.model_copy(deep=True)
        await self._save("runs")
        return run

    async def get_run(self, run_id: str) -> PipelineRun:
        with self._lock:
            return self._require_run(run_id).model_copy(deep=True)

    async def list_runs(
        self,
        video_id: Optional[str] = None,
        status: Optional[RunStatus] = None
    ) -> List[PipelineRun]:
        with self._lock:
            runs = [
                r.model_copy(deep=True)
                for r in self._runs.values()
                if (video_id is None or r.video_id == video_id)
                and (status is None or r.status == status)
            ]
        return sorted(runs, key=lambda r: r.created_at)

    async def requeue_interrupted_runs(self) -> List[PipelineRun]:
        """Put runs left ``running`` by a dead process back in the queue."""
        with self._lock:
            interrupted = [r for r in self._runs.values() if r.status == RunStatus.RUNNING]
            for run in interrupted:
                run.status = RunStatus.QUEUED
                run.started_at = None
            snapshot = [r.model_copy(deep=True) for r in interrupted]
        if snapshot:
            await self._save("runs")
            logger.warning(f"Re-queued {len(snapshot)} interrupted pipeline runs")
        return snapshot
