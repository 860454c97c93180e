import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --------------------------------------------------------------------------
# Model response contracts
# --------------------------------------------------------------------------

class KeywordAnalysis(BaseModel):
    """
    Structured output of the text analyzer.

    The analyzer must answer with exactly these three keys; extra keys are
    rejected so that drifting prompts surface as parse errors instead of
    silently dropped data.
    """
    model_config = ConfigDict(extra="forbid")

    summary: str = Field(..., description="A 2-3 sentence summary of the content")
    keywords: List[str] = Field(
        ...,
        description="Searchable keywords: topics, objects, actions, people types, locations"
    )
    categories: List[str] = Field(
        ...,
        description="Broad content categories such as tutorial, vlog, sports, music, news"
    )


class FrameDescription(BaseModel):
    """Structured output of the vision describer for a single frame."""
    model_config = ConfigDict(extra="forbid")

    description: str = Field(..., description="1-2 sentence description of what is visible in the frame")
    keywords: List[str] = Field(
        default_factory=list,
        description="Short searchable keywords for visible objects, actions, people and setting"
    )


class KeyMoment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timestamp: float = Field(..., ge=0, description="Moment position in seconds")
    description: str = Field(..., description="What happens at this moment")


class VisionAnalysisResponse(BaseModel):
    """Structured output when summarizing a sequence of timestamped frame descriptions."""
    model_config = ConfigDict(extra="forbid")

    summary: str
    keywords: List[str]
    categories: List[str]
    key_moments: List[KeyMoment] = Field(default_factory=list)


# --------------------------------------------------------------------------
# Persisted entities
# --------------------------------------------------------------------------

class VideoStatus(str, Enum):
    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class ProcessingStep(str, Enum):
    FRAMES_EXTRACTED = "frames_extracted"
    FRAMES_ANALYZED = "frames_analyzed"
    TRANSCRIBED = "transcribed"
    EMBEDDED = "embedded"


class ProcessingSteps(BaseModel):
    """Per-video completion flags. A flag only ever goes from False to True."""

    frames_extracted: bool = False
    frames_analyzed: bool = False
    transcribed: bool = False
    embedded: bool = False

    def completed(self) -> List[ProcessingStep]:
        return [step for step in ProcessingStep if getattr(self, step.value)]


class TranscriptSegment(BaseModel):
    start: float
    end: float
    text: str


class TranscriptAnalysis(KeywordAnalysis):
    model_config = ConfigDict(extra="ignore")


class VisionAnalysis(VisionAnalysisResponse):
    model_config = ConfigDict(extra="ignore")


class VideoAnalysis(BaseModel):
    transcript: Optional[TranscriptAnalysis] = None
    vision: Optional[VisionAnalysis] = None


class Video(BaseModel):
    id: str = Field(default_factory=_new_id)
    filename: str
    storage_key: str
    status: VideoStatus = VideoStatus.UPLOADING
    duration: Optional[float] = None
    processing_steps: ProcessingSteps = Field(default_factory=ProcessingSteps)
    transcript: Optional[str] = None
    transcript_segments: List[TranscriptSegment] = Field(default_factory=list)
    summary: Optional[str] = None
    transcript_embedding: Optional[List[float]] = None
    summary_embedding: Optional[List[float]] = None
    analysis: VideoAnalysis = Field(default_factory=VideoAnalysis)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Frame(BaseModel):
    id: str = Field(default_factory=_new_id)
    video_id: str
    timestamp: float = Field(..., ge=0)
    storage_key: str
    description: Optional[str] = None
    keywords: Optional[List[str]] = None
    image_embedding: Optional[List[float]] = None
    keywords_embedding: Optional[List[float]] = None
    created_at: datetime = Field(default_factory=utcnow)


class StageType(str, Enum):
    EXTRACT_FRAMES = "extract_frames"
    TRANSCRIBE = "transcribe"
    ANALYZE_TRANSCRIPT = "analyze_transcript"
    EMBED_FRAMES = "embed_frames"
    EMBED_VIDEO = "embed_video"
    ANALYZE_VIDEO_VISION = "analyze_video_vision"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

class ProcessingJob(BaseModel):
    """Audit record of one stage execution. Never read by orchestration logic."""

    id: str = Field(default_factory=_new_id)
    video_id: str
    type: StageType
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    error: Optional[str] = None
    run_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PipelineVariant(str, Enum):
    FAST = "fast"
    FULL = "full"


class RunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    @property
    def is_active(self) -> bool:
        return self in (RunStatus.QUEUED, RunStatus.RUNNING)


class StageOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"

class StageResult(BaseModel):
    stage: StageType
    outcome: StageOutcome
    started_at: datetime
    duration_seconds: float
    error: Optional[str] = None
    error_type: Optional[str] = None
    detail: dict = Field(default_factory=dict)


class PipelineRun(BaseModel):
    """Durable request to run one pipeline over one video, plus its stage trail."""

    id: str = Field(default_factory=_new_id)
    video_id: str
    variant: PipelineVariant = PipelineVariant.FULL
    extra_stages: List[StageType] = Field(default_factory=list)
    status: RunStatus = RunStatus.QUEUED
    attempt: int = 1
    stages: List[StageResult] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


# --------------------------------------------------------------------------
# Search results
# --------------------------------------------------------------------------

class SearchChannel(str, Enum):
    IMAGE = "image"
    KEYWORDS = "keywords"
    TRANSCRIPT = "transcript"
    SUMMARY = "summary"


class ChannelMatch(BaseModel):
    """One weighted hit from a single channel."""

    channel: SearchChannel
    video_id: str
    score: float
    frame_id: Optional[str] = None
    timestamp: Optional[float] = None
    preview_key: Optional[str] = None
    description: Optional[str] = None


class TimestampCluster(BaseModel):
    start_time: float
    end_time: float
    confidence: float
    preview_url: Optional[str] = None
    description: Optional[str] = None
    sources: List[SearchChannel] = Field(default_factory=list)


class SearchResult(BaseModel):
    video_id: str
    filename: str
    video_url: Optional[str] = None
    score: float
    timestamps: List[TimestampCluster] = Field(default_factory=list)


class SearchResponse(BaseModel):
    query: str
    results: List[SearchResult] = Field(default_factory=list)
    total_matches: int = 0


class KeywordMatch(BaseModel):
    timestamp: float
    keywords: List[str] = Field(default_factory=list)
    description: Optional[str] = None


class KeywordSearchResult(BaseModel):
    video_id: str
    filename: str
    match_count: int
    timestamps: List[KeywordMatch] = Field(default_factory=list)
