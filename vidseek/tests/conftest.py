import pytest

from vidseek.config import EmbeddingConfig, ImageEmbeddingConfig, PipelineConfig, TranscriptionConfig
from vidseek.pipeline import PipelineOrchestrator, StageContext, TaskRunner, TextAnalyzer, VisionDescriber
from vidseek.store import VideoStore
from vidseek.tests.fakes import (
    IMAGE_DIM,
    TEXT_DIM,
    FakeEmbedder,
    FakeImageEmbedder,
    FakeLLM,
    FakeSampler,
    FakeTranscriber,
    FakeVision,
    MemoryStorage,
)


async def _has_audio(path: str) -> bool:
    return True


async def _extract_audio(video_path: str, output_path: str) -> str:
    with open(output_path, "wb") as f:
        f.write(b"ID3fake-mp3")
    return output_path


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(tmp_path, storage):
    return VideoStore(str(tmp_path / "data"), text_dimensions=TEXT_DIM, image_dimensions=IMAGE_DIM, storage=storage)


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "cooking.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42fake-video")
    return str(path)


@pytest.fixture
def fakes():
    return {
        "sampler": FakeSampler(),
        "transcriber": FakeTranscriber(),
        "llm": FakeLLM(),
        "vision": FakeVision(),
        "embedder": FakeEmbedder(),
        "image_embedder": FakeImageEmbedder(),
    }


@pytest.fixture
def context(store, storage, fakes, tmp_path):
    return StageContext(
        store=store,
        storage=storage,
        frame_sampler=fakes["sampler"],
        transcriber=fakes["transcriber"],
        text_analyzer=TextAnalyzer(fakes["llm"]),
        vision_describer=VisionDescriber(fakes["vision"]),
        embedder=fakes["embedder"],
        image_embedder=fakes["image_embedder"],
        pipeline_config=PipelineConfig(frame_interval_seconds=10, vision_sample_interval_seconds=10),
        embedding_config=EmbeddingConfig(dimensions=TEXT_DIM),
        image_embedding_config=ImageEmbeddingConfig(dimensions=IMAGE_DIM, throttle_seconds=0),
        transcription_config=TranscriptionConfig(),
        work_dir=str(tmp_path),
        probe_audio=_has_audio,
        extract_audio=_extract_audio,
    )


@pytest.fixture
def orchestrator(context):
    return PipelineOrchestrator(context)


@pytest.fixture
def runner(store, orchestrator, storage):
    return TaskRunner(store, orchestrator, storage, PipelineConfig(max_concurrent_runs=2))
