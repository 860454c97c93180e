"""
Command line entry point.

Examples:
  vidseek ingest ./talk.mp4 --vision-analysis
  vidseek ingest ./clip.mp4 --fast
  vidseek worker
  vidseek search "person riding a bike" --limit 5
  vidseek search "sunset" --weights 1 0 0 0
  vidseek search "guitar" --keywords-only
  vidseek status <video_id>
  vidseek retry <video_id>
"""
import argparse
import asyncio
import json
import signal
import sys
from typing import List, Optional

from loguru import logger

from .config import VidSeekConfig
from .exceptions import VidSeekException
from .models import PipelineVariant, StageType
from .pipeline import PipelineOrchestrator, StageContext, TaskRunner, TextAnalyzer, VisionDescriber
from .providers import provider_factory
from .search import HybridSearchEngine
from .store import VideoStore
from .utils.logging_config import log_manager


class Components:
    """Store, storage and the providers a command needs, wired from configuration."""

    def __init__(self, config: VidSeekConfig):
        self.config = config
        self.storage = provider_factory.create_storage_provider(config=config)
        self.store = VideoStore.from_config(config, storage=self.storage)
        self._providers = []

    def _track(self, provider):
        self._providers.append(provider)
        return provider

    def build_runner(self) -> TaskRunner:
        config = self.config
        context = StageContext(
            store=self.store,
            storage=self.storage,
            frame_sampler=provider_factory.create_frame_sampler(config=config),
            transcriber=self._track(provider_factory.create_transcription_provider(config=config)),
            text_analyzer=TextAnalyzer(self._track(provider_factory.create_llm_provider(config=config))),
            vision_describer=VisionDescriber(self._track(provider_factory.create_vision_provider(config=config))),
            embedder=self._track(provider_factory.create_embedding_provider(config=config)),
            image_embedder=self._track(provider_factory.create_image_embedding_provider(config=config)),
            pipeline_config=config.pipeline,
            embedding_config=config.embedding,
            image_embedding_config=config.image_embedding,
            transcription_config=config.transcription,
        )
        return TaskRunner(self.store, PipelineOrchestrator(context), self.storage, config.pipeline)

    def build_search(self, with_image: bool = True) -> HybridSearchEngine:
        config = self.config
        image_embedder = None
        if with_image:
            image_embedder = self._track(provider_factory.create_image_embedding_provider(config=config))
        return HybridSearchEngine(
            store=self.store,
            embedder=self._track(provider_factory.create_embedding_provider(config=config)),
            image_embedder=image_embedder,
            storage=self.storage,
            config=config.search,
        )

    async def close(self):
        for provider in self._providers:
            await provider.close()
        await self.storage.close()


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _ingest(components: Components, args) -> None:
    runner = TaskRunner(components.store, None, components.storage, components.config.pipeline)
    video, run = await runner.ingest(
        args.path,
        filename=args.filename,
        auto_process=not args.no_auto_process,
        variant=PipelineVariant.FAST if args.fast else PipelineVariant.FULL,
        extra_stages=[StageType.ANALYZE_VIDEO_VISION] if args.vision_analysis else [],
    )
    _print_json({"video_id": video.id, "status": video.status.value, "run_id": run.id if run else None})


async def _worker(components: Components, args) -> None:
    runner = components.build_runner()
    if args.once:
        await runner.recover()
        finished = await runner.run_pending()
        _print_json([{"run_id": r.id, "video_id": r.video_id, "status": r.status.value} for r in finished])
        return

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)
    await runner.serve(stop_event)


async def _search(components: Components, args) -> None:
    if args.keywords_only:
        engine = components.build_search(with_image=False)
        results = await engine.keyword_search(args.query)
        _print_json([r.model_dump(mode="json") for r in results])
        return

    weights = None
    if args.weights:
        weights = dict(zip(("image", "keywords", "transcript", "summary"), args.weights))
    image_weight = weights["image"] if weights else components.config.search.weight_image
    engine = components.build_search(with_image=image_weight > 0)
    response = await engine.search(args.query, limit=args.limit, weights=weights)
    _print_json(response.model_dump(mode="json"))


async def _status(components: Components, args) -> None:
    store = components.store
    if args.video_id is None:
        videos = await store.list_videos()
        _print_json([
            {"id": v.id, "filename": v.filename, "status": v.status.value,
             "steps": [s.value for s in v.processing_steps.completed()]}
            for v in videos
        ])
        return

    video = await store.get_video(args.video_id)
    runs = await store.list_runs(args.video_id)
    _print_json({
        "video": video.model_dump(
            mode="json", exclude={"transcript_embedding", "summary_embedding", "transcript_segments"}
        ),
        "runs": [r.model_dump(mode="json") for r in runs],
    })


async def _retry(components: Components, args) -> None:
    runner = TaskRunner(components.store, None, components.storage, components.config.pipeline)
    variant = PipelineVariant.FAST if args.fast else None
    run = await runner.retry(args.video_id, variant=variant)
    _print_json({"run_id": run.id, "attempt": run.attempt, "variant": run.variant.value})


COMMANDS = {
    "ingest": _ingest,
    "worker": _worker,
    "search": _search,
    "status": _status,
    "retry": _retry,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vidseek",
        description="Video ingestion pipeline and hybrid search",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Store a video and queue its pipeline")
    ingest.add_argument("path", help="Local video file")
    ingest.add_argument("--filename", default=None, help="Display name (default: file name)")
    ingest.add_argument("--fast", action="store_true", help="Only extract frames")
    ingest.add_argument("--vision-analysis", action="store_true",
                        help="Also summarize the video from sampled frame descriptions")
    ingest.add_argument("--no-auto-process", action="store_true", help="Only store the video")

    worker = subparsers.add_parser("worker", help="Execute queued pipeline runs")
    worker.add_argument("--once", action="store_true", help="Drain the queue and exit")

    search = subparsers.add_parser("search", help="Search processed videos")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=None)
    search.add_argument("--keywords-only", action="store_true", help="Plain keyword match over frame keywords")
    search.add_argument("--weights", type=float, nargs=4, metavar=("I", "K", "T", "S"), default=None,
                        help="Image, keywords, transcript and summary channel weights")

    status = subparsers.add_parser("status", help="Show videos or one video with its runs")
    status.add_argument("video_id", nargs="?", default=None)

    retry = subparsers.add_parser("retry", help="Queue a new run for a failed video")
    retry.add_argument("video_id")
    retry.add_argument("--fast", action="store_true", help="Retry with the fast pipeline")

    return parser


async def _run(args, config: VidSeekConfig) -> None:
    components = Components(config)
    try:
        await COMMANDS[args.command](components, args)
    finally:
        await components.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = VidSeekConfig()
    log_manager.configure(config.logging)
    if args.log_level:
        log_manager.disable_console()
        log_manager.enable_console(level=args.log_level.upper())

    try:
        asyncio.run(_run(args, config))
    except VidSeekException as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
