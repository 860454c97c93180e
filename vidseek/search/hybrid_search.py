import asyncio
from typing import Dict, List, Optional

from loguru import logger
from pydantic import ValidationError as SchemaValidationError

from ..config.settings import SearchConfig
from ..exceptions import ValidationError
from ..models import (
    ChannelMatch,
    KeywordMatch,
    KeywordSearchResult,
    SearchChannel,
    SearchResponse,
    SearchResult,
)
from ..providers.base import EmbeddingProvider, ImageEmbeddingProvider, StorageProvider
from ..store import VideoStore
from ..utils.error_handler import log_exceptions
from ..utils.validation import ChannelWeights, SearchRequest
from .clustering import aggregate_scores, group_by_time, summarize_group

FRAME_CHANNELS = {
    SearchChannel.IMAGE: "image_embedding",
    SearchChannel.KEYWORDS: "keywords_embedding",
}

VIDEO_CHANNELS = {
    SearchChannel.TRANSCRIPT: "transcript_embedding",
    SearchChannel.SUMMARY: "summary_embedding",
}


class HybridSearchEngine:
    """
    Answers free-text queries over processed videos.

    Four similarity channels are queried independently: frame image vectors
    (joint image-text space), frame keyword vectors, video transcript vectors
    and video summary vectors (general text space). Every raw score is
    multiplied by its channel weight. A video's score is the plain sum of its
    weighted matches, so many moderate frame hits can outrank one strong
    summary hit. Frame hits are then grouped into time ranges per video.

    Search is read-only. A failing query embedding fails the whole call.
    """

    def __init__(
        self,
        store: VideoStore,
        embedder: EmbeddingProvider,
        image_embedder: Optional[ImageEmbeddingProvider] = None,
        storage: Optional[StorageProvider] = None,
        config: Optional[SearchConfig] = None
    ):
        self.store = store
        self.embedder = embedder
        self.image_embedder = image_embedder
        self.storage = storage
        self.config = config or SearchConfig()

    def default_weights(self) -> ChannelWeights:
        return ChannelWeights(
            image=self.config.weight_image,
            keywords=self.config.weight_keywords,
            transcript=self.config.weight_transcript,
            summary=self.config.weight_summary,
        )

    def _build_request(self, query: str, limit: Optional[int], weights) -> SearchRequest:
        if isinstance(weights, dict):
            weights = {**self.default_weights().model_dump(), **weights}
        try:
            return SearchRequest(
                query=query,
                limit=limit or self.config.default_limit,
                weights=weights if weights is not None else self.default_weights(),
            )
        except SchemaValidationError as e:
            raise ValidationError(f"Invalid search request: {e}") from e

    async def _query_vectors(self, query: str, weights: ChannelWeights):
        if weights.image > 0 and self.image_embedder is None:
            raise ValidationError("Image channel is enabled but no image embedding provider is configured")
        text_task = self.embedder.embedding(query) if weights.text_enabled else None
        image_task = self.image_embedder.text_embedding(query) if weights.image > 0 else None

        pending = [t for t in (text_task, image_task) if t is not None]
        vectors = await asyncio.gather(*pending)
        text_vector = vectors.pop(0) if text_task is not None else None
        image_vector = vectors.pop(0) if image_task is not None else None
        return text_vector, image_vector

    async def _frame_channel(
        self, channel: SearchChannel, vector: List[float], weight: float, pool: int
    ) -> List[ChannelMatch]:
        hits = await self.store.search_frames(FRAME_CHANNELS[channel], vector, pool)
        return [
            ChannelMatch(
                channel=channel,
                video_id=frame.video_id,
                score=score * weight,
                frame_id=frame.id,
                timestamp=frame.timestamp,
                preview_key=frame.storage_key,
                description=frame.description,
            )
            for frame, score in hits
        ]

    async def _video_channel(
        self, channel: SearchChannel, vector: List[float], weight: float, pool: int
    ) -> List[ChannelMatch]:
        hits = await self.store.search_videos(VIDEO_CHANNELS[channel], vector, pool)
        return [
            ChannelMatch(channel=channel, video_id=video.id, score=score * weight)
            for video, score in hits
        ]

    async def _url(self, key: Optional[str]) -> Optional[str]:
        if key is None or self.storage is None:
            return None
        return await self.storage.get_file_url(key)

    @log_exceptions(custom_message="Hybrid search failed")
    async def search(self, query: str, limit: Optional[int] = None, weights=None) -> SearchResponse:
        """
        Run a hybrid search.

        Args:
            query: Free-text query
            limit: Maximum number of videos to return
            weights: ChannelWeights or a partial dict of channel weights

        Returns:
            SearchResponse with videos ranked by fused score
        """
        request = self._build_request(query, limit, weights)
        weights = request.weights
        if not weights.any_enabled:
            logger.info(f"All search channels disabled for query '{request.query}'")
            return SearchResponse(query=request.query)

        text_vector, image_vector = await self._query_vectors(request.query, weights)

        frame_pool = request.limit * self.config.frame_pool_multiplier
        video_pool = self.config.video_candidate_pool
        lookups = []
        if weights.image > 0:
            lookups.append(self._frame_channel(SearchChannel.IMAGE, image_vector, weights.image, frame_pool))
        if weights.keywords > 0:
            lookups.append(self._frame_channel(SearchChannel.KEYWORDS, text_vector, weights.keywords, frame_pool))
        if weights.transcript > 0:
            lookups.append(self._video_channel(SearchChannel.TRANSCRIPT, text_vector, weights.transcript, video_pool))
        if weights.summary > 0:
            lookups.append(self._video_channel(SearchChannel.SUMMARY, text_vector, weights.summary, video_pool))

        matches: List[ChannelMatch] = [m for batch in await asyncio.gather(*lookups) for m in batch]
        totals = aggregate_scores(matches)

        by_video: Dict[str, List[ChannelMatch]] = {}
        for match in matches:
            by_video.setdefault(match.video_id, []).append(match)

        ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
        results = []
        for video_id, score in ranked:
            if len(results) >= request.limit:
                break
            video = await self.store.find_video(video_id)
            if video is None:
                logger.warning(f"Search matched unknown video {video_id}; skipping")
                continue

            clusters = []
            for group in group_by_time(by_video[video_id], self.config.max_gap_seconds):
                preview_url = await self._url(group[0].preview_key)
                clusters.append(summarize_group(group, preview_url))

            results.append(SearchResult(
                video_id=video.id,
                filename=video.filename,
                video_url=await self._url(video.storage_key),
                score=score,
                timestamps=clusters,
            ))

        logger.info(
            f"Search '{request.query}': {len(matches)} matches across {len(totals)} videos, "
            f"returning {len(results)}"
        )
        return SearchResponse(query=request.query, results=results, total_matches=len(matches))

    async def keyword_search(self, query: str) -> List[KeywordSearchResult]:
        """Substring match of query words against frame keywords, grouped by video."""
        words = [w for w in query.lower().split() if w]
        if not words:
            raise ValidationError("Query cannot be empty")

        grouped: Dict[str, List[KeywordMatch]] = {}
        for frame in await self.store.keyword_frames(words):
            grouped.setdefault(frame.video_id, []).append(
                KeywordMatch(timestamp=frame.timestamp, keywords=frame.keywords or [], description=frame.description)
            )

        results = []
        for video_id, frames in grouped.items():
            video = await self.store.find_video(video_id)
            if video is None:
                continue
            results.append(KeywordSearchResult(
                video_id=video_id,
                filename=video.filename,
                match_count=len(frames),
                timestamps=frames,
            ))
        results.sort(key=lambda r: r.match_count, reverse=True)
        return results
