"""
Tests for hybrid search: temporal clustering, score fusion and channel handling.
"""
import asyncio
import math

import pytest

from vidseek.config import SearchConfig
from vidseek.exceptions import UpstreamError, ValidationError
from vidseek.models import ChannelMatch, Frame, SearchChannel, VideoStatus
from vidseek.search import HybridSearchEngine, aggregate_scores, group_by_time, summarize_group
from vidseek.tests.fakes import FakeEmbedder, FakeImageEmbedder
from vidseek.utils.validation import ChannelWeights

QUERY = "chopping onions"
TEXT_QUERY_VECTOR = [1.0, 0.0, 0.0, 0.0]
IMAGE_QUERY_VECTOR = [1.0, 0.0, 0.0]


def _at_cosine(score, dims):
    """Unit vector whose cosine with the first axis is ``score``."""
    return [score, math.sqrt(1 - score * score)] + [0.0] * (dims - 2)


def _match(ts, score=1.0, channel=SearchChannel.IMAGE, video_id="v"):
    return ChannelMatch(channel=channel, video_id=video_id, score=score, timestamp=ts, description=f"at {ts}")


def _engine(store, storage, embedder=None, image_embedder=None):
    return HybridSearchEngine(
        store=store,
        embedder=embedder or FakeEmbedder({QUERY: TEXT_QUERY_VECTOR}),
        image_embedder=image_embedder or FakeImageEmbedder({QUERY: IMAGE_QUERY_VECTOR}),
        storage=storage,
        config=SearchConfig(),
    )


async def _ready_video(store, filename):
    video = await store.create_video(filename, f"videos/{filename}")
    await store.update_status(video.id, VideoStatus.READY)
    return video


async def _frame(store, video, ts, image=None, keywords=None, keyword_list=None, description=None):
    [frame] = await store.create_frames(
        video.id, [Frame(video_id=video.id, timestamp=ts, storage_key=f"frames/{video.id}/{ts:g}.jpg")]
    )
    if description or keyword_list:
        await store.update_frame_analysis(frame.id, description or "", keyword_list or [])
    await store.update_frame_embeddings(frame.id, image_embedding=image, keywords_embedding=keywords)
    return frame


def test_clusters_split_on_gaps_larger_than_max_gap():
    matches = [_match(ts) for ts in (30, 0, 11, 3, 9)]
    groups = group_by_time(matches, max_gap=5)
    assert [(g[0].timestamp, g[-1].timestamp) for g in groups] == [(0, 3), (9, 11), (30, 30)]


def test_gap_equal_to_max_gap_extends_cluster():
    groups = group_by_time([_match(0), _match(5), _match(10.5)], max_gap=5)
    assert [(g[0].timestamp, g[-1].timestamp) for g in groups] == [(0, 5), (10.5, 10.5)]


def test_video_level_matches_are_not_clustered():
    matches = [_match(None, channel=SearchChannel.SUMMARY), _match(2.0)]
    groups = group_by_time(matches)
    assert len(groups) == 1 and groups[0][0].timestamp == 2.0


def test_cluster_summary_uses_mean_score_and_first_member():
    group = [
        _match(1.0, score=0.3, channel=SearchChannel.KEYWORDS),
        _match(2.0, score=0.5, channel=SearchChannel.IMAGE),
        _match(3.0, score=0.1, channel=SearchChannel.KEYWORDS),
    ]
    cluster = summarize_group(group, preview_url="mem://first.jpg")
    assert cluster.start_time == 1.0
    assert cluster.end_time == 3.0
    assert cluster.confidence == pytest.approx(0.3)
    assert cluster.description == "at 1.0"
    assert cluster.preview_url == "mem://first.jpg"
    assert cluster.sources == [SearchChannel.KEYWORDS, SearchChannel.IMAGE]


def test_aggregate_scores_sums_per_video():
    totals = aggregate_scores([
        _match(1.0, score=0.2, video_id="a"),
        _match(9.0, score=0.2, video_id="a"),
        _match(None, score=0.3, video_id="b", channel=SearchChannel.SUMMARY),
    ])
    assert totals == pytest.approx({"a": 0.4, "b": 0.3})


def test_fusion_rewards_match_volume_over_single_strong_match(store, storage):
    async def scenario():
        frames_video = await _ready_video(store, "frames.mp4")
        await _frame(
            store, frames_video, 5.0,
            image=_at_cosine(0.9, 3), keywords=_at_cosine(0.8, 4), description="onions on a board"
        )
        summary_video = await _ready_video(store, "summary.mp4")
        await store.store_video_embeddings(summary_video.id, summary_embedding=_at_cosine(0.95, 4))

        response = await _engine(store, storage).search(QUERY)
        return frames_video, summary_video, response

    frames_video, summary_video, response = asyncio.run(scenario())

    assert [r.video_id for r in response.results] == [frames_video.id, summary_video.id]
    assert response.results[0].score == pytest.approx(0.9 * 0.35 + 0.8 * 0.30, abs=1e-5)
    assert response.results[1].score == pytest.approx(0.95 * 0.15, abs=1e-5)
    assert response.total_matches == 3

    top = response.results[0]
    assert top.video_url == f"mem://videos/{frames_video.filename}"
    [cluster] = top.timestamps
    assert (cluster.start_time, cluster.end_time) == (5.0, 5.0)
    assert cluster.confidence == pytest.approx((0.9 * 0.35 + 0.8 * 0.30) / 2, abs=1e-5)
    assert set(cluster.sources) == {SearchChannel.IMAGE, SearchChannel.KEYWORDS}
    assert cluster.preview_url == f"mem://frames/{frames_video.id}/5.jpg"
    assert cluster.description == "onions on a board"

    assert response.results[1].timestamps == []


def test_results_are_truncated_to_limit(store, storage):
    async def scenario():
        for i in range(3):
            video = await _ready_video(store, f"v{i}.mp4")
            await _frame(store, video, float(i), image=_at_cosine(0.5 + i / 10, 3))
        return await _engine(store, storage).search(QUERY, limit=2, weights={"keywords": 0, "transcript": 0})

    response = asyncio.run(scenario())
    assert [r.filename for r in response.results] == ["v2.mp4", "v1.mp4"]
    assert response.total_matches == 3


def test_all_zero_weights_return_nothing_without_embedding(store, storage):
    embedder = FakeEmbedder()
    image_embedder = FakeImageEmbedder()
    engine = _engine(store, storage, embedder, image_embedder)
    weights = ChannelWeights(image=0, keywords=0, transcript=0, summary=0)

    response = asyncio.run(engine.search(QUERY, weights=weights))

    assert response.results == []
    assert response.total_matches == 0
    assert embedder.calls == []
    assert image_embedder.text_calls == []


def test_zero_image_weight_skips_joint_embedding(store, storage):
    image_embedder = FakeImageEmbedder()
    engine = _engine(store, storage, image_embedder=image_embedder)
    asyncio.run(engine.search(QUERY, weights={"image": 0}))
    assert image_embedder.text_calls == []


def test_embedder_failure_fails_the_search(store, storage):
    async def scenario():
        video = await _ready_video(store, "a.mp4")
        await _frame(store, video, 0.0, image=_at_cosine(0.9, 3))
        engine = _engine(store, storage, embedder=FakeEmbedder(fail=True))
        await engine.search(QUERY)

    with pytest.raises(UpstreamError):
        asyncio.run(scenario())


def test_unready_videos_are_excluded_from_video_channels(store, storage):
    async def scenario():
        video = await store.create_video("busy.mp4", "videos/busy.mp4")
        await store.update_status(video.id, VideoStatus.PROCESSING)
        await store.store_video_embeddings(video.id, transcript_embedding=TEXT_QUERY_VECTOR)
        return await _engine(store, storage).search(QUERY)

    response = asyncio.run(scenario())
    assert response.results == []


def test_blank_query_is_rejected(store, storage):
    with pytest.raises(ValidationError):
        asyncio.run(_engine(store, storage).search("   "))


def test_negative_weight_is_rejected(store, storage):
    with pytest.raises(ValidationError):
        asyncio.run(_engine(store, storage).search(QUERY, weights={"image": -1}))


def test_keyword_search_groups_frames_by_video(store, storage):
    async def scenario():
        first = await _ready_video(store, "first.mp4")
        second = await _ready_video(store, "second.mp4")
        await _frame(store, first, 0.0, keyword_list=["Onions", "knife"], description="d0")
        await _frame(store, first, 10.0, keyword_list=["red onion"], description="d1")
        await _frame(store, first, 20.0, keyword_list=["pan"], description="d2")
        await _frame(store, second, 5.0, keyword_list=["onion rings"], description="d3")
        return first, second, await _engine(store, storage).keyword_search("ONION")

    first, second, results = asyncio.run(scenario())

    assert [(r.video_id, r.match_count) for r in results] == [(first.id, 2), (second.id, 1)]
    assert [m.timestamp for m in results[0].timestamps] == [0.0, 10.0]
    assert results[0].filename == "first.mp4"
