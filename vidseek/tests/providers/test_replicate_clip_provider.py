"""
Tests for ReplicateCLIPProvider rate-limit handling and output parsing.
The HTTP calls are replaced on the instance; no network access is needed.
"""
import asyncio

import pytest

from vidseek.exceptions import ConfigurationException, RateLimitError, UpstreamError
from vidseek.providers.custom_providers.replicate_clip_provider import ReplicateCLIPProvider

CONFIG = {
    "api_token": "r8_test",
    "model_version": "clip-version",
    "dimensions": 3,
    "max_rate_limit_retries": 2,
    "default_retry_after": 10.0,
}

SUCCEEDED = {"id": "p1", "status": "succeeded", "output": [{"embedding": [0.1, 0.2, 0.3]}]}


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []

    async def fake_sleep(delay):
        recorded.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return recorded


def _provider_with_responses(responses):
    provider = ReplicateCLIPProvider(dict(CONFIG))
    calls = []

    async def create_prediction(inputs):
        calls.append(inputs)
        outcome = responses[min(len(calls), len(responses)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    provider._create_prediction = create_prediction
    return provider, calls


def test_requires_api_token():
    with pytest.raises(ConfigurationException):
        ReplicateCLIPProvider({**CONFIG, "api_token": None})


def test_rate_limit_waits_retry_after_plus_one_second(sleeps):
    provider, calls = _provider_with_responses([
        RateLimitError("slow down", retry_after=2.0),
        RateLimitError("slow down", retry_after=4.0),
        SUCCEEDED,
    ])

    vector = asyncio.run(provider.text_embedding("a dog"))

    assert vector == [0.1, 0.2, 0.3]
    assert calls == ["a dog"] * 3
    assert sleeps == [3.0, 5.0]


def test_rate_limit_gives_up_after_bounded_attempts(sleeps):
    provider, calls = _provider_with_responses([RateLimitError("slow down", retry_after=2.0)])

    with pytest.raises(RateLimitError):
        asyncio.run(provider.text_embedding("a dog"))

    assert len(calls) == CONFIG["max_rate_limit_retries"] + 1
    assert sleeps == [3.0, 3.0]


def test_other_upstream_errors_are_not_retried(sleeps):
    provider, calls = _provider_with_responses([UpstreamError("Replicate API error: 500")])

    with pytest.raises(UpstreamError):
        asyncio.run(provider.text_embedding("a dog"))

    assert len(calls) == 1
    assert sleeps == []


def test_image_bytes_are_sent_as_data_uri(sleeps):
    provider, calls = _provider_with_responses([SUCCEEDED])
    asyncio.run(provider.image_embedding(b"\xff\xd8jpeg"))
    assert calls[0].startswith("data:image/jpeg;base64,")


@pytest.mark.parametrize("output", [
    [{"embedding": [1, 2, 3]}],
    {"embedding": [1, 2, 3]},
    [1, 2, 3],
])
def test_extracts_embedding_from_known_output_shapes(output):
    provider = ReplicateCLIPProvider(dict(CONFIG))
    assert provider._extract_embedding(output) == [1.0, 2.0, 3.0]


def test_wrong_dimension_is_an_upstream_error():
    provider = ReplicateCLIPProvider(dict(CONFIG))
    with pytest.raises(UpstreamError) as exc_info:
        provider._extract_embedding([1.0, 2.0])
    assert exc_info.value.error_code == "DIMENSION_MISMATCH"
