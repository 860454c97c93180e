import pytest

from vidseek.config import VidSeekConfig
from vidseek.exceptions import ConfigurationException
from vidseek.providers import ProviderFactory, provider_factory
from vidseek.providers.custom_providers import LocalStorageProvider
from vidseek.tests.fakes import FakeSampler


def test_unknown_provider_is_a_configuration_error():
    with pytest.raises(ConfigurationException):
        provider_factory.create_frame_sampler("ffmpeg-gpu")


def test_storage_provider_is_built_from_config(tmp_path, monkeypatch):
    monkeypatch.setenv("STORAGE_BASE_PATH", str(tmp_path / "blobs"))
    storage = provider_factory.create_storage_provider(config=VidSeekConfig())
    assert isinstance(storage, LocalStorageProvider)
    assert storage.base_path == (tmp_path / "blobs").resolve()


def test_registered_provider_can_be_created(monkeypatch):
    monkeypatch.setattr(ProviderFactory, "_frame_samplers", dict(ProviderFactory._frame_samplers))

    class ConfiguredSampler(FakeSampler):
        def __init__(self, config):
            super().__init__()
            self.config = config

    ProviderFactory.register_frame_sampler("fake", ConfiguredSampler)

    sampler = provider_factory.create_frame_sampler("fake")
    assert isinstance(sampler, ConfiguredSampler)
    assert sampler.config["jpeg_quality"] == 85
    assert "fake" in ProviderFactory.get_supported_providers()["frame_sampler"]


def test_openai_providers_require_an_api_key(monkeypatch):
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    with pytest.raises(ConfigurationException):
        provider_factory.create_llm_provider(config=VidSeekConfig())
