import pytest

from travel_kb.config import Settings
from travel_kb.errors import ConfigurationError
from travel_kb.services.container import ServiceContainer
from travel_kb.services.vector_backends import InMemoryVectorBackend


def _settings(**overrides) -> Settings:
    values = dict(_env_file=None, vector_backend="memory", openai_api_key="", anthropic_api_key="")
    values.update(overrides)
    return Settings(**values)


def test_priority_destinations_are_parsed():
    config = _settings(priority_destinations="Pushkar:India, Hampi:India,,Kyoto:Japan")
    assert config.priority_destination_list == [("Pushkar", "India"), ("Hampi", "India"), ("Kyoto", "Japan")]


def test_cors_origins_are_split():
    config = _settings(cors_origins="http://localhost:5173, https://travel.example.com")
    assert config.cors_origin_list == ["http://localhost:5173", "https://travel.example.com"]


@pytest.mark.asyncio
async def test_build_without_keys_runs_in_demo_mode():
    services = ServiceContainer.build(_settings(quality_threshold=0.7))

    assert not services.embeddings.is_configured
    assert not services.llm.is_configured
    assert isinstance(services.store.backend, InMemoryVectorBackend)
    assert services.store.dimensions is None
    assert services.quality.threshold == 0.7
    assert services.knowledge_base.pipeline is services.pipeline
    assert services.acquisition.store is services.store

    await services.close()


def test_build_with_keys_configures_providers():
    services = ServiceContainer.build(_settings(openai_api_key="sk-test", anthropic_api_key="sk-ant-test"))

    assert services.embeddings.is_configured
    assert services.llm.status() == {"status": "configured", "providers": ["openai", "anthropic"]}


def test_unknown_vector_backend_is_rejected():
    with pytest.raises(ConfigurationError) as exc:
        ServiceContainer.build(_settings(vector_backend="faiss"))
    assert exc.value.setting_name == "vector_backend"
