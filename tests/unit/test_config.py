# pylint: disable=missing-module-docstring,missing-function-docstring
import json
from dataclasses import fields
from types import SimpleNamespace

import pytest

from adapters.llm.openai_json import OpenAIJsonClient, build_llm_client
from config import AppConfig
from errors import UpstreamServiceError

ENV_VARS = (
    "ENV", "WORKER_ID", "LLM_PROVIDER", "OPENAI_API_KEY", "GROQ_API_KEY", "DEEPGRAM_API_KEY",
    "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "AUDIO_BUCKET", "RECOMMENDATIONS_MODEL",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults_leave_services_unconfigured(clean_env) -> None:
    config = AppConfig.load_from_env()

    assert config.env == "dev"
    assert config.worker_id.startswith("worker-")
    assert config.recommender_model == "gpt-4o"
    assert config.audio_bucket == "call-audio"
    assert not config.llm_configured
    assert not config.transcription_configured
    assert not config.storage_configured
    assert build_llm_client(config) is None


def test_configured_services(clean_env) -> None:
    clean_env.setenv("LLM_PROVIDER", "groq")
    clean_env.setenv("GROQ_API_KEY", "gsk-test")
    clean_env.setenv("DEEPGRAM_API_KEY", "dg-test")
    clean_env.setenv("SUPABASE_URL", "https://example.supabase.co")
    clean_env.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    clean_env.setenv("RECOMMENDATIONS_MODEL", "llama-3.3-70b-versatile")

    config = AppConfig.load_from_env()

    assert config.llm_configured
    assert config.transcription_configured
    assert config.storage_configured
    assert config.recommender_model == "llama-3.3-70b-versatile"
    assert isinstance(build_llm_client(config), OpenAIJsonClient)


def test_config_is_immutable(clean_env) -> None:
    config = AppConfig.load_from_env()
    with pytest.raises(AttributeError):
        config.env = "prod"  # type: ignore[misc]


def test_config_carries_only_settings_the_worker_reads() -> None:
    assert {f.name for f in fields(AppConfig)} == {
        "env", "worker_id",
        "llm_provider", "openai_api_key", "groq_api_key",
        "classifier_model", "recommender_model", "live_model", "summary_model",
        "deepgram_api_key", "deepgram_model",
        "supabase_url", "supabase_service_key", "audio_bucket",
    }


# ---------------------------------------------------------------------
# JSON client over a stubbed AsyncOpenAI
# ---------------------------------------------------------------------

class StubCompletions:
    def __init__(self, content: str | None) -> None:
        self.content = content
        self.kwargs: dict = {}

    async def create(self, **kwargs):
        self.kwargs = kwargs
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def stub_client(content: str | None) -> tuple[OpenAIJsonClient, StubCompletions]:
    completions = StubCompletions(content)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIJsonClient(client=client), completions  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_json_client_requests_json_mode_and_parses() -> None:
    client, completions = stub_client(json.dumps({"signals": []}))

    result = await client.complete_json(system="s", user="u", model="m", max_output_tokens=100)

    assert result == {"signals": []}
    assert completions.kwargs["response_format"] == {"type": "json_object"}
    assert completions.kwargs["max_tokens"] == 100
    assert completions.kwargs["messages"][0] == {"role": "system", "content": "s"}


@pytest.mark.asyncio
async def test_json_client_rejects_empty_and_malformed_content() -> None:
    empty, _ = stub_client(None)
    malformed, _ = stub_client("{not json")

    with pytest.raises(UpstreamServiceError):
        await empty.complete_json(system="s", user="u", model="m", max_output_tokens=10)
    with pytest.raises(ValueError):
        await malformed.complete_json(system="s", user="u", model="m", max_output_tokens=10)


def test_live_recommender_uses_live_model(clean_env) -> None:
    from main import build_live_recommender  # pylint: disable=import-outside-toplevel

    assert not build_live_recommender(AppConfig.load_from_env()).is_configured

    clean_env.setenv("OPENAI_API_KEY", "sk-test")
    recommender = build_live_recommender(AppConfig.load_from_env())

    assert recommender.is_configured


def test_runtime_falls_back_to_memory_storage(clean_env, captured_logs) -> None:
    from main import build_runtime  # pylint: disable=import-outside-toplevel

    runtime = build_runtime(AppConfig.load_from_env())

    assert runtime.closers == []
    configured = captured_logs[-1]
    assert configured["event_type"] == "WORKER_CONFIGURED"
    assert configured["storage"] == "memory"
    assert configured["transcription"] is False
