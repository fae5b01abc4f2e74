from __future__ import annotations

import pytest

from scribe.config import get_settings

_CREDENTIAL_VARS = ("DASHSCOPE_API_KEY", "DASHSCOPE_BASE_URL", "IDEALAB_API_KEY", "IDEALAB_BASE_URL", "OPENAI_API_KEY", "OPENAI_BASE_URL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
  for name in _CREDENTIAL_VARS:
    monkeypatch.delenv(name, raising=False)
  get_settings.cache_clear()
  yield
  get_settings.cache_clear()


def test_defaults_without_credentials() -> None:
  settings = get_settings()

  assert settings.has_credentials is False
  assert settings.llm_provider is None
  assert settings.default_model


def test_provider_priority_prefers_dashscope(monkeypatch) -> None:
  monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
  monkeypatch.setenv("DASHSCOPE_API_KEY", "sk-dash")

  settings = get_settings()

  assert settings.llm_provider == "dashscope"
  assert settings.llm_api_key == "sk-dash"
  assert settings.llm_base_url == "https://dashscope.aliyuncs.com/compatible-mode/v1"


def test_placeholder_key_counts_as_missing(monkeypatch) -> None:
  monkeypatch.setenv("DASHSCOPE_API_KEY", "your-api-key-here")
  monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
  monkeypatch.setenv("OPENAI_BASE_URL", "https://proxy.local/v1")

  settings = get_settings()

  assert settings.llm_provider == "openai"
  assert settings.llm_base_url == "https://proxy.local/v1"


def test_numeric_settings_are_validated(monkeypatch) -> None:
  monkeypatch.setenv("SCRIBE_MAX_TOKENS", "lots")

  with pytest.raises(ValueError, match="SCRIBE_MAX_TOKENS must be an integer"):
    get_settings()


def test_wildcard_origins_are_rejected(monkeypatch) -> None:
  monkeypatch.setenv("SCRIBE_ALLOWED_ORIGINS", "*")

  with pytest.raises(ValueError, match="wildcard"):
    get_settings()


def test_delays_and_flags_are_read_from_env(monkeypatch) -> None:
  monkeypatch.setenv("SCRIBE_STAGE_RETRY_DELAY_SECONDS", "0.5")
  monkeypatch.setenv("SCRIBE_MIRROR_PROMPTS_TO_HISTORY", "yes")

  settings = get_settings()

  assert settings.stage_retry_delay_seconds == 0.5
  assert settings.mirror_prompts_to_history is True
