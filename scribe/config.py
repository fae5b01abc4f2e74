"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from scribe.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_PLACEHOLDER_API_KEY = "your-api-key-here"

_PROVIDER_ENDPOINTS: tuple[tuple[str, str, str, str], ...] = (
  ("dashscope", "DASHSCOPE_API_KEY", "DASHSCOPE_BASE_URL", "https://dashscope.aliyuncs.com/compatible-mode/v1"),
  ("idealab", "IDEALAB_API_KEY", "IDEALAB_BASE_URL", "https://idealab.alibaba-inc.com/api/openai/v1"),
  ("openai", "OPENAI_API_KEY", "OPENAI_BASE_URL", "https://api.openai.com/v1"),
)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Scribe service."""

  environment: str
  debug: bool
  data_dir: str
  history_dir: str
  history_base_url: str | None
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  allowed_origins: tuple[str, ...]
  llm_provider: str | None
  llm_api_key: str | None
  llm_base_url: str | None
  default_model: str
  temperature: float
  max_tokens: int
  request_timeout_seconds: float
  max_rate_limit_retries: int
  prompt_history_limit: int
  stage_retry_delay_seconds: float
  concept_retry_delay_seconds: float
  chunk_delay_seconds: float
  search_cooldown_seconds: float
  mirror_prompts_to_history: bool

  @property
  def has_credentials(self) -> bool:
    """Return True when a real model credential is configured."""
    return self.llm_api_key is not None


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _parse_int(name: str, default: int, *, minimum: int = 0) -> int:
  raw = os.getenv(name)
  try:
    value = int(raw) if raw not in (None, "") else default
  except ValueError as exc:
    raise ValueError(f"{name} must be an integer.") from exc
  if value < minimum:
    raise ValueError(f"{name} must be at least {minimum}.")
  return value


def _parse_float(name: str, default: float, *, minimum: float = 0.0) -> float:
  raw = os.getenv(name)
  try:
    value = float(raw) if raw not in (None, "") else default
  except ValueError as exc:
    raise ValueError(f"{name} must be a number.") from exc
  if value < minimum:
    raise ValueError(f"{name} must be at least {minimum}.")
  return value


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  origins = [origin.strip() for origin in (raw or "http://localhost:5173").split(",") if origin.strip()]

  if not origins:
    raise ValueError("SCRIBE_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("SCRIBE_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _resolve_credentials() -> tuple[str | None, str | None, str | None]:
  """Pick the first configured provider in priority order: DashScope, Idealab, OpenAI."""

  for provider, key_var, url_var, default_url in _PROVIDER_ENDPOINTS:
    api_key = _optional_str(os.getenv(key_var))
    # The placeholder from sample env files counts as missing.
    if api_key is None or api_key == _PLACEHOLDER_API_KEY:
      continue
    base_url = _optional_str(os.getenv(url_var)) or default_url
    return provider, api_key, base_url

  return None, None, None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("SCRIBE_ENV", "development").strip().lower()
  debug = _parse_bool(os.getenv("SCRIBE_DEBUG"))

  log_max_bytes = _parse_int("SCRIBE_LOG_MAX_BYTES", 5242880, minimum=1)  # 5MB default
  log_backup_count = _parse_int("SCRIBE_LOG_BACKUP_COUNT", 10)

  llm_provider, llm_api_key, llm_base_url = _resolve_credentials()

  return Settings(
    environment=environment,
    debug=debug,
    data_dir=(os.getenv("SCRIBE_DATA_DIR") or "./data").strip(),
    history_dir=(os.getenv("SCRIBE_HISTORY_DIR") or "./history").strip(),
    history_base_url=_optional_str(os.getenv("SCRIBE_HISTORY_BASE_URL")),
    log_dir=(os.getenv("SCRIBE_LOG_DIR") or "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("SCRIBE_LOG_HTTP_4XX")),
    allowed_origins=_parse_origins(os.getenv("SCRIBE_ALLOWED_ORIGINS")),
    llm_provider=llm_provider,
    llm_api_key=llm_api_key,
    llm_base_url=llm_base_url,
    default_model=_optional_str(os.getenv("SCRIBE_MODEL")) or "qwen-max-latest",
    temperature=_parse_float("SCRIBE_TEMPERATURE", 0.7),
    max_tokens=_parse_int("SCRIBE_MAX_TOKENS", 8000, minimum=1),
    request_timeout_seconds=_parse_float("SCRIBE_REQUEST_TIMEOUT_SECONDS", 1200.0, minimum=1.0),
    max_rate_limit_retries=_parse_int("SCRIBE_MAX_RATE_LIMIT_RETRIES", 3),
    prompt_history_limit=_parse_int("SCRIBE_PROMPT_HISTORY_LIMIT", 1000, minimum=1),
    stage_retry_delay_seconds=_parse_float("SCRIBE_STAGE_RETRY_DELAY_SECONDS", 2.0),
    concept_retry_delay_seconds=_parse_float("SCRIBE_CONCEPT_RETRY_DELAY_SECONDS", 1.0),
    chunk_delay_seconds=_parse_float("SCRIBE_CHUNK_DELAY_SECONDS", 1.0),
    search_cooldown_seconds=_parse_float("SCRIBE_SEARCH_COOLDOWN_SECONDS", 1.0),
    mirror_prompts_to_history=_parse_bool(os.getenv("SCRIBE_MIRROR_PROMPTS_TO_HISTORY")),
  )
