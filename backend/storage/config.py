"""Runtime-tunable LLM settings.

get_llm_config() returns an immutable LlmConfig: environment defaults
merged with the stored llm-settings.json. update_llm_config() validates a
partial patch, builds a whole new value and persists it. API keys and
endpoint URLs come from the environment only and are never written to disk.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rpg_turns.errors import BadRequestError

from .core import data_dir

logger = logging.getLogger(__name__)

PROVIDER_NAMES = ("mock", "openai", "claude", "gemini", "koboldcpp")

# Fields a PATCH may change; everything else on LlmConfig is env-only.
TUNABLE_FIELDS = (
    "provider",
    "fallback_provider",
    "openai_model",
    "claude_model",
    "gemini_model",
    "max_retries",
    "timeout_ms",
    "max_tokens",
    "temperature",
)


class LlmConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str = "mock"
    fallback_provider: str = "mock"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_base_url: str = "https://api.openai.com"
    claude_api_key: str = ""
    claude_model: str = "claude-sonnet-4-5-20250929"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    koboldcpp_url: str = ""
    max_retries: int = Field(default=2, ge=1, le=10)
    timeout_ms: int = Field(default=8000, ge=100, le=120_000)
    max_tokens: int = Field(default=1024, ge=1, le=16_384)
    temperature: float = Field(default=0.8, ge=0.0, le=2.0)


def _config_path() -> Path:
    return data_dir() / "llm-settings.json"


def _env_defaults() -> dict[str, Any]:
    return {
        "provider": os.getenv("LLM_PROVIDER", "mock"),
        "fallback_provider": os.getenv("LLM_FALLBACK_PROVIDER", "mock"),
        "openai_api_key": os.getenv("OPENAI_API_KEY", ""),
        "openai_model": os.getenv("OPENAI_MODEL", "gpt-4o"),
        "openai_base_url": os.getenv("OPENAI_BASE_URL", "https://api.openai.com"),
        "claude_api_key": os.getenv("CLAUDE_API_KEY", ""),
        "claude_model": os.getenv("CLAUDE_MODEL", "claude-sonnet-4-5-20250929"),
        "gemini_api_key": os.getenv("GEMINI_API_KEY", ""),
        "gemini_model": os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        "koboldcpp_url": os.getenv("KOBOLDCPP_URL", ""),
        "max_retries": os.getenv("LLM_MAX_RETRIES", "2"),
        "timeout_ms": os.getenv("LLM_TIMEOUT_MS", "8000"),
        "max_tokens": os.getenv("LLM_MAX_TOKENS", "1024"),
        "temperature": os.getenv("LLM_TEMPERATURE", "0.8"),
    }


def provider_available(config: LlmConfig, name: str) -> bool:
    """Whether `name` has the credentials or URL it needs."""
    if name == "mock":
        return True
    if name == "openai":
        return bool(config.openai_api_key)
    if name == "claude":
        return bool(config.claude_api_key)
    if name == "gemini":
        return bool(config.gemini_api_key)
    if name == "koboldcpp":
        return bool(config.koboldcpp_url)
    return False


def get_llm_config() -> LlmConfig:
    """Current settings as one immutable value."""
    values = _env_defaults()
    path = _config_path()
    if path.is_file():
        stored = json.loads(path.read_text())
        values.update({k: v for k, v in stored.items() if k in TUNABLE_FIELDS})
    return LlmConfig(**values)


def update_llm_config(patch: dict[str, Any]) -> LlmConfig:
    """Validate a partial patch, persist it and return the new settings.

    Raises BadRequestError for unknown or env-only fields, out-of-range
    values, unknown provider names, or switching to a provider that is not
    configured.
    """
    unknown = sorted(set(patch) - set(TUNABLE_FIELDS))
    if unknown:
        raise BadRequestError(f"Unknown or read-only settings: {', '.join(unknown)}")

    for key in ("provider", "fallback_provider"):
        if key in patch and patch[key] not in PROVIDER_NAMES:
            raise BadRequestError(
                f"Unknown provider: {patch[key]}",
                {"field": key, "allowed": list(PROVIDER_NAMES)},
            )

    current = get_llm_config()
    try:
        updated = LlmConfig(**{**current.model_dump(), **patch})
    except ValidationError as e:
        raise BadRequestError(
            "Invalid LLM settings",
            {"errors": [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]},
        ) from e

    if "provider" in patch and not provider_available(updated, updated.provider):
        raise BadRequestError(f"Provider {updated.provider} is not configured")

    stored = {k: getattr(updated, k) for k in TUNABLE_FIELDS}
    _config_path().write_text(json.dumps(stored, indent=2))
    logger.info("llm settings updated: %s", ", ".join(sorted(patch)))
    return updated


def public_llm_config(config: LlmConfig) -> dict[str, Any]:
    """Settings safe to return over the API: keys become *_api_key_set flags."""
    view = config.model_dump(exclude={"openai_api_key", "claude_api_key", "gemini_api_key"})
    view["openai_api_key_set"] = bool(config.openai_api_key)
    view["claude_api_key_set"] = bool(config.claude_api_key)
    view["gemini_api_key_set"] = bool(config.gemini_api_key)
    view["available_providers"] = [n for n in PROVIDER_NAMES if provider_available(config, n)]
    return view
