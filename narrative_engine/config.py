"""Environment-driven settings (connection to the LLM backend, story defaults).

Values come from the process environment, with a `.env` file at the repo
root loaded first. Unset variables fall back to the defaults below.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

from narrative_engine.llm import LLM, CannedLLM, HttpLLM, ProviderFormat
from narrative_engine.models import MINUTES_PER_TURN
from narrative_engine.prompts import DEFAULT_LANGUAGE

ENV_FILE = Path(__file__).parent.parent / ".env"

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    provider_url: str = "https://api.groq.com/openai"
    api_key: str = ""
    provider_format: ProviderFormat = "openai"
    model: str = "llama-3.3-70b-versatile"
    timeout: float = 120.0
    language: str = DEFAULT_LANGUAGE
    minutes_per_turn: int = MINUTES_PER_TURN
    canned: bool = False  # serve the fixed demo segment instead of calling a model
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, env_file: Path | None = ENV_FILE) -> "Settings":
        """Build settings from environment variables (after loading *env_file*)."""
        if env_file is not None:
            load_dotenv(env_file)
        defaults = cls()
        return cls(
            provider_url=os.getenv("LLM_PROVIDER_URL", defaults.provider_url),
            api_key=os.getenv("LLM_API_KEY") or os.getenv("GROQ_API_KEY", ""),
            provider_format=os.getenv("LLM_PROVIDER_FORMAT", defaults.provider_format),
            model=os.getenv("LLM_MODEL", defaults.model),
            timeout=_number("LLM_TIMEOUT", float, defaults.timeout),
            language=os.getenv("STORY_LANGUAGE", defaults.language),
            minutes_per_turn=_number("MINUTES_PER_TURN", int, defaults.minutes_per_turn),
            canned=os.getenv("LLM_CANNED", "").strip().lower() in _TRUTHY,
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )


def _number(name: str, kind: type, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return kind(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def make_llm(settings: Settings) -> LLM:
    """Completion client described by *settings*."""
    if settings.canned:
        return CannedLLM()
    return HttpLLM(
        provider_url=settings.provider_url,
        api_key=settings.api_key,
        provider_format=settings.provider_format,
        model=settings.model,
        timeout=settings.timeout,
    )
