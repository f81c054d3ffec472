"""Runtime settings and solver knobs."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .errors import ConfigError

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai"
DEFAULT_MODEL = "gemini-2.5-flash"

MODEL_CHOICES: dict[str, str] = {
    "gemini-2.5-pro": "The most capable model, for complex reasoning.",
    "gemini-2.5-flash": "A lighter-weight and faster model for general tasks.",
    "gemini-2.5-flash-lite": "The fastest and most compact model for simple tasks.",
}


@dataclass(frozen=True)
class SolverConfig:
    temperature: float = 0.2
    max_tokens: int = 4096
    step_max_tokens: int = 2048
    verification_max_tokens: int = 1536
    max_sequential_steps: int = 10
    parse_retries: int = 1
    run_verification_code: bool = True
    orchestrator: str = "classic"


@dataclass(frozen=True)
class Settings:
    api_key: str
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    timeout_sec: int = 180
    max_sequential_steps: int = 10


def load_dotenv_if_present() -> None:
    try:
        from dotenv import load_dotenv
    except ImportError:
        return

    load_dotenv(override=False)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def load_settings(*, api_key: str | None = None, base_url: str | None = None, model: str | None = None) -> Settings:
    """Resolve settings from explicit values, then the environment.

    Raises ``ConfigError`` before any model call when no API key is available.
    """

    load_dotenv_if_present()

    key = api_key or os.getenv("STEPSOLVER_API_KEY") or os.getenv("API_KEY")
    if not key:
        raise ConfigError("API key is not configured. Set STEPSOLVER_API_KEY (or API_KEY).")

    max_steps = _int_env("STEPSOLVER_MAX_SEQUENTIAL_STEPS", 10)
    if max_steps < 1:
        raise ConfigError("STEPSOLVER_MAX_SEQUENTIAL_STEPS must be at least 1")

    return Settings(
        api_key=key,
        base_url=base_url or os.getenv("STEPSOLVER_BASE_URL") or DEFAULT_BASE_URL,
        model=model or os.getenv("STEPSOLVER_MODEL") or DEFAULT_MODEL,
        timeout_sec=_int_env("STEPSOLVER_TIMEOUT_SEC", 180),
        max_sequential_steps=max_steps,
    )
