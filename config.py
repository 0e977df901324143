"""
config.py

Environment-backed settings for the quote orchestrator.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env", override=False)


def _get_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_str_env(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


@dataclass(frozen=True)
class Settings:
    """
    Runtime settings for one orchestrator process.

    Timeouts are in seconds and bound every outbound call the orchestrator
    makes (advisory service, probe stream, expansion bulk call).
    """

    quote_engine_base_url: str = "http://localhost:3000"
    cache_ttl_seconds: int = 0
    probe_timeout_seconds: float = 45.0
    expansion_timeout_seconds: float = 60.0
    advisory_timeout_seconds: float = 8.0
    rerank_top_n: int = 12
    openrouter_api_key: Optional[str] = None
    openrouter_model: str = "google/gemini-3-flash-preview"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-3-flash-preview"
    database_url: Optional[str] = None

    @property
    def advisory_enabled(self) -> bool:
        return bool(self.openrouter_api_key or self.gemini_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        _load_env_once()
        return cls(
            quote_engine_base_url=(_get_str_env("QUOTE_ENGINE_BASE_URL") or cls.quote_engine_base_url).rstrip("/"),
            cache_ttl_seconds=max(0, _get_int_env("CACHE_TTL_SECONDS", 0)),
            probe_timeout_seconds=_get_float_env("PROBE_TIMEOUT_SECONDS", 45.0),
            expansion_timeout_seconds=_get_float_env("EXPANSION_TIMEOUT_SECONDS", 60.0),
            advisory_timeout_seconds=_get_float_env("ADVISORY_TIMEOUT_SECONDS", 8.0),
            rerank_top_n=max(1, _get_int_env("RERANK_TOP_N", 12)),
            openrouter_api_key=_get_str_env("OPENROUTER_API_KEY"),
            openrouter_model=_get_str_env("OPENROUTER_MODEL", cls.openrouter_model),
            gemini_api_key=_get_str_env("GEMINI_API_KEY") or _get_str_env("GOOGLE_GENERATIVE_AI_API_KEY"),
            gemini_model=_get_str_env("GEMINI_MODEL", cls.gemini_model),
            database_url=_get_str_env("DATABASE_URL"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings read from the environment."""
    return Settings.from_env()
