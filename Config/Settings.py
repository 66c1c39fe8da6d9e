"""
Config/Settings.py — Process configuration read once at start-up.

Values come from the environment, optionally seeded from a ``.env`` file in
the working directory.  CLI flags override them where both exist.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_GROQ_MODEL = "llama-3.1-8b-instant"
DEFAULT_GROQ_API_URL = "https://api.groq.com/openai/v1/chat/completions"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    """Runtime configuration shared by the CLI and the HTTP server."""

    groq_api_key: Optional[str] = None
    """Key for the external form-intelligence service; heuristics are used without one."""

    groq_model: str = DEFAULT_GROQ_MODEL
    groq_api_url: str = DEFAULT_GROQ_API_URL
    llm_timeout: float = 15.0

    port: int = 5001
    headless: bool = True
    concurrency: int = 3
    static_timeout: float = 8.0
    dynamic_timeout: float = 15.0
    step_timeout: float = 20.0

    @property
    def has_llm(self) -> bool:
        return bool(self.groq_api_key)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> Settings:
        """Load ``.env`` (without overriding real variables) and read the environment."""
        load_dotenv(dotenv_path=dotenv_path, override=False)
        return cls(
            groq_api_key=os.getenv("GROQ_API_KEY") or None,
            groq_model=os.getenv("GROQ_MODEL") or DEFAULT_GROQ_MODEL,
            groq_api_url=os.getenv("GROQ_API_URL") or DEFAULT_GROQ_API_URL,
            llm_timeout=_env_number("FLOWSCOUT_LLM_TIMEOUT", 15.0),
            port=_env_number("PORT", 5001, int),
            headless=_env_bool("FLOWSCOUT_HEADLESS", True),
            concurrency=max(1, _env_number("FLOWSCOUT_CONCURRENCY", 3, int)),
            static_timeout=_env_number("FLOWSCOUT_STATIC_TIMEOUT", 8.0),
            dynamic_timeout=_env_number("FLOWSCOUT_DYNAMIC_TIMEOUT", 15.0),
            step_timeout=_env_number("FLOWSCOUT_STEP_TIMEOUT", 20.0),
        )
