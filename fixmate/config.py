from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

DEFAULT_MODEL = "gemini-1.5-flash"
DEFAULT_MAX_TURNS = 20
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _is_truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        v = os.getenv(name)
        if v:
            return v
    return None


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def clamp_max_turns(value: int) -> int:
    """History sent to the model never exceeds 20 turns; a setting may only lower it."""
    return max(1, min(value, DEFAULT_MAX_TURNS))


@dataclass(frozen=True)
class Settings:
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_MODEL
    demo: bool = False
    local_only: bool = False
    ollama_model: str = "llama3.2:3b"
    ollama_path: str = "ollama"
    mongodb_uri: Optional[str] = None
    mongodb_db: str = "fixmate"
    history_max_turns: int = DEFAULT_MAX_TURNS
    auth_secret: Optional[str] = None
    environment: str = "production"
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = tuple(
            o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
        )
        return cls(
            gemini_api_key=_first_env("GEMINI_API_KEY", "GENAI_API_KEY", "GOOGLE_API_KEY"),
            gemini_model=_first_env("GEMINI_MODEL", "GEN_AI_MODEL") or DEFAULT_MODEL,
            demo=_is_truthy(os.getenv("DEMO_MOCK")),
            local_only=_is_truthy(os.getenv("LOCAL_ONLY")),
            ollama_model=os.getenv("OLLAMA_MODEL", "llama3.2:3b").strip(),
            ollama_path=os.getenv("OLLAMA_PATH") or "ollama",
            mongodb_uri=os.getenv("MONGODB_URI") or None,
            mongodb_db=os.getenv("MONGODB_DB", "fixmate"),
            history_max_turns=clamp_max_turns(_int_env("HISTORY_MAX_TURNS", DEFAULT_MAX_TURNS)),
            auth_secret=os.getenv("AUTH_SECRET") or None,
            environment=(_first_env("APP_ENV", "NODE_ENV") or "production").strip().lower(),
            cors_origins=origins or ("*",),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def backend(self) -> str:
        # local_only wins over demo
        if self.local_only:
            return "ollama"
        if self.demo:
            return "demo"
        return "gemini"


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stderr handler to the ``fixmate`` logger."""
    logger = logging.getLogger("fixmate")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
        logger.addHandler(handler)
