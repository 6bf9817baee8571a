from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv


load_dotenv()


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _log_level(raw: str) -> str:
    level = raw.strip().upper()
    return level if level in LOG_LEVELS else "INFO"


def _split_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


class Settings:
    """Application settings loaded from environment variables.

    Keep all credentials and config centralized here.
    """

    def __init__(self) -> None:
        self.gemini_api_key: Optional[str] = os.getenv("GEMINI_API_KEY") or None
        self.gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
        self.temperature: Optional[float] = _optional_float("MODEL_TEMPERATURE")
        self.top_p: Optional[float] = _optional_float("MODEL_TOP_P")
        self.system_prompt: Optional[str] = os.getenv("SYSTEM_PROMPT") or None
        self.history_turns: int = int(os.getenv("CHAT_HISTORY_TURNS", "0"))

        self.session_max_count: int = int(os.getenv("SESSION_MAX_COUNT", "1000"))
        self.session_idle_timeout: float = float(
            os.getenv("SESSION_IDLE_TIMEOUT_SECONDS", "3600")
        )

        self.cors_allow_origins: List[str] = _split_origins(
            os.getenv("CORS_ALLOW_ORIGINS", "*")
        )
        self.host: str = os.getenv("HOST", "0.0.0.0")
        self.port: int = int(os.getenv("PORT", "9090"))
        self.log_level: str = _log_level(os.getenv("LOG_LEVEL", "INFO"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
