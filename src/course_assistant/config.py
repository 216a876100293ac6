"""Runtime settings resolved from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_TEXT_LENGTH = 50_000


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s=%r; using %s", name, value, default)
        return default


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s=%r; using %s", name, value, default)
        return default


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


@dataclass(slots=True, frozen=True)
class Settings:
    """Service configuration. Every field maps to one environment variable."""

    storage_dir: str = "data"
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    max_text_length: int = DEFAULT_MAX_TEXT_LENGTH
    enable_ocr: bool = False
    ocr_engine: str = "vision"
    ocr_language: str = "eng"
    vision_model: str = "gpt-4o"
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_timeout: Optional[float] = None
    llm_stub: bool = False
    chat_model: str = "gpt-4-turbo-preview"
    temperature: float = 0.7
    max_tokens: int = 2000
    history_limit: int = 10
    ingest_workers: int = 4
    rate_limit_cleanup_seconds: float = 600.0
    log_dir: str = "logs"
    courses_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            storage_dir=_env_str("STORAGE_DIR", defaults.storage_dir),
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", defaults.max_upload_bytes),
            max_text_length=_env_int("MAX_TEXT_LENGTH", defaults.max_text_length),
            enable_ocr=_env_flag("ENABLE_OCR", defaults.enable_ocr),
            ocr_engine=(_env_str("OCR_ENGINE", defaults.ocr_engine) or "vision").lower(),
            ocr_language=_env_str("OCR_LANG", defaults.ocr_language),
            vision_model=_env_str("VISION_MODEL", defaults.vision_model),
            openai_api_key=_env_str("OPENAI_API_KEY"),
            openai_base_url=_env_str("OPENAI_BASE_URL"),
            openai_timeout=_env_float("OPENAI_TIMEOUT", None),
            llm_stub=_env_flag("LLM_STUB", defaults.llm_stub),
            chat_model=_env_str("CHAT_MODEL", defaults.chat_model),
            temperature=_env_float("LLM_TEMPERATURE", defaults.temperature),
            max_tokens=_env_int("LLM_MAX_TOKENS", defaults.max_tokens),
            history_limit=_env_int("CHAT_HISTORY_LIMIT", defaults.history_limit),
            ingest_workers=max(1, _env_int("INGEST_WORKERS", defaults.ingest_workers)),
            rate_limit_cleanup_seconds=_env_float(
                "RATE_LIMIT_CLEANUP_SECONDS", defaults.rate_limit_cleanup_seconds
            ),
            log_dir=_env_str("LOG_DIR", defaults.log_dir),
            courses_file=_env_str("COURSES_FILE"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return process-wide settings, read once from the environment."""

    return Settings.from_env()
