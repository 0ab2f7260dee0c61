"""
Runtime configuration for printshop-erp.

Settings come from environment variables (optionally loaded from a ``.env``
file) and are read once per process.  AI features can be switched off
globally with ``AI_OFF`` (or the legacy ``NEXT_PUBLIC_AI_OFF``); when they are
off no request is ever sent to the model.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

INBOX_BUCKET = "inbox"
PROJECT_FILES_BUCKET = "project_files"


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///printshop_erp.db"
    openai_api_key: Optional[str] = None
    ai_model: str = "gpt-4o-mini"
    ai_vision_model: str = "gpt-4o"
    ai_reasoning_model: str = "gpt-4o"
    ai_search_model: str = "gpt-4o-mini-search-preview"
    ai_disabled: bool = False
    ai_max_retries: int = 2
    ai_retry_delay: float = 0.5
    ai_online_check_url: Optional[str] = None
    storage_endpoint_url: Optional[str] = None
    storage_public_url: Optional[str] = None
    storage_bucket_prefix: str = ""
    aws_region: str = "us-east-1"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            ai_model=os.getenv("AI_MODEL", cls.ai_model),
            ai_vision_model=os.getenv("AI_VISION_MODEL", cls.ai_vision_model),
            ai_reasoning_model=os.getenv("AI_REASONING_MODEL", cls.ai_reasoning_model),
            ai_search_model=os.getenv("AI_SEARCH_MODEL", cls.ai_search_model),
            ai_disabled=_truthy(os.getenv("AI_OFF")) or _truthy(os.getenv("NEXT_PUBLIC_AI_OFF")),
            ai_max_retries=int(os.getenv("AI_MAX_RETRIES", str(cls.ai_max_retries))),
            ai_retry_delay=float(os.getenv("AI_RETRY_DELAY", str(cls.ai_retry_delay))),
            ai_online_check_url=os.getenv("AI_ONLINE_CHECK_URL") or None,
            storage_endpoint_url=os.getenv("STORAGE_ENDPOINT_URL") or None,
            storage_public_url=os.getenv("STORAGE_PUBLIC_URL") or None,
            storage_bucket_prefix=os.getenv("STORAGE_BUCKET_PREFIX", ""),
            aws_region=os.getenv("AWS_DEFAULT_REGION", cls.aws_region),
        )

    @property
    def ai_configured(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, read from the environment on first use."""
    return Settings.from_env()
