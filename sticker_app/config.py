"""
Configuration

Reads service settings from the environment (and a local .env file).
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Settings(BaseModel):
    """Runtime settings for the API and the queue worker."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_image_model: str = "gpt-image-1"
    openai_image_size: str = "1024x1024"
    generation_timeout_seconds: float = Field(default=120.0, gt=0)

    queue_name: str = "sticker_tasks"
    bucket: str = "stickers"

    # Worker defaults (clamped again by the runner)
    worker_batch_size: int = 5
    worker_visibility_timeout: int = 60
    worker_max_attempts: int = 5
    worker_concurrency: int = Field(default=1, ge=1)
    worker_poll_interval: float = Field(default=5.0, gt=0)

    environment: str = "development"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            supabase_url=os.environ.get("SUPABASE_URL") or os.environ.get("NEXT_PUBLIC_SUPABASE_URL"),
            # Service role key for backend access
            supabase_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            openai_base_url=os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            openai_image_model=os.environ.get("OPENAI_IMAGE_MODEL", "gpt-image-1"),
            openai_image_size=os.environ.get("OPENAI_IMAGE_SIZE", "1024x1024"),
            generation_timeout_seconds=_env_float("GENERATION_TIMEOUT_SECONDS", 120.0),
            queue_name=os.environ.get("STICKER_QUEUE_NAME", "sticker_tasks"),
            bucket=os.environ.get("STICKER_BUCKET", "stickers"),
            worker_batch_size=_env_int("WORKER_BATCH_SIZE", 5),
            worker_visibility_timeout=_env_int("WORKER_VISIBILITY_TIMEOUT", 60),
            worker_max_attempts=_env_int("WORKER_MAX_ATTEMPTS", 5),
            worker_concurrency=_env_int("WORKER_CONCURRENCY", 1),
            worker_poll_interval=_env_float("WORKER_POLL_INTERVAL", 5.0),
            environment=os.environ.get("ENVIRONMENT", "development"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )

    def require_supabase(self) -> None:
        """Raise if the Supabase connection settings are missing."""
        if not self.supabase_url:
            raise ValueError("SUPABASE_URL is required")
        if not self.supabase_key:
            raise ValueError("SUPABASE_SERVICE_ROLE_KEY is required")
