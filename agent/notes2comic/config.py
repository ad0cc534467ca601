import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return float(value)


@dataclass
class Settings:
    """Runtime configuration, read from the environment (.env is loaded by the worker)."""
    gemini_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None

    text_provider: str = "gemini"
    image_provider: str = "gemini"
    gemini_text_model: str = "gemini-2.5-pro"
    gemini_vision_model: str = "gemini-2.5-pro"
    gemini_image_model: str = "gemini-3-pro-image-preview"
    openai_model_id: str = "gpt-4o-mini"

    storage_backend: str = "local"
    upload_dir: str = "./public/uploads"
    upload_base_url: str = "/uploads"
    aws_bucket: Optional[str] = None
    aws_region: Optional[str] = None
    store_backend: str = "s3"

    step_max_attempts: int = 3
    step_base_delay: float = 1.0
    http_timeout: float = 30.0
    narrative_max_entries: int = 6
    narrative_max_chars: int = 1500

    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: Optional[str] = None
    log_level: str = "INFO"
    langchain_project: str = "notes2comic"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            text_provider=os.getenv("TEXT_MODEL_PROVIDER", "gemini").lower(),
            image_provider=os.getenv("IMAGE_GEN_PROVIDER", "gemini").lower(),
            gemini_text_model=os.getenv("GEMINI_TEXT_MODEL", cls.gemini_text_model),
            gemini_vision_model=os.getenv("GEMINI_VISION_MODEL", cls.gemini_vision_model),
            gemini_image_model=os.getenv("GEMINI_IMAGE_MODEL", cls.gemini_image_model),
            openai_model_id=os.getenv("OPENAI_MODEL_ID", cls.openai_model_id),
            storage_backend=os.getenv("STORAGE_BACKEND", "local").lower(),
            upload_dir=os.getenv("UPLOAD_DIR", cls.upload_dir),
            upload_base_url=os.getenv("UPLOAD_BASE_URL", cls.upload_base_url),
            aws_bucket=os.getenv("AWS_STORAGE_BUCKET_NAME"),
            aws_region=os.getenv("AWS_REGION"),
            store_backend=os.getenv("COMIC_STORE_BACKEND", cls.store_backend).lower(),
            step_max_attempts=_env_int("STEP_MAX_ATTEMPTS", cls.step_max_attempts),
            step_base_delay=_env_float("STEP_BASE_DELAY", cls.step_base_delay),
            http_timeout=_env_float("HTTP_TIMEOUT_SECONDS", cls.http_timeout),
            narrative_max_entries=_env_int("NARRATIVE_MAX_ENTRIES", cls.narrative_max_entries),
            narrative_max_chars=_env_int("NARRATIVE_MAX_CHARS", cls.narrative_max_chars),
            celery_broker_url=os.getenv("CELERY_BROKER_URL", cls.celery_broker_url),
            celery_result_backend=os.getenv("CELERY_RESULT_BACKEND"),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            langchain_project=os.getenv("LANGCHAIN_PROJECT", cls.langchain_project),
        )
