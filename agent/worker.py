import logging
from functools import lru_cache

from celery import Celery
from celery.utils.log import get_task_logger
from dotenv import load_dotenv

from notes2comic.adapters import get_image_adapter
from notes2comic.analyzer import ContentAnalyzer
from notes2comic.character import CharacterReferenceExtractor
from notes2comic.config import Settings
from notes2comic.extractor import ContentExtractor
from notes2comic.jobs import ComicPipeline
from notes2comic.llm import get_chat_model
from notes2comic.prompts import PromptBuilder
from notes2comic.scripts import ScriptGenerator
from notes2comic.steps import RetryingStepRunner, RetryPolicy
from notes2comic.storage import LocalStorage, S3Storage
from notes2comic.store import InMemoryComicStore, S3ComicStore
from notes2comic.synthesizer import PanelImageSynthesizer
from notes2comic.text_detection import TextBoxDetector

load_dotenv(override=True)

settings = Settings.from_env()
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

celery_app = Celery(
    "notes2comic",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

logger = get_task_logger(__name__)


def build_pipeline(settings: Settings) -> ComicPipeline:
    """Wires every collaborator from configuration."""
    if settings.storage_backend == "s3":
        storage = S3Storage(settings.aws_bucket, settings.aws_region)
    else:
        storage = LocalStorage(settings.upload_dir, settings.upload_base_url)

    if settings.store_backend == "s3":
        store = S3ComicStore(settings.aws_bucket, settings.aws_region)
    elif settings.store_backend == "memory":
        # Only comics created inside this process are visible to the tasks.
        logger.warning("[build_pipeline] Using the in-memory comic store; comics created elsewhere will not be found")
        store = InMemoryComicStore()
    else:
        raise ValueError(f"Unknown COMIC_STORE_BACKEND: {settings.store_backend}")

    text_llm = get_chat_model(settings, "text", temperature=0.2)
    vision_llm = get_chat_model(settings, "vision", temperature=0)
    policy = RetryPolicy(max_attempts=settings.step_max_attempts, base_delay=settings.step_base_delay)

    return ComicPipeline(
        store=store,
        extractor=ContentExtractor(vision_llm, storage, timeout=settings.http_timeout),
        analyzer=ContentAnalyzer(text_llm),
        script_generator=ScriptGenerator(text_llm),
        reference_extractor=CharacterReferenceExtractor(vision_llm, storage, timeout=settings.http_timeout),
        synthesizer=PanelImageSynthesizer(get_image_adapter(settings), storage, PromptBuilder()),
        text_detector=TextBoxDetector(vision_llm, storage, timeout=settings.http_timeout),
        step_runner_factory=lambda: RetryingStepRunner(policy=policy),
        narrative_max_entries=settings.narrative_max_entries,
        narrative_max_chars=settings.narrative_max_chars,
        project_name=settings.langchain_project,
    )


@lru_cache(maxsize=1)
def get_pipeline() -> ComicPipeline:
    return build_pipeline(settings)


# Retries happen per step inside the pipeline, so the tasks never auto-retry.

@celery_app.task(name="notes2comic.generate_comic")
def generate_comic_async(comic_id, input_ref, input_type, options=None):
    logger.info(f"--- GENERATE TASK: comic {comic_id} ({input_type}) ---")
    get_pipeline().generate_comic(comic_id, input_ref, input_type, options)
    return {"comic_id": comic_id, "status": "completed"}


@celery_app.task(name="notes2comic.regenerate_panel")
def regenerate_panel_async(comic_id, panel_id, include_context=True, art_style=None):
    logger.info(f"--- REGENERATE TASK: panel {panel_id} of comic {comic_id} ---")
    image_url = get_pipeline().regenerate_panel(comic_id, panel_id, include_context=include_context, art_style=art_style)
    return {"comic_id": comic_id, "panel_id": panel_id, "image_url": image_url}


@celery_app.task(name="notes2comic.detect_panel_text")
def detect_panel_text_async(comic_id, panel_id):
    boxes = get_pipeline().detect_panel_text(comic_id, panel_id)
    logger.info(f"Detected {len(boxes)} text box(es) on panel {panel_id}")
    return {"comic_id": comic_id, "panel_id": panel_id, "text_boxes": [b.model_dump() for b in boxes]}
