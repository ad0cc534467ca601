import pytest

import worker
from conftest import FakeImageAdapter
from notes2comic.config import Settings
from notes2comic.jobs import ComicPipeline
from notes2comic.models import ComicStatus
from notes2comic.storage import LocalStorage
from notes2comic.store import InMemoryComicStore


@pytest.fixture
def pipeline(make_pipeline, monkeypatch):
    built = make_pipeline(adapter=FakeImageAdapter())
    monkeypatch.setattr(worker, "get_pipeline", lambda: built)
    return built


def test_generate_task_runs_pipeline(pipeline, store, biology_comic, notes_url):
    result = worker.generate_comic_async.apply(
        args=["c1", notes_url, "text", {"subject": "Biology", "art_style": "manga"}]
    ).get()

    assert result == {"comic_id": "c1", "status": "completed"}
    assert store.get_comic("c1").status == ComicStatus.COMPLETED
    assert len(store.list_panels("c1")) == 4


def test_generate_task_propagates_failure(pipeline, store, biology_comic, notes_url):
    outcome = worker.generate_comic_async.apply(args=["c1", notes_url, "video"])

    assert outcome.failed()
    assert store.get_comic("c1").status == ComicStatus.FAILED


def test_regenerate_and_detect_tasks(pipeline, store, biology_comic, notes_url):
    worker.generate_comic_async.apply(args=["c1", notes_url, "text"]).get()
    panel = store.list_panels("c1")[0]

    regenerated = worker.regenerate_panel_async.apply(args=["c1", panel.id]).get()
    detected = worker.detect_panel_text_async.apply(args=["c1", panel.id]).get()

    assert regenerated["image_url"] == store.get_panel("c1", panel.id).image_url
    assert store.get_panel("c1", panel.id).regeneration_count == 1
    assert detected == {"comic_id": "c1", "panel_id": panel.id, "text_boxes": []}


def test_build_pipeline_wires_local_backends(tmp_path, monkeypatch):
    monkeypatch.setattr(worker, "get_chat_model", lambda settings, purpose="text", temperature=0.2: object())
    monkeypatch.setattr(worker, "get_image_adapter", lambda settings: FakeImageAdapter())
    settings = Settings(upload_dir=str(tmp_path), store_backend="memory", step_max_attempts=5)

    built = worker.build_pipeline(settings)

    assert isinstance(built, ComicPipeline)
    assert isinstance(built.store, InMemoryComicStore)
    assert isinstance(built.synthesizer.storage, LocalStorage)
    assert built.step_runner_factory().policy.max_attempts == 5


def test_settings_from_env(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("COMIC_STORE_BACKEND", raising=False)
    monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
    monkeypatch.setenv("TEXT_MODEL_PROVIDER", "OpenAI")
    monkeypatch.setenv("STEP_MAX_ATTEMPTS", "4")
    monkeypatch.setenv("NARRATIVE_MAX_CHARS", "")

    settings = Settings.from_env()

    assert settings.gemini_api_key == "g-key"
    assert settings.text_provider == "openai"
    assert settings.step_max_attempts == 4
    assert settings.narrative_max_chars == 1500
    assert settings.store_backend == "s3"


def test_worker_defaults_to_s3_store_and_needs_a_bucket(tmp_path, monkeypatch):
    monkeypatch.setattr(worker, "get_chat_model", lambda settings, purpose="text", temperature=0.2: object())
    monkeypatch.setattr(worker, "get_image_adapter", lambda settings: FakeImageAdapter())
    settings = Settings(upload_dir=str(tmp_path))

    assert settings.store_backend == "s3"
    with pytest.raises(ValueError, match="AWS_STORAGE_BUCKET_NAME"):
        worker.build_pipeline(settings)


def test_unknown_store_backend_is_rejected(tmp_path):
    with pytest.raises(ValueError, match="COMIC_STORE_BACKEND"):
        worker.build_pipeline(Settings(upload_dir=str(tmp_path), store_backend="sqlite"))
