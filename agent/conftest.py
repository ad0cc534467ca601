import io
import json

import pytest
from botocore.exceptions import ClientError
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from PIL import Image

from notes2comic.adapters import ImageModelAdapter
from notes2comic.analyzer import ContentAnalyzer
from notes2comic.character import CharacterReferenceExtractor
from notes2comic.errors import ImageSynthesisError
from notes2comic.extractor import ContentExtractor
from notes2comic.jobs import ComicPipeline
from notes2comic.models import Comic, GenerationOptions
from notes2comic.scripts import ScriptGenerator
from notes2comic.steps import RetryingStepRunner, RetryPolicy
from notes2comic.storage import LocalStorage
from notes2comic.store import InMemoryComicStore
from notes2comic.synthesizer import PanelImageSynthesizer
from notes2comic.text_detection import TextBoxDetector

BIOLOGY_NOTES = """Cells are the basic unit of life.
DNA stores the instructions a cell needs.
Proteins are built from those instructions.
Evolution explains how species change over time."""

ANALYSIS_JSON = json.dumps({
    "keyConcepts": ["Cells", "DNA", "Proteins", "Evolution"],
    "narrativeStructure": "A student shrinks down and tours a cell, reads its DNA, watches proteins being built and ends at the tree of life.",
    "suggestedPanelCount": 4,
})

SCRIPTS_JSON = json.dumps([
    {"panelNumber": 1, "description": "A student shrinks down next to a giant cell", "dialogue": "Whoa, a cell is huge up close!", "visualElements": "microscope, cell membrane"},
    {"panelNumber": 2, "description": "The student reads glowing DNA strands in the nucleus", "dialogue": "(Narration) This is the cell's instruction manual.", "visualElements": "double helix"},
    {"panelNumber": 3, "description": "Ribosomes assemble a protein chain", "dialogue": "Proteins get built right here.", "visualElements": "ribosome, amino acids"},
    {"panelNumber": 4, "description": "The student stands before the tree of life", "dialogue": "And that is how species change.", "visualElements": "branching tree"},
])

REFERENCE_JSON = json.dumps({"characterReference": "Teen student with short red hair, round glasses and a green hoodie"})


class FailingChatModel(BaseChatModel):
    """Chat model double whose every call raises."""

    @property
    def _llm_type(self) -> str:
        return "failing-chat-model"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        raise RuntimeError("model unavailable")


class FakeImageAdapter(ImageModelAdapter):
    """Returns a solid PNG per call; fails on the given 1-based call numbers."""

    def __init__(self, fail_on=(), size=(640, 480), color=(30, 90, 200)):
        self.fail_on = set(fail_on)
        self.size = size
        self.color = color
        self.prompts = []

    def generate_image(self, prompt: str, **kwargs) -> bytes:
        self.prompts.append(prompt)
        if len(self.prompts) in self.fail_on:
            raise ImageSynthesisError(f"simulated failure on call {len(self.prompts)}")
        return png_bytes(self.size, self.color)


class FakeS3Client:
    """Dict-backed stand-in for the boto3 S3 client calls the code makes."""

    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.objects[(Bucket, Key)] = Body if isinstance(Body, bytes) else Body.encode("utf-8")
        return {}

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)
        return {}


def png_bytes(size=(640, 480), color=(30, 90, 200)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def no_sleep_runner(max_attempts=3):
    return RetryingStepRunner(policy=RetryPolicy(max_attempts=max_attempts, base_delay=0), sleep=lambda _: None)


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "uploads"), "/uploads")


@pytest.fixture
def store():
    return InMemoryComicStore()


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def notes_url(storage):
    return storage.upload(BIOLOGY_NOTES.encode("utf-8"), "biology-notes.txt", "inputs")


@pytest.fixture
def biology_comic(store):
    return store.create_comic(Comic(id="c1", user_id="u1", title="Biology 101",
                                    options=GenerationOptions(subject="Biology")))


@pytest.fixture
def make_pipeline(store, storage):
    """Builds a pipeline around fake models. `runners` collects every step runner it hands out."""

    def build(adapter=None, text_llm=None, vision_llm=None, detector_llm=None, runners=None, max_attempts=3):
        text_llm = text_llm or FakeListChatModel(responses=[ANALYSIS_JSON, SCRIPTS_JSON])
        vision_llm = vision_llm or FakeListChatModel(responses=[REFERENCE_JSON])
        detector_llm = detector_llm or FakeListChatModel(responses=['{"textBoxes": []}'])
        adapter = adapter or FakeImageAdapter()
        collected = runners if runners is not None else []

        def runner_factory():
            runner = no_sleep_runner(max_attempts)
            collected.append(runner)
            return runner

        return ComicPipeline(
            store=store,
            extractor=ContentExtractor(vision_llm, storage),
            analyzer=ContentAnalyzer(text_llm),
            script_generator=ScriptGenerator(text_llm),
            reference_extractor=CharacterReferenceExtractor(vision_llm, storage),
            synthesizer=PanelImageSynthesizer(adapter, storage),
            text_detector=TextBoxDetector(detector_llm, storage),
            step_runner_factory=runner_factory,
        )

    return build
