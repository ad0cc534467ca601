from langchain_core.language_models.fake_chat_models import FakeListChatModel

from conftest import REFERENCE_JSON, FailingChatModel, png_bytes
from notes2comic.character import CharacterReferenceExtractor
from notes2comic.text_detection import TextBoxDetector


def test_reference_from_panel(storage):
    url = storage.upload(png_bytes(), "panel-1.png", "panels")
    extractor = CharacterReferenceExtractor(FakeListChatModel(responses=[f"```json\n{REFERENCE_JSON}\n```"]), storage)
    assert extractor.from_url(url) == "Teen student with short red hair, round glasses and a green hoodie"


def test_reference_failures_return_empty(storage):
    url = storage.upload(png_bytes(), "panel-1.png", "panels")

    assert CharacterReferenceExtractor(FailingChatModel(), storage).from_url(url) == ""
    assert CharacterReferenceExtractor(FakeListChatModel(responses=["a girl, I think"]), storage).from_url(url) == ""
    assert CharacterReferenceExtractor(FakeListChatModel(responses=['{"characterReference": 42}']), storage).from_url(url) == ""
    assert CharacterReferenceExtractor(FakeListChatModel(responses=[REFERENCE_JSON]), storage).from_url(
        "/uploads/panels/missing.png"
    ) == ""


def test_detects_text_boxes(storage):
    url = storage.upload(png_bytes(), "panel-1.png", "panels")
    reply = """{"textBoxes": [
        {"text": "Hello!", "x": 12.5, "y": 8, "width": 30, "height": 10, "confidence": 0.92},
        {"text": "Off the edge", "x": 120, "y": -4, "width": 50, "height": 10, "confidence": 3},
        {"text": "   ", "x": 1, "y": 1, "width": 1, "height": 1}
    ]}"""
    boxes = TextBoxDetector(FakeListChatModel(responses=[reply]), storage).detect_text_boxes(url)

    assert [b.text for b in boxes] == ["Hello!", "Off the edge"]
    assert boxes[0].x == 12.5 and boxes[0].confidence == 0.92
    assert boxes[1].x == 100.0 and boxes[1].y == 0.0 and boxes[1].confidence == 1.0
    assert boxes[0].id != boxes[1].id


def test_detection_failures_return_empty(storage):
    url = storage.upload(png_bytes(), "panel-1.png", "panels")

    assert TextBoxDetector(FailingChatModel(), storage).detect_text_boxes(url) == []
    assert TextBoxDetector(FakeListChatModel(responses=["no text here"]), storage).detect_text_boxes(url) == []
    assert TextBoxDetector(FakeListChatModel(responses=['{"textBoxes": []}']), storage).detect_text_boxes(
        "/uploads/panels/missing.png"
    ) == []
