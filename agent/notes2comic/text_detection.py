import logging
from typing import List, Optional

from langchain_core.language_models.chat_models import BaseChatModel

from .imaging import image_mime_type
from .llm import invoke_with_image
from .models import DetectedTextBox
from .parsing import parse_or_default
from .storage import ObjectStorage, load_bytes

logger = logging.getLogger(__name__)

DETECTION_PROMPT = """Find every piece of text rendered in this comic panel (speech bubbles, captions, signs, labels).

For each one return its text and its bounding box as percentages of the image size:
x and y are the top-left corner, width and height the box size, all between 0 and 100.
Add a confidence score between 0 and 1.

Respond in JSON format:
{"textBoxes": [{"text": "...", "x": 10.5, "y": 8.0, "width": 30.0, "height": 12.5, "confidence": 0.9}]}
If there is no text, respond with {"textBoxes": []}."""


def _boxes_from(data) -> List[DetectedTextBox]:
    if isinstance(data, dict):
        data = data.get("textBoxes", [])
    if not isinstance(data, list):
        raise ValueError("textBoxes is not a list")
    boxes = []
    for item in data:
        if isinstance(item, dict) and str(item.get("text", "")).strip():
            boxes.append(DetectedTextBox.model_validate(item))
    return boxes


class TextBoxDetector:
    def __init__(self, llm: BaseChatModel, storage: Optional[ObjectStorage] = None, timeout: float = 30.0):
        self.llm = llm
        self.storage = storage
        self.timeout = timeout

    def detect_text_boxes(self, image_url: str) -> List[DetectedTextBox]:
        """Locates rendered text in a panel image. Returns [] on any failure."""
        try:
            image_bytes = load_bytes(image_url, self.storage, timeout=self.timeout)
            raw = invoke_with_image(self.llm, DETECTION_PROMPT, image_bytes, image_mime_type(image_bytes))
        except Exception as e:
            logger.warning(f"[TextBoxDetector] Detection failed for {image_url[:80]}: {e}")
            return []
        boxes = parse_or_default(raw, _boxes_from, lambda _raw: [], label="text boxes")
        logger.info(f"[TextBoxDetector] Found {len(boxes)} text box(es)")
        return boxes
