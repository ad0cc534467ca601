import logging
from typing import Optional

from langchain_core.language_models.chat_models import BaseChatModel

from .imaging import image_mime_type
from .llm import invoke_with_image
from .parsing import parse_or_default
from .storage import ObjectStorage, load_bytes

logger = logging.getLogger(__name__)

PANEL_REFERENCE_PROMPT = """Analyze this comic panel image and provide a detailed character reference.

Describe:
1. Main character(s) appearance (hair, clothing, features)
2. Art style characteristics
3. Color palette
4. Proportions and poses

This reference will be used to maintain character consistency across all panels.
Respond in JSON format: {"characterReference": "detailed description"}"""

SOURCE_REFERENCE_PROMPT = """This image is the source material a comic will be drawn from.
Describe any people, mascots or recurring figures in it so an illustrator can draw them identically
in every panel: face, hair, clothing, colors, body proportions and distinctive accessories.
If there are no characters, describe the visual style and color palette the comic should carry over.

Respond in JSON format: {"characterReference": "detailed description"}"""


def _reference_from(data) -> str:
    if not isinstance(data, dict):
        raise ValueError("Character reference response is not a JSON object")
    value = data.get("characterReference") or ""
    if not isinstance(value, str):
        raise ValueError("characterReference is not a string")
    return value.strip()


class CharacterReferenceExtractor:
    """Describes the recurring characters of an image so later panels can match them.

    Every failure (unreadable image, model error, malformed reply) yields "".
    """

    def __init__(self, llm: BaseChatModel, storage: Optional[ObjectStorage] = None, timeout: float = 30.0):
        self.llm = llm
        self.storage = storage
        self.timeout = timeout

    def from_image_bytes(self, image_bytes: bytes, source: bool = False) -> str:
        prompt = SOURCE_REFERENCE_PROMPT if source else PANEL_REFERENCE_PROMPT
        try:
            raw = invoke_with_image(self.llm, prompt, image_bytes, image_mime_type(image_bytes))
        except Exception as e:
            logger.warning(f"[CharacterReferenceExtractor] Vision call failed: {e}")
            return ""
        return parse_or_default(raw, _reference_from, lambda _raw: "", label="character reference")

    def from_url(self, image_url: str, source: bool = False) -> str:
        try:
            image_bytes = load_bytes(image_url, self.storage, timeout=self.timeout)
        except Exception as e:
            logger.warning(f"[CharacterReferenceExtractor] Could not read {image_url[:80]}: {e}")
            return ""
        return self.from_image_bytes(image_bytes, source=source)
