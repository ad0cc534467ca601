import logging
import os
import tempfile
from typing import Optional

from langchain_community.document_loaders import PyPDFLoader
from langchain_core.language_models.chat_models import BaseChatModel

from .errors import ExtractionError, UnsupportedInputError
from .imaging import image_mime_type
from .llm import invoke_with_image
from .models import InputType
from .storage import ObjectStorage, load_bytes

logger = logging.getLogger(__name__)

OCR_PROMPT = (
    "Extract all text from this image. Include handwritten notes, printed text, and any labels. "
    "Preserve the structure and organization of the content."
)


class ContentExtractor:
    """Turns an uploaded artifact (text, PDF or image) into plain text."""

    def __init__(self, llm: BaseChatModel, storage: Optional[ObjectStorage] = None, timeout: float = 30.0):
        self.llm = llm
        self.storage = storage
        self.timeout = timeout

    def extract(self, ref: str, input_type) -> str:
        try:
            input_type = InputType(input_type)
        except ValueError:
            raise UnsupportedInputError(f"Unsupported input type: {input_type}") from None
        if input_type == InputType.VIDEO:
            raise UnsupportedInputError(
                "Video processing is not yet supported. Please use text, PDF, or image input instead."
            )

        data = self._load(ref)
        logger.info(f"[ContentExtractor] Extracting {input_type.value} content from {ref[:80]} ({len(data)} bytes)")

        if input_type == InputType.TEXT:
            text = self._decode_text(data)
        elif input_type == InputType.PDF:
            text = self._pdf_text(data)
        else:
            text = self._image_text(data)

        text = text.strip()
        if not text:
            raise ExtractionError(f"No text could be extracted from {ref}")
        return text

    def _load(self, ref: str) -> bytes:
        try:
            return load_bytes(ref, self.storage, timeout=self.timeout)
        except Exception as e:
            raise ExtractionError(f"Could not read input {ref}: {e}") from e

    @staticmethod
    def _decode_text(data: bytes) -> str:
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ExtractionError(f"Text input is not valid UTF-8: {e}") from e

    @staticmethod
    def _pdf_text(data: bytes) -> str:
        # PyPDFLoader reads from a path, so the bytes go through a temp file.
        fd, path = tempfile.mkstemp(suffix=".pdf")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            pages = [doc.page_content for doc in PyPDFLoader(path).lazy_load()]
        except Exception as e:
            raise ExtractionError(f"Could not parse PDF: {e}") from e
        finally:
            os.remove(path)
        logger.debug(f"[ContentExtractor] PDF has {len(pages)} page(s)")
        return "\n\n".join(p.strip() for p in pages if p and p.strip())

    def _image_text(self, data: bytes) -> str:
        try:
            return invoke_with_image(self.llm, OCR_PROMPT, data, image_mime_type(data))
        except Exception as e:
            raise ExtractionError(f"Image transcription failed: {e}") from e
