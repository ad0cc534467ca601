import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests
from google import genai
from google.genai import types
from openai import OpenAI

from .config import Settings
from .errors import ImageSynthesisError

logger = logging.getLogger(__name__)


class ImageModelAdapter(ABC):
    @abstractmethod
    def generate_image(self, prompt: str, **kwargs) -> bytes:
        """Generates an image and returns its raw bytes. Raises ImageSynthesisError when none comes back."""


class GoogleGeminiAdapter(ImageModelAdapter):
    """Gemini image model. It has no size parameter: the canvas size travels in the prompt."""

    def __init__(self, api_key: Optional[str], model_id: str = "gemini-3-pro-image-preview", client=None):
        if client is None and not api_key:
            raise ValueError("GEMINI_API_KEY not found in environment.")
        self.client = client or genai.Client(api_key=api_key)
        self.model_id = model_id

    def generate_image(self, prompt: str, **kwargs) -> bytes:
        logger.debug(f"[GoogleGeminiAdapter] Text-to-Image with {self.model_id}...")
        response = self.client.models.generate_content(
            model=self.model_id,
            contents=[prompt],
            config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
        )

        for candidate in response.candidates or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                if inline and inline.data and (inline.mime_type or "image/").startswith("image/"):
                    return inline.data

        raise ImageSynthesisError(f"No image data found in Gemini response from {self.model_id}")


class OpenAIAdapter(ImageModelAdapter):
    def __init__(self, api_key: Optional[str], model_id: str = "dall-e-3", size: str = "1792x1024",
                 timeout: float = 30.0, client=None):
        self.client = client or OpenAI(api_key=api_key)
        self.model_id = model_id
        self.size = size
        self.timeout = timeout

    def generate_image(self, prompt: str, **kwargs) -> bytes:
        response = self.client.images.generate(
            model=self.model_id,
            prompt=prompt,
            n=1,
            size=self.size,
            quality="hd",
        )
        url = response.data[0].url if response.data else None
        if not url:
            raise ImageSynthesisError(f"No image URL in {self.model_id} response")
        r = requests.get(url, timeout=self.timeout)
        r.raise_for_status()
        return r.content


def get_image_adapter(settings: Settings) -> ImageModelAdapter:
    provider = settings.image_provider
    if provider == "gemini":
        return GoogleGeminiAdapter(settings.gemini_api_key, model_id=settings.gemini_image_model)
    if provider == "openai":
        return OpenAIAdapter(settings.openai_api_key, timeout=settings.http_timeout)
    raise ValueError(f"Provider {provider} not supported.")
