import base64
import logging
from typing import Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI

from .config import Settings

logger = logging.getLogger(__name__)


def get_chat_model(settings: Settings, purpose: str = "text", temperature: float = 0.2) -> BaseChatModel:
    """Builds the chat model used for text ("text") or image understanding ("vision")."""
    if settings.text_provider == "openai":
        return ChatOpenAI(model=settings.openai_model_id, temperature=temperature, api_key=settings.openai_api_key)
    if settings.text_provider == "gemini":
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY not found in environment.")
        model = settings.gemini_vision_model if purpose == "vision" else settings.gemini_text_model
        return ChatGoogleGenerativeAI(model=model, temperature=temperature, google_api_key=settings.gemini_api_key)
    raise ValueError(f"Provider {settings.text_provider} not supported.")


def message_text(response) -> str:
    """Returns the text of a chat response; newer Gemini models reply with a list of parts."""
    content = getattr(response, "content", response)
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        content = "".join(parts)
    return (content or "").strip()


def invoke_text(llm: BaseChatModel, prompt: str) -> str:
    return message_text(llm.invoke([HumanMessage(content=prompt)]))


def invoke_with_image(llm: BaseChatModel, prompt: str, image_bytes: bytes, mime_type: Optional[str] = None) -> str:
    img_data = base64.b64encode(image_bytes).decode("utf-8")
    message = HumanMessage(content=[
        {"type": "text", "text": prompt},
        {"type": "image_url", "image_url": {"url": f"data:{mime_type or 'image/png'};base64,{img_data}"}},
    ])
    return message_text(llm.invoke([message]))
