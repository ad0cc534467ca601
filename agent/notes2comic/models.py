import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, TypedDict, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import InvalidStatusTransition

ArtStyle = Literal["retro", "manga", "minimal", "pixel", "noir", "watercolor", "anime", "popart"]
Tone = Literal["funny", "serious", "friendly", "adventure", "romantic", "horror"]
OutputFormat = Literal["strip", "separate", "fullpage"]
PageSize = Literal["letter", "a4", "tabloid", "a3"]
BorderStyle = Literal["straight", "jagged", "zigzag", "wavy"]

MIN_PANELS = 1
MAX_PANELS = 12
DEFAULT_PANEL_COUNT = 4


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def flatten_text(value) -> str:
    """Models sometimes answer with a list of lines or {speaker, text} objects."""
    if value is None:
        return ""
    if isinstance(value, dict):
        speaker = value.get("speaker") or value.get("character")
        text = value.get("text") or value.get("line") or ""
        return f"{speaker}: {text}" if speaker else str(text)
    if isinstance(value, list):
        return " ".join(flatten_text(v) for v in value if v)
    return str(value)


class ComicStatus(str, Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    ComicStatus.DRAFT: {ComicStatus.GENERATING},
    ComicStatus.GENERATING: {ComicStatus.COMPLETED, ComicStatus.FAILED},
    ComicStatus.COMPLETED: set(),
    ComicStatus.FAILED: set(),
}


def check_transition(current: ComicStatus, target: ComicStatus):
    # Re-entering the same state keeps retried steps idempotent.
    if current == target:
        return
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransition(current.value, target.value)


class InputType(str, Enum):
    TEXT = "text"
    PDF = "pdf"
    IMAGE = "image"
    VIDEO = "video"


class GenerationOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    subject: str = "General"
    art_style: ArtStyle = Field("retro", alias="artStyle")
    tone: Tone = "friendly"
    length: Literal["short", "medium", "long"] = "medium"
    output_format: OutputFormat = Field("separate", alias="outputFormat")
    page_size: PageSize = Field("letter", alias="pageSize")
    requested_panel_count: Optional[int] = Field(None, alias="requestedPanelCount")
    border_style: BorderStyle = Field("straight", alias="borderStyle")
    show_captions: bool = Field(False, alias="showCaptions")


class ContentAnalysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key_concepts: List[str] = Field(alias="keyConcepts")
    narrative_structure: str = Field(alias="narrativeStructure")
    suggested_panel_count: int = Field(alias="suggestedPanelCount")

    @field_validator("key_concepts", mode="before")
    @classmethod
    def _concepts_as_strings(cls, value):
        if isinstance(value, str):
            value = [value]
        return [str(v).strip() for v in value if str(v).strip()]

    @field_validator("suggested_panel_count")
    @classmethod
    def _clamp_count(cls, value: int) -> int:
        return max(MIN_PANELS, min(MAX_PANELS, value))


class PanelScript(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    panel_number: int = Field(alias="panelNumber")
    description: str
    dialogue: str = ""
    visual_elements: str = Field(default="", alias="visualElements")

    @field_validator("dialogue", "visual_elements", mode="before")
    @classmethod
    def _flatten_text(cls, value):
        return flatten_text(value)


class DetectedTextBox(BaseModel):
    id: str = Field(default_factory=new_id)
    text: str
    x: float
    y: float
    width: float
    height: float
    confidence: float = 1.0

    @field_validator("x", "y", "width", "height")
    @classmethod
    def _percent(cls, value: float) -> float:
        return max(0.0, min(100.0, value))

    @field_validator("confidence")
    @classmethod
    def _unit(cls, value: float) -> float:
        return max(0.0, min(1.0, value))


class Comic(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    title: str = ""
    status: ComicStatus = ComicStatus.DRAFT
    input_type: InputType = InputType.TEXT
    input_url: Optional[str] = None
    options: GenerationOptions = Field(default_factory=GenerationOptions)
    character_reference: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Panel(BaseModel):
    id: str = Field(default_factory=new_id)
    comic_id: str
    panel_number: int
    image_url: str
    caption: str = ""
    scene_description: str = ""
    speech_bubbles: List[Dict[str, Any]] = Field(default_factory=list)
    bubble_positions: List[Dict[str, Any]] = Field(default_factory=list)
    detected_text_boxes: List[DetectedTextBox] = Field(default_factory=list)
    regeneration_count: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class PanelHistoryEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    panel_id: str
    comic_id: str
    version_number: int
    image_url: str
    caption: str = ""
    scene_description: str = ""
    speech_bubbles: List[Dict[str, Any]] = Field(default_factory=list)
    bubble_positions: List[Dict[str, Any]] = Field(default_factory=list)
    detected_text_boxes: List[DetectedTextBox] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def snapshot(cls, panel: Panel, version_number: int) -> "PanelHistoryEntry":
        return cls(
            panel_id=panel.id,
            comic_id=panel.comic_id,
            version_number=version_number,
            image_url=panel.image_url,
            caption=panel.caption,
            scene_description=panel.scene_description,
            speech_bubbles=list(panel.speech_bubbles),
            bubble_positions=list(panel.bubble_positions),
            detected_text_boxes=list(panel.detected_text_boxes),
            metadata=dict(panel.metadata),
        )


class PanelImageResult(BaseModel):
    url: str
    prompt: str
    placeholder: bool = False
    error: Optional[str] = None


class PipelineState(TypedDict, total=False):
    comic_id: str
    input_ref: str
    input_type: str
    # Raw dict or None until mark_generating resolves it.
    options: Union[GenerationOptions, Dict[str, Any], None]
    started_at: float
    content: str
    analysis: ContentAnalysis
    scripts: List[PanelScript]
    character_reference: str
    panel_count: int
    current_step: str
