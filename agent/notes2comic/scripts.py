import logging
import re
from typing import List

from langchain_core.language_models.chat_models import BaseChatModel

from .errors import ScriptParseError
from .llm import invoke_text
from .models import MIN_PANELS, ContentAnalysis, GenerationOptions, PanelScript
from .parsing import parse_or_default

logger = logging.getLogger(__name__)

ROLE_ANNOTATION = re.compile(r"\s*\((?:caption|dialogue|narration|thought)\)\s*", re.IGNORECASE)

SCRIPT_PROMPT = """Create a comic script with {count} panels.

Subject: {subject}
Tone: {tone}
Art style: {art_style}

Content to explain:
{narrative}

Key concepts to cover:
{concepts}

For each panel, provide:
- Panel number
- Visual description (what the scene looks like)
- Dialogue (what characters say, plain text only, no role labels such as "(caption)")
- Key visual elements (props, backgrounds, etc.)

Spread the key concepts across the panels in order, from the beginning of the content to the end.

Respond in JSON format as an array of exactly {count} panels with this structure:
[
  {{
    "panelNumber": 1,
    "description": "visual description of the scene",
    "dialogue": "what characters say in this panel",
    "visualElements": "key props and background elements"
  }}
]"""


def clean_dialogue(text: str) -> str:
    return ROLE_ANNOTATION.sub(" ", text or "").strip()


def target_panel_count(analysis: ContentAnalysis, options: GenerationOptions) -> int:
    target = options.requested_panel_count or analysis.suggested_panel_count
    return max(MIN_PANELS, target)


def fallback_script(index: int, analysis: ContentAnalysis, options: GenerationOptions) -> PanelScript:
    """Generic script for the panel at 0-based `index`, built from the concept at that position."""
    concept = analysis.key_concepts[index] if index < len(analysis.key_concepts) else None
    return PanelScript(
        panel_number=index + 1,
        description=f"Panel {index + 1} explaining {concept or 'concepts'}",
        dialogue=f"Let me explain about {concept or 'this topic'}...",
        visual_elements=options.art_style,
    )


class ScriptGenerator:
    def __init__(self, llm: BaseChatModel):
        self.llm = llm

    def generate(self, analysis: ContentAnalysis, options: GenerationOptions) -> List[PanelScript]:
        count = target_panel_count(analysis, options)
        prompt = SCRIPT_PROMPT.format(
            count=count,
            subject=options.subject,
            tone=options.tone,
            art_style=options.art_style,
            narrative=analysis.narrative_structure,
            concepts=", ".join(analysis.key_concepts),
        )
        raw = invoke_text(self.llm, prompt)

        def fallback(_raw: str) -> List[PanelScript]:
            return [fallback_script(i, analysis, options) for i in range(count)]

        scripts = parse_or_default(raw, self._validate, fallback, kind="array", label="panel script")
        return self._fit(scripts, count, analysis, options)

    @staticmethod
    def _validate(data) -> List[PanelScript]:
        if not isinstance(data, list):
            raise ScriptParseError("Script response is not a JSON array")
        scripts = []
        for i, item in enumerate(data):
            if not isinstance(item, dict):
                continue
            item = {"panelNumber": i + 1, **item}
            if not item.get("description"):
                continue
            scripts.append(PanelScript.model_validate(item))
        if not scripts:
            raise ScriptParseError("Script response holds no usable panels")
        return scripts

    def _fit(self, scripts: List[PanelScript], count: int,
             analysis: ContentAnalysis, options: GenerationOptions) -> List[PanelScript]:
        if len(scripts) != count:
            logger.warning(f"[ScriptGenerator] Model returned {len(scripts)} panel(s), expected {count}")
        scripts = scripts[:count]
        while len(scripts) < count:
            scripts.append(fallback_script(len(scripts), analysis, options))

        return [
            script.model_copy(update={"panel_number": i + 1, "dialogue": clean_dialogue(script.dialogue)})
            for i, script in enumerate(scripts)
        ]
