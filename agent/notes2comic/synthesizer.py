import logging
from typing import Optional

from .adapters import ImageModelAdapter
from .imaging import normalize_image, render_placeholder
from .models import GenerationOptions, PanelImageResult, PanelScript
from .prompts import PromptBuilder
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

PANEL_FOLDER = "panels"


class PanelImageSynthesizer:
    """Generates one panel image and stores it. Always resolves to a URL.

    When the image model fails, a placeholder carrying the panel text is stored
    instead and the result is flagged so callers can tell the two apart.
    """

    def __init__(self, adapter: ImageModelAdapter, storage: ObjectStorage,
                 prompt_builder: Optional[PromptBuilder] = None):
        self.adapter = adapter
        self.storage = storage
        self.prompt_builder = prompt_builder or PromptBuilder()

    def generate(
        self,
        script: PanelScript,
        options: GenerationOptions,
        art_style: Optional[str] = None,
        character_reference: Optional[str] = None,
        narrative: str = "",
        adjacent_context: str = "",
    ) -> PanelImageResult:
        art_style = art_style or options.art_style
        prompt = self.prompt_builder.build_panel_prompt(
            script,
            options,
            art_style=art_style,
            character_reference=character_reference,
            narrative=str(narrative or ""),
            adjacent_context=adjacent_context,
        )

        try:
            logger.info(f"[PanelImageSynthesizer] Generating panel {script.panel_number} ({art_style})")
            raw = self.adapter.generate_image(prompt)
            png = normalize_image(raw, options.page_size, options.output_format)
            url = self.storage.upload(png, f"panel-{script.panel_number}.png", PANEL_FOLDER)
            return PanelImageResult(url=url, prompt=prompt)
        except Exception as e:
            logger.warning(
                f"[PanelImageSynthesizer] Panel {script.panel_number} image generation failed, "
                f"using placeholder: {e}"
            )
            png = render_placeholder(
                script.panel_number, art_style, script.description, script.dialogue,
                options.page_size, options.output_format,
            )
            url = self.storage.upload(png, f"placeholder-panel-{script.panel_number}.png", PANEL_FOLDER)
            return PanelImageResult(url=url, prompt=prompt, placeholder=True, error=f"{type(e).__name__}: {e}")

    def generate_panel_image(self, script: PanelScript, art_style: str, character_context: Optional[str] = None,
                             options: Optional[GenerationOptions] = None) -> str:
        """URL-only form of `generate` for callers that hold a style and a layout."""
        options = options or GenerationOptions()
        return self.generate(script, options, art_style=art_style, character_reference=character_context).url
