from typing import Optional

from .imaging import describe_dimensions, target_dimensions
from .models import GenerationOptions, PanelScript

ART_STYLES = {
    "retro": "retro American comic book style, halftone dots, bold ink outlines, vintage four-color palette",
    "manga": "Japanese manga style, clean black linework, screentone shading, expressive faces",
    "minimal": "minimalist flat illustration, simple shapes, generous white space, limited palette",
    "pixel": "16-bit pixel art, crisp square pixels, limited retro game palette",
    "noir": "film noir comic, heavy blacks, high contrast chiaroscuro, moody lighting",
    "watercolor": "soft watercolor illustration, loose washes, visible paper texture",
    "anime": "modern anime style, cel shading, vibrant colors, large expressive eyes",
    "popart": "pop art style, Ben-Day dots, saturated primary colors, thick outlines",
}

TONES = {
    "funny": "light-hearted and humorous, playful expressions and visual gags",
    "serious": "thoughtful and serious, grounded expressions",
    "friendly": "warm, friendly and encouraging, suitable for learners of all ages",
    "adventure": "energetic and adventurous, dynamic action",
    "romantic": "gentle and heartfelt, soft emotional beats",
    "horror": "eerie and suspenseful, unsettling atmosphere without gore",
}

BORDER_STYLES = {
    "straight": "clean straight black panel border",
    "jagged": "jagged, torn-edge panel border",
    "zigzag": "zigzag panel border",
    "wavy": "wavy, hand-drawn panel border",
}

EDGE_PADDING_RATIO = 0.05


def style_descriptor(art_style: str) -> str:
    return ART_STYLES.get(art_style, f"{art_style} comic style")


class PromptBuilder:
    """Composes the layered image prompt for one panel."""

    def build_panel_prompt(
        self,
        script: PanelScript,
        options: GenerationOptions,
        art_style: Optional[str] = None,
        character_reference: Optional[str] = None,
        narrative: str = "",
        adjacent_context: str = "",
    ) -> str:
        art_style = art_style or options.art_style
        width, height = target_dimensions(options.page_size, options.output_format)
        padding = int(min(width, height) * EDGE_PADDING_RATIO)

        # Layer 1: canvas and style
        layers = [
            f"Create a {art_style} style comic panel illustration at exactly {describe_dimensions(options.page_size, options.output_format)}.",
            f"CANVAS: the image must be {width}x{height} pixels, landscape, filling the whole canvas.",
            f"Art style: {style_descriptor(art_style)}.",
            f"Tone: {TONES.get(options.tone, options.tone)}.",
        ]

        # Layer 2: scene
        layers.append(f"Scene description: {script.description}")
        if script.visual_elements:
            layers.append(f"Visual elements: {script.visual_elements}")
        if script.dialogue:
            layers.append(
                "SPEECH BUBBLE: render this exact dialogue, word for word, inside a filled comic speech bubble "
                f"with a tail pointing to the speaker: \"{script.dialogue}\". The text must be legible."
            )
        else:
            layers.append("No speech bubbles in this panel.")

        # Layer 3: composition rules
        layers.append(
            "COMPOSITION RULES (STRICT):\n"
            f"- Keep at least {padding}px of empty margin between the canvas edge and every character, object and speech bubble.\n"
            "- Center the main subject; frame characters fully, from the top of the head down to the hands and feet.\n"
            "- Never crop or cut off heads, hands, feet or speech bubbles at the canvas edge.\n"
            "- Every speech bubble and all of its text must sit completely inside the canvas."
        )
        layers.append(f"Panel border: {BORDER_STYLES.get(options.border_style, BORDER_STYLES['straight'])}.")
        if options.show_captions:
            layers.append(
                f"Caption box: add a small rectangular caption box in the top-left corner summarizing panel {script.panel_number}."
            )

        # Layer 4: consistency and continuity, only when available
        if character_reference:
            layers.append(
                "CHARACTER CONSISTENCY (match exactly, do not redesign):\n"
                f"{character_reference}"
            )
        if narrative:
            layers.append(f"NARRATIVE CONTINUITY (story so far): {narrative}")
        if adjacent_context:
            layers.append(f"ADJACENT PANELS: {adjacent_context}")

        return "\n\n".join(layers)
