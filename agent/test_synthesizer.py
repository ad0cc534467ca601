from io import BytesIO

from PIL import Image

from conftest import FakeImageAdapter
from notes2comic.models import GenerationOptions, PanelScript
from notes2comic.prompts import PromptBuilder
from notes2comic.synthesizer import PanelImageSynthesizer

SCRIPT = PanelScript(
    panel_number=2,
    description="A scientist points at a giant DNA helix",
    dialogue="Every cell carries this code!",
    visual_elements="lab coat, glowing helix",
)


def test_prompt_layers():
    prompt = PromptBuilder().build_panel_prompt(SCRIPT, GenerationOptions(art_style="noir", tone="serious"))

    assert "1056x816 pixels (landscape)" in prompt
    assert "film noir comic" in prompt
    assert "Scene description: A scientist points at a giant DNA helix" in prompt
    assert '"Every cell carries this code!"' in prompt
    assert "lab coat, glowing helix" in prompt
    assert "40px" in prompt
    assert "Never crop or cut off heads, hands, feet or speech bubbles" in prompt
    assert "straight black panel border" in prompt
    for block in ("CHARACTER CONSISTENCY", "NARRATIVE CONTINUITY", "ADJACENT PANELS", "Caption box"):
        assert block not in prompt


def test_prompt_optional_blocks():
    options = GenerationOptions(output_format="strip", page_size="a3", border_style="wavy", show_captions=True)
    prompt = PromptBuilder().build_panel_prompt(
        SCRIPT,
        options,
        character_reference="Dr. Lee: grey bun, teal lab coat",
        narrative="Panel 1: The lab at night",
        adjacent_context="Previous panel: The lab at night",
    )

    assert "1587x1123 pixels (16.54x11.69 inch landscape)" in prompt
    assert "56px" in prompt
    assert "wavy" in prompt
    assert "Caption box" in prompt
    assert "CHARACTER CONSISTENCY" in prompt and "grey bun, teal lab coat" in prompt
    assert "NARRATIVE CONTINUITY (story so far): Panel 1: The lab at night" in prompt
    assert "ADJACENT PANELS: Previous panel: The lab at night" in prompt


def test_prompt_without_dialogue_asks_for_no_bubbles():
    silent = SCRIPT.model_copy(update={"dialogue": ""})
    assert "No speech bubbles" in PromptBuilder().build_panel_prompt(silent, GenerationOptions())


def test_successful_panel_is_normalized_and_uploaded(storage):
    adapter = FakeImageAdapter(size=(1024, 1024))
    result = PanelImageSynthesizer(adapter, storage).generate(SCRIPT, GenerationOptions(page_size="a4", output_format="fullpage"))

    assert not result.placeholder
    assert result.url.startswith("/uploads/panels/panel-2-")
    assert result.prompt == adapter.prompts[0]
    with Image.open(BytesIO(storage.read(result.url))) as img:
        assert img.size == (1123, 794)


def test_failure_resolves_to_placeholder(storage):
    adapter = FakeImageAdapter(fail_on={1})
    result = PanelImageSynthesizer(adapter, storage).generate(SCRIPT, GenerationOptions())

    assert result.placeholder
    assert "ImageSynthesisError" in result.error
    assert result.url.startswith("/uploads/panels/placeholder-panel-2-")
    with Image.open(BytesIO(storage.read(result.url))) as img:
        assert img.size == (1056, 816)
        assert img.text["Dialogue"] == "Every cell carries this code!"


def test_undecodable_model_output_resolves_to_placeholder(storage):
    class GarbageAdapter(FakeImageAdapter):
        def generate_image(self, prompt, **kwargs):
            self.prompts.append(prompt)
            return b"<html>quota exceeded</html>"

    result = PanelImageSynthesizer(GarbageAdapter(), storage).generate(SCRIPT, GenerationOptions())
    assert result.placeholder


def test_generate_panel_image_returns_url(storage):
    adapter = FakeImageAdapter()
    url = PanelImageSynthesizer(adapter, storage).generate_panel_image(
        SCRIPT, "pixel", character_context="Robot with one antenna"
    )

    assert url.startswith("/uploads/panels/")
    assert "16-bit pixel art" in adapter.prompts[0]
    assert "Robot with one antenna" in adapter.prompts[0]
