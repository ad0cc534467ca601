import logging
import textwrap
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError
from PIL.PngImagePlugin import PngInfo

from .errors import ImageSynthesisError

logger = logging.getLogger(__name__)

# Landscape page sizes in pixels at 96 DPI.
PAPER_SIZE_DIMENSIONS = {
    "letter": (1056, 816),   # 11 x 8.5 in
    "a4": (1123, 794),       # 11.69 x 8.27 in
    "tabloid": (1632, 1056), # 17 x 11 in
    "a3": (1587, 1123),      # 16.54 x 11.69 in
}
SEPARATE_PANEL_DIMENSIONS = (1056, 816)

PAPER_SIZE_LABELS = {
    "letter": "11x8.5 inch landscape",
    "a4": "11.69x8.27 inch landscape",
    "tabloid": "17x11 inch landscape",
    "a3": "16.54x11.69 inch landscape",
}

FONT_PATHS = [
    "arial.ttf",
    "C:\\Windows\\Fonts\\arial.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
]

PAD_COLOR = (255, 255, 255)


def target_dimensions(page_size: Optional[str] = "letter", output_format: Optional[str] = "separate") -> Tuple[int, int]:
    if output_format == "separate" or page_size == "separate":
        return SEPARATE_PANEL_DIMENSIONS
    return PAPER_SIZE_DIMENSIONS.get(page_size or "letter", PAPER_SIZE_DIMENSIONS["letter"])


def describe_dimensions(page_size: Optional[str] = "letter", output_format: Optional[str] = "separate") -> str:
    width, height = target_dimensions(page_size, output_format)
    if output_format == "separate":
        return f"{width}x{height} pixels (landscape)"
    label = PAPER_SIZE_LABELS.get(page_size or "letter", PAPER_SIZE_LABELS["letter"])
    return f"{width}x{height} pixels ({label})"


def _flatten(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, PAD_COLOR)
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return img.convert("RGB")


def normalize_image(image_bytes: bytes, page_size: Optional[str] = "letter",
                    output_format: Optional[str] = "separate", pnginfo: Optional[PngInfo] = None) -> bytes:
    """Fits the image inside the target rectangle and pads the rest ("contain").

    Never crops: the prompt works hard to keep bubbles and limbs in frame.
    """
    size = target_dimensions(page_size, output_format)
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            img.load()
            img = ImageOps.exif_transpose(img)
            logger.debug(f"[normalize_image] {img.size} -> {size}")
            canvas = ImageOps.pad(_flatten(img), size, method=Image.Resampling.LANCZOS, color=PAD_COLOR)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageSynthesisError(f"Could not decode generated image: {e}") from e

    buffer = BytesIO()
    canvas.save(buffer, format="PNG", optimize=True, pnginfo=pnginfo)
    return buffer.getvalue()


def image_mime_type(image_bytes: bytes, default: str = "image/png") -> str:
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            return Image.MIME.get(img.format, default)
    except (UnidentifiedImageError, OSError):
        return default


def _load_font(size: int):
    for path in FONT_PATHS:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    try:
        return ImageFont.load_default(size=size)
    except TypeError:
        # Pillow < 10.1 has no sized default font.
        return ImageFont.load_default()


def _draw_centered(draw, canvas_width, y, text, font, fill):
    x = max(0, int((canvas_width - draw.textlength(text, font=font)) // 2))
    draw.text((x, y), text, fill=fill, font=font)


def _draw_wrapped(draw, xy, text, font, fill, width_chars, line_height, max_lines):
    x, y = xy
    lines = textwrap.wrap(text, width=width_chars)[:max_lines]
    for line in lines:
        draw.text((x, y), line, fill=fill, font=font)
        y += line_height
    return y


def render_placeholder(panel_number: int, art_style: str, description: str, dialogue: str,
                       page_size: Optional[str] = "letter", output_format: Optional[str] = "separate") -> bytes:
    """Deterministic fallback panel: same inputs always give the same PNG bytes.

    The text is also written into PNG text chunks so the panel stays recognizable
    without OCR.
    """
    width, height = 800, 600
    canvas = Image.new("RGB", (width, height), (240, 240, 240))
    draw = ImageDraw.Draw(canvas)
    draw.rectangle([20, 20, width - 20, height - 20], fill="white", outline="black", width=4)

    title_font = _load_font(24)
    body_font = _load_font(16)
    small_font = _load_font(14)

    _draw_centered(draw, width, 140, f"Panel {panel_number}", title_font, "#333333")
    _draw_centered(draw, width, 190, f"Style: {art_style}", body_font, "#666666")
    y = _draw_wrapped(draw, (50, 260), description, body_font, "#333333", 80, 22, 4)
    if dialogue:
        _draw_wrapped(draw, (50, y + 20), f'"{dialogue}"', small_font, "#666666", 90, 20, 4)
    _draw_centered(draw, width, 490, "AI image generation failed - using placeholder", small_font, "#999999")

    info = PngInfo()
    info.add_text("Placeholder", "true")
    info.add_text("PanelNumber", str(panel_number))
    info.add_text("Style", art_style)
    info.add_itxt("Description", description)
    info.add_itxt("Dialogue", dialogue or "")

    buffer = BytesIO()
    canvas.save(buffer, format="PNG")
    return normalize_image(buffer.getvalue(), page_size, output_format, pnginfo=info)
