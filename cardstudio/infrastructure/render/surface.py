# cardstudio/infrastructure/render/surface.py
import io
import logging
import os
from functools import lru_cache
from typing import List, Optional, Tuple

import numpy as np
from PIL import Image, ImageChops, ImageColor, ImageDraw, ImageFont

from cardstudio.config.settings import settings
from cardstudio.domain.scene import (
    ORIGIN_OFFSETS,
    BaseNode,
    CircleNode,
    GroupNode,
    ImageNode,
    RectNode,
    Scene,
    TextNode,
)

# --- Logger setup ---
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] [RENDER] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

Color = Tuple[int, int, int, int]
TRANSPARENT = (0, 0, 0, 0)


def parse_color(value: Optional[str]) -> Optional[Color]:
    if not value or value == "transparent":
        return None
    value = value.strip()
    if value.startswith("rgba(") and value.endswith(")"):
        # Editor colours carry a 0..1 alpha, which ImageColor does not accept.
        parts = [p.strip() for p in value[5:-1].split(",")]
        try:
            r, g, b = (int(float(p)) for p in parts[:3])
            a = float(parts[3])
        except (ValueError, IndexError):
            logger.debug(f"Unreadable colour '{value}'")
            return None
        return r, g, b, int(round((a if a <= 1 else a / 255) * 255))
    try:
        rgb = ImageColor.getrgb(value)
    except ValueError:
        logger.debug(f"Unreadable colour '{value}'")
        return None
    return rgb if len(rgb) == 4 else (*rgb, 255)


def _px(value: float) -> int:
    return max(1, int(round(value)))


@lru_cache(maxsize=64)
def load_font(family: str, size: int, bold: bool) -> ImageFont.ImageFont:
    names = [f"{family} Bold.ttf", f"{family}bd.ttf"] if bold else []
    names += [f"{family}.ttf", "DejaVuSans-Bold.ttf" if bold else "DejaVuSans.ttf"]
    for name in names:
        candidates = [os.path.join(settings.FONTS_DIR, name)] if settings.FONTS_DIR else []
        candidates.append(name)
        for candidate in candidates:
            try:
                return ImageFont.truetype(candidate, size)
            except OSError:
                continue
    logger.debug(f"No font file for '{family}', using Pillow's default font")
    return ImageFont.load_default(size=size)


def _is_bold(weight) -> bool:
    if isinstance(weight, (int, float)):
        return weight >= 600
    return str(weight).lower() in ("bold", "bolder", "600", "700", "800", "900")


def _wrap(text: str, font, max_width: float, draw: ImageDraw.ImageDraw) -> str:
    lines: List[str] = []
    for paragraph in text.split("\n"):
        line = ""
        for word in paragraph.split(" "):
            candidate = f"{line} {word}" if line else word
            if line and draw.textlength(candidate, font=font) > max_width:
                lines.append(line)
                line = word
            else:
                line = candidate
        lines.append(line)
    return "\n".join(lines)


def _draw_text(node: TextNode, sx: float, sy: float) -> Optional[Image.Image]:
    if not node.text:
        return None
    font = load_font(node.font_family, _px(node.font_size * sy), _is_bold(node.font_weight))
    measure = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    text = _wrap(node.text, font, node.width * sx, measure) if node.wraps and node.width > 0 else node.text
    _, _, right, bottom = measure.multiline_textbbox((0, 0), text, font=font, align=node.text_align)
    text_w, text_h = right, bottom
    box_w = max(_px(node.width * sx), _px(text_w)) if node.wraps else _px(text_w)
    layer = Image.new("RGBA", (box_w, _px(text_h)), TRANSPARENT)
    fill = parse_color(node.fill)
    if fill is None:
        return layer
    x = {"center": (box_w - text_w) / 2, "right": box_w - text_w}.get(node.text_align, 0)
    ImageDraw.Draw(layer).multiline_text((x, 0), text, font=font, fill=fill, align=node.text_align)
    return layer


def _draw_rect(node: RectNode, sx: float, sy: float) -> Image.Image:
    w, h = _px(node.width * sx), _px(node.height * sy)
    layer = Image.new("RGBA", (w, h), TRANSPARENT)
    outline = parse_color(node.stroke)
    stroke = _px(node.stroke_width * min(sx, sy)) if outline and node.stroke_width > 0 else 0
    ImageDraw.Draw(layer).rounded_rectangle((0, 0, w - 1, h - 1), radius=node.rx * sx,
                                            fill=parse_color(node.fill), outline=outline, width=stroke)
    return layer


def _draw_circle(node: CircleNode, sx: float, sy: float) -> Image.Image:
    width, height = node.box_size()
    w, h = _px(width * sx), _px(height * sy)
    layer = Image.new("RGBA", (w, h), TRANSPARENT)
    outline = parse_color(node.stroke)
    stroke = _px(node.stroke_width * min(sx, sy)) if outline and node.stroke_width > 0 else 0
    ImageDraw.Draw(layer).ellipse((0, 0, w - 1, h - 1), fill=parse_color(node.fill), outline=outline, width=stroke)
    return layer


def _clip_mask(clip: BaseNode, size: Tuple[int, int], sx: float, sy: float) -> Image.Image:
    """Mask for a clip shape given in the image's unscaled space, centred on the image."""
    w, h = size
    clip_w, clip_h = clip.scaled_size()
    clip_w, clip_h = clip_w * sx, clip_h * sy
    x0 = w / 2 + clip.left * sx - ORIGIN_OFFSETS.get(clip.origin_x, 0.0) * clip_w
    y0 = h / 2 + clip.top * sy - ORIGIN_OFFSETS.get(clip.origin_y, 0.0) * clip_h
    mask = Image.new("L", size, 0)
    draw = ImageDraw.Draw(mask)
    box = (x0, y0, x0 + clip_w, y0 + clip_h)
    if isinstance(clip, CircleNode):
        draw.ellipse(box, fill=255)
    else:
        draw.rectangle(box, fill=255)
    return mask


def _draw_image(node: ImageNode, images, sx: float, sy: float) -> Optional[Image.Image]:
    source = images.get(node.src) if images is not None else None
    if source is None:
        logger.warning(f"Image '{node.src[:70]}' is not loaded; skipping it.")
        return None
    width = node.width or source.width
    height = node.height or source.height
    size = (_px(width * sx), _px(height * sy))
    layer = source.convert("RGBA").resize(size, Image.Resampling.LANCZOS)
    if node.clip_path is not None:
        mask = _clip_mask(node.clip_path, size, sx, sy)
        layer.putalpha(ImageChops.multiply(layer.getchannel("A"), mask))
    return layer


def _draw_group(node: GroupNode, images, sx: float, sy: float) -> Image.Image:
    layer = Image.new("RGBA", (_px(node.width * sx), _px(node.height * sy)), TRANSPARENT)
    # Children are positioned relative to the group's centre.
    offset = (layer.width / 2, layer.height / 2)
    for child in node.objects:
        _paint(layer, child, images, offset, (sx, sy))
    return layer


def _fade(layer: Image.Image, opacity: float) -> Image.Image:
    rgba = np.array(layer, dtype=np.float32)
    rgba[..., 3] *= max(0.0, min(1.0, opacity))
    return Image.fromarray(rgba.round().astype(np.uint8))


def _composite(surface: Image.Image, layer: Image.Image, x: int, y: int) -> None:
    # alpha_composite refuses negative destinations, so crop the overhang instead.
    sx, sy = max(0, -x), max(0, -y)
    dx, dy = max(0, x), max(0, y)
    if sx >= layer.width or sy >= layer.height or dx >= surface.width or dy >= surface.height:
        return
    surface.alpha_composite(layer, dest=(dx, dy), source=(sx, sy))


def _paint(surface: Image.Image, node: BaseNode, images, offset: Tuple[float, float],
           parent_scale: Tuple[float, float]) -> None:
    if not node.visible or node.opacity <= 0:
        return
    sx, sy = node.scale_x * parent_scale[0], node.scale_y * parent_scale[1]
    if isinstance(node, TextNode):
        layer = _draw_text(node, sx, sy)
    elif isinstance(node, ImageNode):
        layer = _draw_image(node, images, sx, sy)
    elif isinstance(node, RectNode):
        layer = _draw_rect(node, sx, sy)
    elif isinstance(node, CircleNode):
        layer = _draw_circle(node, sx, sy)
    elif isinstance(node, GroupNode):
        layer = _draw_group(node, images, sx, sy)
    else:
        layer = None
    if layer is None:
        return

    # Box centre from the origin anchor, measured on the unrotated layer.
    cx = offset[0] + node.left * parent_scale[0] + (0.5 - ORIGIN_OFFSETS.get(node.origin_x, 0.0)) * layer.width
    cy = offset[1] + node.top * parent_scale[1] + (0.5 - ORIGIN_OFFSETS.get(node.origin_y, 0.0)) * layer.height

    if node.opacity < 1:
        layer = _fade(layer, node.opacity)
    if node.angle:
        layer = layer.rotate(-node.angle, resample=Image.Resampling.BICUBIC, expand=True)
    _composite(surface, layer, int(round(cx - layer.width / 2)), int(round(cy - layer.height / 2)))


def render_scene(scene: Scene, images=None, width: Optional[int] = None, height: Optional[int] = None) -> Image.Image:
    """Draw ``scene`` on a new RGBA surface.

    ``images`` maps an image node's ``src`` to a decoded PIL image (an
    AssetCache or a plain dict). Each call owns its surface, so calls may run
    in parallel threads.
    """
    w = _px(width or scene.width or settings.DEFAULT_CARD_WIDTH)
    h = _px(height or scene.height or settings.DEFAULT_CARD_HEIGHT)
    background = parse_color(scene.background_color) or (255, 255, 255, 255)
    surface = Image.new("RGBA", (w, h), background)
    for node in scene.objects:
        _paint(surface, node, images, (0.0, 0.0), (1.0, 1.0))
    return surface


def encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG", optimize=True)
    return buf.getvalue()


def flatten(img: Image.Image, background: Color = (255, 255, 255, 255)) -> Image.Image:
    """RGB copy of ``img`` composited over an opaque background."""
    if img.mode != "RGBA":
        return img.convert("RGB")
    base = Image.new("RGBA", img.size, background)
    base.alpha_composite(img)
    return base.convert("RGB")
