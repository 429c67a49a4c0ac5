# cardstudio/domain/compiler.py
"""
Resolves a design against a subject record.

Text bound to a key (explicitly, or through ``{{key}}`` in its content) gets the
subject's value, and the first photo slot in paint order receives the subject's
photo, cover-fitted and clipped to the slot's shape.

Two modes share the same code:

* interactive (editor preview): bound text becomes read-only, the slot is
  hidden rather than removed, and every change is recorded so
  ``restore_preview`` can put the design back exactly;
* offline (batch rendering): the slot is dropped once the photo is placed.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple, Union

from cardstudio.domain.records import PHOTO_KEY, Subject
from cardstudio.domain.scene import (
    BaseNode,
    CircleNode,
    GroupNode,
    ImageNode,
    PreviewMemo,
    RectNode,
    Scene,
    SceneError,
    TextNode,
    deserialize,
    serialize,
    walk,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"{{(.*?)}}")


def placeholder_value(key: str) -> str:
    return f"Sample {key}"


def _resolve(subject: Subject, key: str) -> str:
    value = subject.get(key)
    if value is None:
        return placeholder_value(key)
    return str(value)


def substitute_text(node: TextNode, subject: Subject) -> Optional[str]:
    """New content for a bound text node, or None when the node is not bound."""
    if node.binding_key:
        return _resolve(subject, node.binding_key)
    if not PLACEHOLDER_PATTERN.search(node.text):
        return None

    def replace(match: re.Match) -> str:
        key = match.group(1).strip()
        return _resolve(subject, key) if key else match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, node.text)


@dataclass(frozen=True)
class PhotoFit:
    scale: float
    center_x: float
    center_y: float
    clip: Union[RectNode, CircleNode]

    def to_node(self, src: str, natural_width: int, natural_height: int, synthesized: bool = False) -> ImageNode:
        return ImageNode(
            src=src,
            width=natural_width,
            height=natural_height,
            left=self.center_x,
            top=self.center_y,
            origin_x="center",
            origin_y="center",
            scale_x=self.scale,
            scale_y=self.scale,
            clip_path=self.clip,
            selectable=False,
            evented=False,
            synthesized=synthesized,
        )


def fit_photo(slot: BaseNode, natural_width: float, natural_height: float, circular: bool = False) -> PhotoFit:
    """Cover-fit a photo of the given natural size into ``slot``.

    The clip shape lives in the image's own unscaled space (the renderer
    applies the image scale after clipping), hence the division by ``scale``.
    Circular slots are assumed square; their radius comes from the width.
    """
    if natural_width <= 0 or natural_height <= 0:
        raise ValueError(f"Photo has no area ({natural_width}x{natural_height})")
    slot_w, slot_h = slot.scaled_size()
    if slot_w <= 0 or slot_h <= 0:
        raise ValueError(f"Photo slot has no area ({slot_w}x{slot_h})")

    center_x, center_y = slot.center()
    scale = max(slot_w / natural_width, slot_h / natural_height)

    if circular:
        clip = CircleNode(radius=slot_w / 2 / scale, origin_x="center", origin_y="center", fill=None)
    else:
        clip = RectNode(width=slot_w / scale, height=slot_h / scale, origin_x="center", origin_y="center", fill=None)
    return PhotoFit(scale=scale, center_x=center_x, center_y=center_y, clip=clip)


def find_photo_slot(objects: List[BaseNode]) -> Tuple[Optional[int], Optional[BaseNode]]:
    """First top-level photo slot in paint order; further slots are ignored."""
    for index, node in enumerate(objects):
        if node.is_photo_slot:
            return index, node
    return None, None


def _remember(node: BaseNode, **values: Any) -> None:
    memo = node.memo or PreviewMemo()
    node.memo = memo.model_copy(update=values)


async def _place_photo(scene: Scene, subject: Subject, assets, interactive: bool,
                       on_photo_error: Optional[Callable[[str], None]]) -> None:
    index, slot = find_photo_slot(scene.objects)
    if slot is None:
        return
    src = subject.get(PHOTO_KEY)
    if not isinstance(src, str) or not src or assets is None:
        logger.info("Photo slot left as is: no photo source for this subject.")
        return

    visible, evented = slot.visible, slot.evented
    slot.visible = False
    slot.evented = False

    try:
        img = await assets.open(src)
    except Exception as e:
        logger.warning(f"Photo loader failed for '{src[:70]}': {type(e).__name__}: {e}")
        img = None
    fit = None
    if img is not None:
        natural_width, natural_height = img.size
        try:
            fit = fit_photo(slot, natural_width, natural_height, circular=slot.binding.is_circular)
        except ValueError as e:
            logger.warning(f"Photo could not be fitted: {e}")

    if fit is None:
        slot.visible = visible
        slot.evented = evented
        logger.warning(f"Photo '{src[:70]}' unavailable; keeping the placeholder.")
        if on_photo_error is not None:
            on_photo_error(f"Could not load photo: {src[:70]}")
        return

    photo = fit.to_node(src, natural_width, natural_height, synthesized=interactive)
    if interactive:
        _remember(slot, visible=visible, evented=evented)
    else:
        del scene.objects[index]
    scene.objects.append(photo)


async def compile_scene(scene: Scene, subject: Optional[Subject], assets=None, *, interactive: bool = False,
                        on_photo_error: Optional[Callable[[str], None]] = None) -> Scene:
    """Return a resolved copy of ``scene``; the input is left untouched.

    ``assets`` is anything with an awaitable ``open(src)`` returning a decoded
    PIL image or None (normally an AssetCache).
    """
    compiled = scene.model_copy(deep=True)
    subject = subject or {}

    for node in walk(compiled.objects):
        if not isinstance(node, TextNode):
            continue
        replacement = substitute_text(node, subject)
        if replacement is None:
            continue
        if interactive:
            _remember(node, text=node.text, editable=node.editable)
            node.editable = False
        node.text = replacement

    await _place_photo(compiled, subject, assets, interactive, on_photo_error)
    return compiled


def _restore_nodes(nodes: List[BaseNode]) -> List[BaseNode]:
    kept = []
    for node in nodes:
        if isinstance(node, ImageNode) and node.synthesized:
            continue
        memo = node.memo
        if memo is not None:
            for name in ("text", "editable", "visible", "evented"):
                value = getattr(memo, name)
                if value is not None:
                    setattr(node, name, value)
            node.memo = None
        if isinstance(node, GroupNode):
            node.objects = _restore_nodes(node.objects)
        kept.append(node)
    return kept


def restore_preview(scene: Scene) -> Scene:
    """Undo an interactive compile: drop preview photos, restore text and slots."""
    restored = scene.model_copy(deep=True)
    restored.objects = _restore_nodes(restored.objects)
    return restored


async def compile_design(design: Any, subject: Optional[Subject], assets=None) -> Any:
    """Offline compile of a raw JSON design; malformed designs come back unchanged."""
    try:
        scene = deserialize(design)
    except SceneError as e:
        logger.warning(f"Design could not be compiled, returning it unchanged: {e}")
        return design
    compiled = await compile_scene(scene, subject, assets)
    return serialize(compiled)
