# cardstudio/domain/scene.py
"""
Scene documents: the JSON-serialisable node graph describing one side of a card.

Documents are produced by the browser editor, so attribute names follow its
camelCase JSON. Anything a node carries that this model does not know about is
kept in ``model_extra`` and written back untouched.
"""
import json
from typing import Annotated, Any, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    ValidationError,
    model_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel

# Editor spellings of each node kind, lower-cased.
NODE_KINDS = {
    "text": "text",
    "i-text": "text",
    "itext": "text",
    "textbox": "text",
    "image": "image",
    "rect": "rect",
    "circle": "circle",
    "group": "group",
}

# Fraction of the box lying before the anchor point, per origin keyword.
ORIGIN_OFFSETS = {"left": 0.0, "top": 0.0, "center": 0.5, "right": 1.0, "bottom": 1.0}


class SceneError(ValueError):
    """Raised when a payload cannot be read as a scene document."""


class Binding(BaseModel):
    """Marks a node's content as driven by a subject record."""
    model_config = ConfigDict(frozen=True)

    key: Optional[str] = None
    is_photo_slot: bool = False
    is_circular: bool = False


class PreviewMemo(BaseModel):
    """Values a preview compile overwrote, kept so the preview can be undone."""
    model_config = ConfigDict(frozen=True)

    text: Optional[str] = None
    editable: Optional[bool] = None
    visible: Optional[bool] = None
    evented: Optional[bool] = None


def _pop_flag(*sources: Tuple[Dict[str, Any], str]) -> bool:
    found = False
    for container, name in sources:
        if container.pop(name, False):
            found = True
    return found


class BaseNode(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str
    left: float = 0
    top: float = 0
    width: float = 0
    height: float = 0
    origin_x: str = "left"
    origin_y: str = "top"
    scale_x: float = 1
    scale_y: float = 1
    angle: float = 0
    opacity: float = 1
    visible: bool = True
    selectable: bool = True
    evented: bool = True
    lock_movement_x: bool = False
    lock_movement_y: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)

    binding: Optional[Binding] = Field(default=None, exclude=True)
    memo: Optional[PreviewMemo] = Field(default=None, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _lift_binding(cls, values: Any) -> Any:
        # The editor scatters binding flags over the node root and its data block.
        if not isinstance(values, dict) or "binding" in values:
            return values
        values = dict(values)
        data = values.get("data")
        data = dict(data) if isinstance(data, dict) else {}

        key = None
        for container in (values, data):
            candidate = container.get("key")
            if isinstance(candidate, str):
                container.pop("key")
                if key is None and candidate.strip():
                    key = candidate.strip()

        photo = _pop_flag((values, "isPhotoPlaceholder"), (values, "isPhotoSlot"),
                          (data, "isPhotoPlaceholder"), (data, "isPhotoSlot"))
        circular = _pop_flag((values, "isCircle"), (values, "isCircular"),
                             (data, "isCircle"), (data, "isCircular"))

        values["data"] = data
        if key or photo or circular:
            values["binding"] = Binding(key=key, is_photo_slot=photo, is_circular=circular)
        return values

    @model_serializer(mode="wrap")
    def _write_binding(self, handler):
        payload = handler(self)
        if not isinstance(payload, dict):
            return payload
        data = dict(payload.get("data") or {})
        binding = self.binding
        if binding is not None:
            if binding.key:
                data["key"] = binding.key
            if binding.is_photo_slot:
                data["isPhotoPlaceholder"] = True
                payload["isPhotoPlaceholder"] = True
            if binding.is_circular:
                payload["isCircle"] = True
        if data:
            payload["data"] = data
        else:
            payload.pop("data", None)
        return payload

    @property
    def kind(self) -> str:
        return NODE_KINDS[self.type.lower()]

    @property
    def is_photo_slot(self) -> bool:
        return self.binding is not None and self.binding.is_photo_slot

    @property
    def binding_key(self) -> Optional[str]:
        return self.binding.key if self.binding is not None else None

    def box_size(self) -> Tuple[float, float]:
        """Unscaled width and height."""
        return self.width, self.height

    def scaled_size(self) -> Tuple[float, float]:
        width, height = self.box_size()
        return width * self.scale_x, height * self.scale_y

    def center(self) -> Tuple[float, float]:
        """Centre point in parent coordinates, whatever the origin anchor."""
        width, height = self.scaled_size()
        fx = ORIGIN_OFFSETS.get(self.origin_x, 0.0)
        fy = ORIGIN_OFFSETS.get(self.origin_y, 0.0)
        return self.left + (0.5 - fx) * width, self.top + (0.5 - fy) * height


class TextNode(BaseNode):
    type: str = "text"
    text: str = ""
    font_family: str = "Arial"
    font_size: float = 40
    font_weight: Union[int, str] = "normal"
    fill: Optional[str] = "rgb(0,0,0)"
    text_align: str = "left"
    editable: bool = True

    @property
    def wraps(self) -> bool:
        return self.type.lower() == "textbox"


class RectNode(BaseNode):
    type: str = "rect"
    fill: Optional[str] = "rgb(0,0,0)"
    stroke: Optional[str] = None
    stroke_width: float = 1
    rx: float = 0
    ry: float = 0


class CircleNode(BaseNode):
    type: str = "circle"
    radius: float = 0
    fill: Optional[str] = "rgb(0,0,0)"
    stroke: Optional[str] = None
    stroke_width: float = 1

    def box_size(self) -> Tuple[float, float]:
        diameter = self.radius * 2
        return self.width or diameter, self.height or diameter


def _node_tag(value: Any) -> Optional[str]:
    raw = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    if not isinstance(raw, str):
        return None
    return NODE_KINDS.get(raw.lower())


ClipShape = Annotated[
    Union[
        Annotated[RectNode, Tag("rect")],
        Annotated[CircleNode, Tag("circle")],
    ],
    Discriminator(_node_tag),
]


class ImageNode(BaseNode):
    type: str = "image"
    src: str = ""
    clip_path: Optional[ClipShape] = None
    synthesized: bool = Field(default=False, exclude=True)


class GroupNode(BaseNode):
    type: str = "group"
    objects: List["Node"] = Field(default_factory=list)


Node = Annotated[
    Union[
        Annotated[TextNode, Tag("text")],
        Annotated[ImageNode, Tag("image")],
        Annotated[RectNode, Tag("rect")],
        Annotated[CircleNode, Tag("circle")],
        Annotated[GroupNode, Tag("group")],
    ],
    Discriminator(_node_tag),
]

GroupNode.model_rebuild()


class Scene(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    version: Optional[str] = None
    width: Optional[float] = None
    height: Optional[float] = None
    background_color: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("backgroundColor", "background", "background_color"),
    )
    objects: List[Node] = Field(default_factory=list)


def walk(nodes: List[BaseNode]) -> Iterator[BaseNode]:
    """Yield nodes in paint order, descending into groups."""
    for node in nodes:
        yield node
        if isinstance(node, GroupNode):
            yield from walk(node.objects)


def serialize(scene: Scene) -> Dict[str, Any]:
    return scene.model_dump(mode="json", by_alias=True)


def deserialize(payload: Union[str, bytes, Dict[str, Any]]) -> Scene:
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise SceneError(f"Scene JSON could not be parsed: {e}") from e
    if not isinstance(payload, dict):
        raise SceneError(f"Scene must be a JSON object, got {type(payload).__name__}")
    try:
        return Scene.model_validate(payload)
    except ValidationError as e:
        raise SceneError(f"Invalid scene document: {e.error_count()} error(s)\n{e}") from e


def blank_scene(width: Optional[float] = None, height: Optional[float] = None,
                background_color: str = "#ffffff") -> Scene:
    return Scene(width=width, height=height, background_color=background_color)
