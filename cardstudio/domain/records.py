# cardstudio/domain/records.py
"""
Records crossing the store boundary: templates and subjects.

Older templates were saved with their design wrapped one level too deep
(``{"frontDesign": {...}}`` inside the ``frontDesign`` column) and sometimes as
a JSON string. Those rows are still in the wild, so designs are unwrapped on
read and never rewritten in place.
"""
import json
import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

Subject = Mapping[str, Optional[str]]

PHOTO_KEY = "photo"

_WRAPPER_KEYS = {
    "front": ("frontDesign", "front_design"),
    "back": ("backDesign", "back_design"),
}


def unwrap_design(value: Any, side: str = "front") -> Optional[Dict[str, Any]]:
    """Return the scene payload stored for ``side``, or None if there is none."""
    if value is None:
        return None
    if isinstance(value, (str, bytes)):
        if not value:
            return None
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"Stored {side} design is not valid JSON; ignoring it.")
            return None
    if not isinstance(value, dict):
        logger.warning(f"Stored {side} design has unexpected type {type(value).__name__}; ignoring it.")
        return None
    for wrapper in _WRAPPER_KEYS[side]:
        if wrapper in value:
            return unwrap_design(value[wrapper], side)
    return value


class TemplateRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = "Untitled"
    front_design: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("frontDesign", "front_design"), serialization_alias="frontDesign")
    back_design: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("backDesign", "back_design"), serialization_alias="backDesign")
    card_width_px: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("cardWidthPx", "card_width", "card_width_px"), serialization_alias="cardWidthPx")
    card_height_px: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("cardHeightPx", "card_height", "card_height_px"), serialization_alias="cardHeightPx")

    @field_validator("front_design", mode="before")
    @classmethod
    def _unwrap_front(cls, value: Any) -> Optional[Dict[str, Any]]:
        return unwrap_design(value, "front")

    @field_validator("back_design", mode="before")
    @classmethod
    def _unwrap_back(cls, value: Any) -> Optional[Dict[str, Any]]:
        return unwrap_design(value, "back")

    def design(self, side: str) -> Optional[Dict[str, Any]]:
        return self.front_design if side == "front" else self.back_design

    def card_size(self, default_width: int, default_height: int):
        """Card pixel size shared by both sides.

        Record columns win, then the front canvas, then the back canvas.
        """
        designs = [d for d in (self.front_design, self.back_design) if d]
        width = self.card_width_px or _first_dimension(designs, "width") or default_width
        height = self.card_height_px or _first_dimension(designs, "height") or default_height
        return int(width), int(height)


def _first_dimension(designs, key: str) -> Optional[float]:
    for design in designs:
        value = design.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            return value
    return None
