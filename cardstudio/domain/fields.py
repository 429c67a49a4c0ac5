# cardstudio/domain/fields.py
"""
Discovers which subject keys a design needs, so an upload can be checked for
the right columns before any card is rendered.
"""
import json
import re
from typing import Any, Set

from cardstudio.domain.records import PHOTO_KEY
from cardstudio.domain.scene import Scene, serialize

PLACEHOLDER_PATTERN = re.compile(r"{{(.*?)}}")

# Keys under which stored templates nest a whole design.
_DESIGN_WRAPPERS = ("frontDesign", "backDesign", "front_design", "back_design")


def extract_fields(document: Any) -> Set[str]:
    """Return the set of data keys referenced by ``document``.

    Accepts a Scene, a raw JSON payload (dict, list or string) or a stored
    template wrapper. Malformed input yields an empty set; the input is never
    modified.
    """
    fields: Set[str] = set()
    if isinstance(document, Scene):
        document = serialize(document)
    elif isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return fields
    try:
        _scan(document, fields)
    except RecursionError:
        return set()
    return fields


def _scan(obj: Any, fields: Set[str]) -> None:
    if isinstance(obj, list):
        for item in obj:
            _scan(item, fields)
        return
    if not isinstance(obj, dict):
        return

    if isinstance(obj.get("objects"), list):
        _scan(obj["objects"], fields)
    for wrapper in _DESIGN_WRAPPERS:
        nested = obj.get(wrapper)
        if isinstance(nested, str):
            # Older rows keep the design as a JSON string.
            try:
                nested = json.loads(nested)
            except json.JSONDecodeError:
                continue
        if isinstance(nested, (dict, list)):
            _scan(nested, fields)

    text = obj.get("text")
    if isinstance(text, str):
        for match in PLACEHOLDER_PATTERN.finditer(text):
            key = match.group(1).strip()
            if key:
                fields.add(key)

    data = obj.get("data") if isinstance(obj.get("data"), dict) else {}
    for key in (obj.get("key"), data.get("key")):
        if isinstance(key, str) and key.strip():
            fields.add(key.strip())

    if any(source.get(flag) for source in (obj, data) for flag in ("isPhotoPlaceholder", "isPhotoSlot")):
        fields.add(PHOTO_KEY)
