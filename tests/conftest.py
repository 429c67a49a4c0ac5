import asyncio
import io
from typing import Dict, Optional

import pytest
from PIL import Image

from cardstudio.infrastructure.photo.loader import AssetCache


def make_png(width: int, height: int, color=(200, 30, 30, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeLoader:
    """Serves bytes from a dict; unknown sources fail like an unreachable URL."""

    def __init__(self, sources: Optional[Dict[str, bytes]] = None, gate: Optional[asyncio.Event] = None):
        self.sources = sources or {}
        self.gate = gate
        self.calls = []

    async def load(self, src: str) -> Optional[bytes]:
        self.calls.append(src)
        if self.gate is not None:
            await self.gate.wait()
        return self.sources.get(src)


@pytest.fixture
def png_bytes():
    return make_png


@pytest.fixture
def make_assets():
    def factory(sources: Optional[Dict[str, bytes]] = None, gate: Optional[asyncio.Event] = None) -> AssetCache:
        return AssetCache(loader=FakeLoader(sources, gate))
    return factory


@pytest.fixture
def card_design():
    return {
        "version": "5.3.0",
        "width": 400,
        "height": 250,
        "backgroundColor": "#ffffff",
        "objects": [
            {"type": "rect", "left": 0, "top": 0, "width": 400, "height": 40, "fill": "#1d4ed8", "selectable": False},
            {"type": "i-text", "left": 120, "top": 60, "text": "{{ name }}", "fontSize": 24},
            {"type": "textbox", "left": 120, "top": 100, "width": 200, "text": "Class: {{class}}", "fontSize": 16},
            {"type": "text", "left": 120, "top": 140, "text": "placeholder", "data": {"key": "roll_number"}},
            {"type": "rect", "left": 10, "top": 60, "width": 100, "height": 120, "fill": "#e5e7eb",
             "isPhotoPlaceholder": True, "data": {"isPhotoPlaceholder": True}},
        ],
    }
