# cardstudio/infrastructure/photo/loader.py
import asyncio
import base64
import binascii
import io
import logging
import os
from typing import Dict, Iterable, List, Optional

import aiofiles
import aiohttp
from PIL import Image, UnidentifiedImageError

from cardstudio.config.settings import settings

logger = logging.getLogger(__name__)


class PhotoLoader:
    """Fetches raw image bytes from a URL, a local path or a data URL."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout: int = settings.REQUEST_TIMEOUT):
        self._session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def _get_http(self, src: str) -> bytes:
        if self._session is not None:
            async with self._session.get(src, timeout=self.timeout) as response:
                response.raise_for_status()
                return await response.read()
        async with aiohttp.ClientSession() as session:
            async with session.get(src, timeout=self.timeout) as response:
                response.raise_for_status()
                return await response.read()

    async def load(self, src: str) -> Optional[bytes]:
        if not src:
            return None
        try:
            if src.startswith(("http://", "https://")):
                return await self._get_http(src)
            if os.path.isfile(src):
                async with aiofiles.open(src, "rb") as f:
                    return await f.read()
            if src.startswith("data:image"):
                _, encoded = src.split(",", 1)
                return base64.b64decode(encoded + "===")
            return base64.b64decode(src + "===", validate=False)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError, binascii.Error) as e:
            logger.warning(f"Failed to load image from '{src[:70]}...': {type(e).__name__}")
            return None


def decode_image(data: Optional[bytes], max_side: Optional[int] = settings.MAX_PHOTO_SIDE) -> Optional[Image.Image]:
    if not data:
        return None
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.warning(f"Failed to decode image: {type(e).__name__}")
        return None
    img = img.convert("RGBA")
    w, h = img.size
    if w == 0 or h == 0:
        return None
    m = max(w, h)
    if max_side and m > max_side:
        scale = max_side / m
        img = img.resize((max(1, int(w * scale)), max(1, int(h * scale))), Image.Resampling.LANCZOS)
    return img


class AssetCache:
    """Decoded images keyed by source, shared by compile and render steps.

    Decoding happens before anything reads an image's size; the renderer only
    ever sees fully loaded images through ``get``.
    """

    def __init__(self, loader: Optional[PhotoLoader] = None, max_side: Optional[int] = settings.MAX_PHOTO_SIDE):
        self.loader = loader or PhotoLoader()
        self.max_side = max_side
        self._images: Dict[str, Image.Image] = {}
        self._pending: Dict[str, asyncio.Task] = {}

    async def _fetch(self, src: str) -> Optional[Image.Image]:
        data = await self.loader.load(src)
        img = decode_image(data, self.max_side)
        if img is not None:
            self._images[src] = img
        return img

    async def open(self, src: str) -> Optional[Image.Image]:
        if src in self._images:
            return self._images[src]
        task = self._pending.get(src)
        if task is None:
            task = asyncio.ensure_future(self._fetch(src))
            self._pending[src] = task
        try:
            return await task
        finally:
            self._pending.pop(src, None)

    async def prefetch(self, sources: Iterable[str]) -> List[Optional[Image.Image]]:
        unique = [s for s in dict.fromkeys(sources) if s]
        return await asyncio.gather(*(self.open(s) for s in unique))

    def get(self, src: str) -> Optional[Image.Image]:
        return self._images.get(src)

    def put(self, src: str, img: Image.Image) -> None:
        img.load()
        self._images[src] = img
