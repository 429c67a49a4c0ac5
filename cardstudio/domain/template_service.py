# cardstudio/domain/template_service.py
import asyncio
import logging
import os
import time
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiofiles
import psutil
from PIL import Image

from cardstudio.config.settings import settings
from cardstudio.domain.compiler import compile_design, compile_scene
from cardstudio.domain.records import Subject, TemplateRecord
from cardstudio.domain.scene import ImageNode, Scene, blank_scene, deserialize, walk
from cardstudio.domain.sheet import STANDARD_LAYOUT, RenderedCard, SheetLayout, compose_sheets
from cardstudio.infrastructure.cloudinary.upload_file import upload_bytes
from cardstudio.infrastructure.photo.loader import AssetCache
from cardstudio.infrastructure.render.pdf import write_sheets_pdf
from cardstudio.infrastructure.render.surface import render_scene

# --- Logger setup ---
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False


def _log_memory(stage: str, run_id: str) -> None:
    try:
        memory_mb = psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024
        logger.info(f"Memory {stage}: {memory_mb:.1f}MB for Run ID: {run_id}")
    except psutil.Error as e:
        logger.warning(f"Could not get memory info: {e}")


class TemplateService:
    """Compiles, renders and prints cards for a template and its subjects."""

    def __init__(self, cpu_executor: ThreadPoolExecutor, io_executor: ThreadPoolExecutor, assets_factory=AssetCache):
        self.cpu_executor = cpu_executor
        self.io_executor = io_executor
        self.assets_factory = assets_factory

    async def compile_design(self, design: Any, subject: Optional[Subject], assets=None) -> Any:
        return await compile_design(design, subject, assets if assets is not None else self.assets_factory())

    def _scene_for(self, template: TemplateRecord, side: str) -> Tuple[Scene, int, int]:
        """Stored design for ``side`` (blank when missing) and the card size; SceneError if malformed."""
        width, height = template.card_size(settings.DEFAULT_CARD_WIDTH, settings.DEFAULT_CARD_HEIGHT)
        design = template.design(side)
        scene = deserialize(design) if design else blank_scene(width, height)
        return scene, width, height

    async def _compile_and_render(self, scene: Scene, subject: Subject, assets, width: int, height: int) -> Image.Image:
        compiled = await compile_scene(scene, subject, assets)
        # Static artwork must be decoded before the surface reads it.
        await assets.prefetch(n.src for n in walk(compiled.objects) if isinstance(n, ImageNode) and n.src)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.cpu_executor, render_scene, compiled, assets, width, height)

    async def render_card(self, template: TemplateRecord, subject: Optional[Subject], side: str = "front",
                          assets=None) -> Image.Image:
        scene, width, height = self._scene_for(template, side)
        assets = assets if assets is not None else self.assets_factory()
        return await self._compile_and_render(scene, subject or {}, assets, width, height)

    async def _render_subject(self, index: int, scene: Scene, subject: Subject, assets, width: int, height: int,
                              run_id: str) -> Tuple[int, Optional[RenderedCard], Optional[str]]:
        try:
            img = await self._compile_and_render(scene, subject, assets, width, height)
        except Exception as e:
            logger.error(f"Subject {index} failed for Run ID {run_id}: {e}\n{traceback.format_exc()}")
            return index, None, f"{type(e).__name__}: {e}"
        return index, RenderedCard(image=img, width=img.width, height=img.height, label=subject.get("name")), None

    async def render_batch(self, template: TemplateRecord, subjects: Sequence[Subject], side: str = "front",
                           run_id: Optional[str] = None) -> Dict[str, Any]:
        """Render one card per subject, each on its own surface.

        Returns ``{"run_id", "cards", "errors"}``; cards keep the subjects'
        order, failed subjects are left out and reported in ``errors``.
        """
        run_id = run_id or uuid.uuid4().hex
        scene, width, height = self._scene_for(template, side)
        assets = self.assets_factory()
        results: Dict[str, Any] = {"run_id": run_id, "cards": [], "errors": []}

        logger.info(f"Rendering {len(subjects)} cards ({side}) for Run ID: {run_id}")
        _log_memory("before render", run_id)
        start = time.perf_counter()

        tasks = [asyncio.ensure_future(self._render_subject(i, scene, s, assets, width, height, run_id))
                 for i, s in enumerate(subjects)]
        done: List[Tuple[int, RenderedCard]] = []
        try:
            async with asyncio.timeout(settings.BATCH_TIMEOUT):
                for fut in asyncio.as_completed(tasks):
                    index, card, error = await fut
                    if card is None:
                        results["errors"].append({"index": index, "error": error})
                    else:
                        done.append((index, card))
        except TimeoutError:
            logger.error(f"TIMEOUT: rendering exceeded {settings.BATCH_TIMEOUT}s for Run ID: {run_id}")
            for task in tasks:
                if not task.done():
                    task.cancel()
            results["errors"].append({"error": f"Processing timeout after {settings.BATCH_TIMEOUT}s"})

        done.sort(key=lambda item: item[0])
        results["cards"] = [card for _, card in done]
        results["errors"].sort(key=lambda e: e.get("index", len(subjects)))
        logger.info(f"Rendered {len(done)}/{len(subjects)} cards in {time.perf_counter() - start:.2f}s for Run ID: {run_id}")
        _log_memory("after render", run_id)
        return results

    async def _store_output(self, data: bytes, run_id: str) -> str:
        if settings.use_cloudinary:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self.io_executor, upload_bytes, data, f"{run_id}_sheets")
        os.makedirs(settings.OUTPUT_DIR, exist_ok=True)
        path = os.path.join(settings.OUTPUT_DIR, f"{run_id}_sheets.pdf")
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
        return path

    async def print_batch(self, template: TemplateRecord, subjects: Sequence[Subject], side: str = "front",
                          layout: SheetLayout = STANDARD_LAYOUT, footer: Optional[str] = None,
                          run_id: Optional[str] = None) -> Dict[str, Any]:
        run_id = run_id or uuid.uuid4().hex
        logger.info(f"=== START PRINT Run ID: {run_id} ===")
        overall_start = time.perf_counter()

        rendered = await self.render_batch(template, subjects, side, run_id=run_id)
        results: Dict[str, Any] = {"run_id": run_id, "file": None, "pages": [], "errors": rendered["errors"]}
        if not rendered["cards"]:
            logger.warning(f"No card rendered, nothing to print for Run ID: {run_id}")
            return results

        pages = compose_sheets(rendered["cards"], layout)
        loop = asyncio.get_running_loop()
        pdf = await loop.run_in_executor(self.cpu_executor, write_sheets_pdf, pages, layout, footer)
        results["file"] = await self._store_output(pdf, run_id)
        results["pages"] = [{"index": page.number, "cards": len(page.filled)} for page in pages]

        for card in rendered["cards"]:
            card.image.close()
        _log_memory("after print", run_id)
        logger.info(f"=== COMPLETED PRINT Run ID: {run_id} in {time.perf_counter() - overall_start:.2f}s ===")
        return results
