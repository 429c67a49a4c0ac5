# cardstudio/domain/session.py
"""
Editor session: the two sides of a card, undo/redo history and preview.

The session is a plain object driven by the editor; the drawing surface just
renders ``canvas``. Every change to the canvas, including the clear/load done
while switching sides, goes through ``_replace_canvas``/``_changed``, and the
state gates there decide whether a change is an edit worth recording.
"""
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from cardstudio.config.settings import settings
from cardstudio.domain.compiler import compile_scene, restore_preview
from cardstudio.domain.records import PHOTO_KEY, TemplateRecord
from cardstudio.domain.scene import BaseNode, Scene, SceneError, blank_scene, deserialize, serialize
from cardstudio.infrastructure.photo.loader import AssetCache

logger = logging.getLogger(__name__)

SAMPLE_SUBJECT: Dict[str, str] = {
    "name": "John Doe",
    "roll_number": "STU-2024-001",
    "class": "10th Grade",
    "department": "Computer Science",
    "blood_group": "B+",
    "email": "john.doe@school.edu",
    "phone": "+1 (555) 123-4567",
    "dob": "2008-05-15",
    "address": "123 School Lane, Education City, ST 12345",
    "guardian_name": "Jane Doe",
    "batch": "2024-2025",
}


class Side(str, Enum):
    FRONT = "front"
    BACK = "back"


class SessionState(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    PREVIEWING = "previewing"
    SWITCHING_SIDE = "switching_side"


class History:
    """Linear list of serialized snapshots with a cursor."""

    def __init__(self, baseline: str):
        self.entries: List[str] = [baseline]
        self.cursor = 0

    def push(self, snapshot: str) -> None:
        del self.entries[self.cursor + 1:]
        self.entries.append(snapshot)
        self.cursor += 1

    def undo(self) -> Optional[str]:
        if self.cursor <= 0:
            return None
        self.cursor -= 1
        return self.entries[self.cursor]

    def redo(self) -> Optional[str]:
        if self.cursor >= len(self.entries) - 1:
            return None
        self.cursor += 1
        return self.entries[self.cursor]

    @property
    def current(self) -> str:
        return self.entries[self.cursor]


def snapshot_of(scene: Scene) -> str:
    return json.dumps(serialize(scene), sort_keys=True)


class EditorSession:
    """
    States: IDLE until the first edit, EDITING, PREVIEWING (compiled against a
    sample subject, edits refused) and SWITCHING_SIDE (transient, nothing is
    recorded). History is kept per side so undo never crosses sides.
    """

    def __init__(self, template: Optional[TemplateRecord] = None, *, assets=None,
                 sample_subject: Optional[Dict[str, Optional[str]]] = None,
                 notify: Optional[Callable[[str], None]] = None):
        template = template or TemplateRecord()
        self.width, self.height = template.card_size(settings.DEFAULT_CARD_WIDTH, settings.DEFAULT_CARD_HEIGHT)
        self.assets = assets if assets is not None else AssetCache()
        self.sample_subject = sample_subject if sample_subject is not None else {
            **SAMPLE_SUBJECT, PHOTO_KEY: settings.PREVIEW_PHOTO_URL}
        self.notify = notify

        # Last-saved snapshot of each side, in serialized form.
        self.front_scene: Optional[Dict[str, Any]] = template.front_design
        self.back_scene: Optional[Dict[str, Any]] = template.back_design

        self.active_side = Side.FRONT
        self.state = SessionState.IDLE
        self.selection: Optional[int] = None
        self._reloading = False
        self._pristine: Optional[Scene] = None
        self._epoch = 0
        # Sides whose stored design could not be opened; kept as stored until edited.
        self._unreadable: Set[Side] = set()

        self.canvas = self._load(Side.FRONT)
        self._histories: Dict[Side, History] = {Side.FRONT: History(snapshot_of(self.canvas))}

    # -- helpers ---------------------------------------------------------

    def _notify(self, message: str) -> None:
        logger.warning(message)
        if self.notify is not None:
            self.notify(message)

    def _blank(self) -> Scene:
        return blank_scene(self.width, self.height)

    def _load(self, side: Side) -> Scene:
        payload = self._stored(side)
        if not payload:
            return self._blank()
        try:
            return deserialize(payload)
        except SceneError as e:
            self._unreadable.add(side)
            self._notify(f"Design could not be opened, starting from a blank side: {e}")
            return self._blank()

    def _stored(self, side: Side) -> Optional[Dict[str, Any]]:
        return self.front_scene if side is Side.FRONT else self.back_scene

    def _store_side(self, side: Side, payload: Dict[str, Any]) -> None:
        if side in self._unreadable:
            return
        if side is Side.FRONT:
            self.front_scene = payload
        else:
            self.back_scene = payload

    @property
    def _history(self) -> History:
        return self._histories[self.active_side]

    @property
    def history(self) -> List[str]:
        return self._history.entries

    @property
    def cursor(self) -> int:
        return self._history.cursor

    @property
    def can_undo(self) -> bool:
        return self._history.cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._history.cursor < len(self._history.entries) - 1

    @property
    def editable(self) -> bool:
        return self.state not in (SessionState.PREVIEWING, SessionState.SWITCHING_SIDE)

    def _changed(self) -> None:
        # Autosave hook, reached by every canvas change.
        if self._reloading or not self.editable:
            return
        self._history.push(snapshot_of(self.canvas))
        self._store_side(self.active_side, serialize(self.canvas))

    def _replace_canvas(self, scene: Scene) -> None:
        self.canvas = scene
        self._changed()

    def _reload(self, snapshot: str) -> None:
        self._reloading = True
        try:
            self._replace_canvas(deserialize(snapshot))
        finally:
            self._reloading = False

    # -- edits -----------------------------------------------------------

    def mutate(self, edit: Callable[[Scene], Any]) -> bool:
        """Apply ``edit`` to the live canvas and record it; refused while previewing or switching."""
        if not self.editable:
            logger.debug(f"Edit ignored in state {self.state.value}")
            return False
        edit(self.canvas)
        self._unreadable.discard(self.active_side)
        self.state = SessionState.EDITING
        self._changed()
        return True

    def selected(self) -> Optional[BaseNode]:
        if self.selection is None or not 0 <= self.selection < len(self.canvas.objects):
            return None
        return self.canvas.objects[self.selection]

    def select(self, index: Optional[int]) -> bool:
        if index is None:
            self.selection = None
            return True
        if not 0 <= index < len(self.canvas.objects) or not self.canvas.objects[index].selectable:
            return False
        self.selection = index
        return True

    def add_node(self, node: BaseNode) -> bool:
        def edit(scene: Scene) -> None:
            scene.objects.append(node)
        if not self.mutate(edit):
            return False
        self.selection = len(self.canvas.objects) - 1
        return True

    def remove_selected(self) -> bool:
        index = self.selection
        if self.selected() is None:
            return False
        if not self.mutate(lambda scene: scene.objects.pop(index)):
            return False
        self.selection = None
        return True

    def update_selected(self, **changes: Any) -> bool:
        node = self.selected()
        if node is None:
            return False

        def edit(scene: Scene) -> None:
            for name, value in changes.items():
                setattr(node, name, value)
        return self.mutate(edit)

    def nudge_selected(self, dx: float = 0, dy: float = 0) -> bool:
        node = self.selected()
        if node is None:
            return False
        dx = 0 if node.lock_movement_x else dx
        dy = 0 if node.lock_movement_y else dy
        if not dx and not dy:
            return False

        def edit(scene: Scene) -> None:
            node.left += dx
            node.top += dy
        return self.mutate(edit)

    def reorder_selected(self, action: str) -> bool:
        """Move the selection in paint order: front, back, forward or backward."""
        index = self.selection
        if self.selected() is None:
            return False
        last = len(self.canvas.objects) - 1
        target = {"front": last, "back": 0, "forward": min(index + 1, last),
                  "backward": max(index - 1, 0)}.get(action)
        if target is None:
            raise ValueError(f"Unknown layer action '{action}'")
        if target == index:
            return False

        def edit(scene: Scene) -> None:
            scene.objects.insert(target, scene.objects.pop(index))
        if not self.mutate(edit):
            return False
        self.selection = target
        return True

    def fit_selected_to_canvas(self) -> bool:
        """Cover the whole canvas with the selection, centred."""
        node = self.selected()
        if node is None:
            return False
        width, height = node.box_size()
        if width <= 0 or height <= 0:
            return False
        scale = max(self.width / width, self.height / height)
        return self.update_selected(scale_x=scale, scale_y=scale, left=self.width / 2, top=self.height / 2,
                                    origin_x="center", origin_y="center")

    # -- history ---------------------------------------------------------

    def undo(self) -> bool:
        if not self.editable:
            return False
        snapshot = self._history.undo()
        if snapshot is None:
            return False
        self._reload(snapshot)
        self.selection = None
        return True

    def redo(self) -> bool:
        if not self.editable:
            return False
        snapshot = self._history.redo()
        if snapshot is None:
            return False
        self._reload(snapshot)
        self.selection = None
        return True

    # -- preview ---------------------------------------------------------

    async def _apply_preview(self) -> bool:
        epoch = self._epoch
        compiled = await compile_scene(self._pristine, self.sample_subject, self.assets,
                                       interactive=True, on_photo_error=self._notify)
        if epoch != self._epoch:
            logger.info("Discarding a preview that finished after the side or mode changed.")
            return False
        self._replace_canvas(compiled)
        self.selection = None
        return True

    async def enter_preview(self) -> bool:
        if self.state in (SessionState.PREVIEWING, SessionState.SWITCHING_SIDE):
            return False
        self._store_side(self.active_side, serialize(self.canvas))
        self.state = SessionState.PREVIEWING
        self._pristine = self.canvas
        return await self._apply_preview()

    def exit_preview(self) -> bool:
        if self.state is not SessionState.PREVIEWING:
            return False
        self._epoch += 1
        self._replace_canvas(restore_preview(self.canvas))
        self._pristine = None
        self.state = SessionState.EDITING
        return True

    @property
    def previewing(self) -> bool:
        return self.state is SessionState.PREVIEWING

    # -- sides -----------------------------------------------------------

    async def switch_side(self, side) -> bool:
        side = Side(side)
        if side is self.active_side or self.state is SessionState.SWITCHING_SIDE:
            return False
        prior = self.state
        previewing = prior is SessionState.PREVIEWING
        if not previewing:
            self._store_side(self.active_side, serialize(self.canvas))

        self.state = SessionState.SWITCHING_SIDE
        self._epoch += 1
        self.selection = None
        try:
            self._replace_canvas(self._blank())
            self._replace_canvas(self._load(side))
            self.active_side = side
            if side not in self._histories:
                self._histories[side] = History(snapshot_of(self.canvas))
            if previewing:
                self._pristine = self.canvas
                await self._apply_preview()
        finally:
            self.state = prior
        return True

    # -- save ------------------------------------------------------------

    def save(self) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """Designs to persist, as (front, back).

        The live side is read from the canvas, unless its stored design could
        not be opened and nothing was edited since; that one is returned as stored.
        """
        if self.active_side in self._unreadable:
            current = self._stored(self.active_side)
        else:
            live = self._pristine if self.previewing and self._pristine is not None else self.canvas
            current = serialize(live)
        if self.active_side is Side.FRONT:
            return current, self.back_scene
        return self.front_scene, current
