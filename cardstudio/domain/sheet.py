# cardstudio/domain/sheet.py
"""
Print-sheet layout: places rendered cards on fixed-size pages.

All lengths are in millimetres with the origin at the page's top-left corner.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence


@dataclass(frozen=True)
class Box:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class SheetLayout:
    page_width: float = 210.0
    page_height: float = 297.0
    slot_width: float = 85.6
    slot_height: float = 54.0
    cols: int = 2
    rows: int = 5
    gap_x: float = 5.0
    gap_y: float = 2.0
    # None centres the grid on the page.
    margin_x: Optional[float] = None
    margin_y: Optional[float] = None
    rotate_to_fit: bool = False

    def __post_init__(self):
        if self.cols <= 0 or self.rows <= 0:
            raise ValueError("A sheet needs at least one row and one column")
        if self.slot_width <= 0 or self.slot_height <= 0:
            raise ValueError("Slot size must be positive")

    @property
    def per_page(self) -> int:
        return self.cols * self.rows

    def _origin(self) -> tuple:
        grid_w = self.cols * self.slot_width + (self.cols - 1) * self.gap_x
        grid_h = self.rows * self.slot_height + (self.rows - 1) * self.gap_y
        x = self.margin_x if self.margin_x is not None else (self.page_width - grid_w) / 2
        y = self.margin_y if self.margin_y is not None else (self.page_height - grid_h) / 2
        return x, y

    def slot_box(self, index: int) -> Box:
        """Slot ``index`` (row-major) on a page."""
        x0, y0 = self._origin()
        col, row = index % self.cols, index // self.cols
        return Box(x0 + col * (self.slot_width + self.gap_x),
                   y0 + row * (self.slot_height + self.gap_y),
                   self.slot_width, self.slot_height)


# A4 portrait, 2 x 5 CR80 cards (85.6 x 54 mm).
STANDARD_LAYOUT = SheetLayout()


@dataclass
class RenderedCard:
    image: Any
    width: int
    height: int
    label: Optional[str] = None


@dataclass(frozen=True)
class Placement:
    card: RenderedCard
    draw: Box
    rotated: bool = False


@dataclass(frozen=True)
class SheetSlot:
    index: int
    guide: Box
    placement: Optional[Placement] = None

    @property
    def filled(self) -> bool:
        return self.placement is not None


@dataclass
class Page:
    number: int
    slots: List[SheetSlot] = field(default_factory=list)

    @property
    def filled(self) -> List[SheetSlot]:
        return [s for s in self.slots if s.filled]

    @property
    def empty(self) -> List[SheetSlot]:
        return [s for s in self.slots if not s.filled]


def contain_fit(src_width: float, src_height: float, slot: Box) -> Box:
    """Largest box with the source's aspect ratio inside ``slot``, centred."""
    if src_width <= 0 or src_height <= 0:
        return slot
    scale = min(slot.width / src_width, slot.height / src_height)
    width, height = src_width * scale, src_height * scale
    return Box(slot.x + (slot.width - width) / 2, slot.y + (slot.height - height) / 2, width, height)


def _place(card: RenderedCard, slot: Box, layout: SheetLayout) -> Placement:
    width, height = card.width, card.height
    rotated = layout.rotate_to_fit and (width > height) != (slot.width > slot.height) and width != height
    if rotated:
        width, height = height, width
    return Placement(card=card, draw=contain_fit(width, height, slot), rotated=rotated)


def compose_sheets(cards: Sequence[RenderedCard], layout: SheetLayout = STANDARD_LAYOUT) -> List[Page]:
    """Fill pages row-major, left to right and top to bottom; the last page may be partial."""
    pages: List[Page] = []
    per_page = layout.per_page
    for start in range(0, len(cards), per_page):
        chunk = cards[start:start + per_page]
        page = Page(number=len(pages) + 1)
        for index in range(per_page):
            guide = layout.slot_box(index)
            placement = _place(chunk[index], guide, layout) if index < len(chunk) else None
            page.slots.append(SheetSlot(index=index, guide=guide, placement=placement))
        pages.append(page)
    return pages
