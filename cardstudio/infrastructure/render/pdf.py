# cardstudio/infrastructure/render/pdf.py
import io
from typing import List, Optional

from PIL import Image
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from cardstudio.domain.sheet import Box, Page, SheetLayout
from cardstudio.infrastructure.render.surface import flatten

GUIDE_GRAY = 0.78
GUIDE_WIDTH = 0.25  # points
FOOTER_FONT = ("Helvetica", 8)


def _rect(layout: SheetLayout, box: Box):
    # Sheet boxes are top-left based; PDF space starts bottom-left.
    return box.x * mm, (layout.page_height - box.y - box.height) * mm, box.width * mm, box.height * mm


def write_sheets_pdf(pages: List[Page], layout: SheetLayout, footer: Optional[str] = None) -> bytes:
    """One PDF page per sheet: cards at their contain box, cut guides at full slot size."""
    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=(layout.page_width * mm, layout.page_height * mm))

    for page in pages:
        for slot in page.slots:
            placement = slot.placement
            if placement is None:
                continue
            img: Image.Image = placement.card.image
            if placement.rotated:
                img = img.rotate(-90, expand=True)
            x, y, w, h = _rect(layout, placement.draw)
            pdf.drawImage(ImageReader(flatten(img)), x, y, width=w, height=h)

            pdf.setStrokeGray(GUIDE_GRAY)
            pdf.setLineWidth(GUIDE_WIDTH)
            pdf.rect(*_rect(layout, slot.guide), stroke=1, fill=0)

        if footer:
            pdf.setFont(*FOOTER_FONT)
            pdf.setFillGray(0.6)
            pdf.drawCentredString(layout.page_width / 2 * mm, 5 * mm, footer)
        pdf.showPage()

    pdf.save()
    return buf.getvalue()
