import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardstudio.domain.records import TemplateRecord
from cardstudio.infrastructure.database.models import Subject, Template

logger = logging.getLogger(__name__)

TemplateId = Union[str, uuid.UUID]


def _uuid(value: TemplateId) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class RecordStore:
    """Reads templates and subjects, and writes editor saves back."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _template_row(self, template_id: TemplateId) -> Optional[Template]:
        key = _uuid(template_id)
        if key is None:
            return None
        return await self.session.get(Template, key)

    async def get_template(self, template_id: TemplateId) -> Optional[TemplateRecord]:
        row = await self._template_row(template_id)
        return row.as_record() if row is not None else None

    async def list_subjects(self, template_id: TemplateId) -> List[Dict[str, Optional[str]]]:
        key = _uuid(template_id)
        if key is None:
            return []
        result = await self.session.execute(
            select(Subject).where(Subject.template_id == key).order_by(Subject.create_time))
        return [row.as_record() for row in result.scalars().all()]

    async def save_designs(self, template_id: TemplateId, front_design: Optional[Dict[str, Any]],
                           back_design: Optional[Dict[str, Any]]) -> bool:
        """Overwrite both sides of a template with an editor save."""
        row = await self._template_row(template_id)
        if row is None:
            return False
        row.front_design = front_design
        row.back_design = back_design
        row.update_time = datetime.now(timezone.utc).replace(tzinfo=None)
        await self.session.commit()
        logger.info(f"Saved designs for template {template_id}")
        return True
