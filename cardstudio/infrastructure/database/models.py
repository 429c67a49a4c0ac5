import uuid
from typing import Dict, Optional

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base

from cardstudio.domain.records import PHOTO_KEY, TemplateRecord

Base = declarative_base()


class Template(Base):
    __tablename__ = "template"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    front_design = Column(JSON)  # may hold a JSON string or a wrapped design on older rows
    back_design = Column(JSON)
    card_width = Column(Integer)
    card_height = Column(Integer)
    create_time = Column(DateTime)
    update_time = Column(DateTime)

    def as_record(self) -> TemplateRecord:
        return TemplateRecord(
            name=self.name,
            front_design=self.front_design,
            back_design=self.back_design,
            card_width=self.card_width,
            card_height=self.card_height,
        )


class Subject(Base):
    __tablename__ = "subject"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    template_id = Column(UUID(as_uuid=True), ForeignKey("template.id"), nullable=False, index=True)
    fields = Column(JSON)  # flat {key: value}
    photo_url = Column(String)
    create_time = Column(DateTime)

    def as_record(self) -> Dict[str, Optional[str]]:
        record = {str(k): (None if v is None else str(v)) for k, v in (self.fields or {}).items()}
        if self.photo_url:
            record[PHOTO_KEY] = self.photo_url
        return record
