from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from cardstudio.domain.records import TemplateRecord

Side = Literal["front", "back"]


class FieldsRequest(BaseModel):
    # A raw design, a template record or a list of either.
    document: Any


class CompileRequest(BaseModel):
    template: TemplateRecord
    subject: Dict[str, Optional[str]] = Field(default_factory=dict)
    side: Side = "front"


class PrintBatchRequest(BaseModel):
    id: Optional[str] = None
    template: TemplateRecord
    subjects: List[Dict[str, Optional[str]]]
    side: Side = "front"
    footer: Optional[str] = None  # e.g. "Draft proof, not for print"
    rotate_to_fit: bool = False


class PrintOptions(BaseModel):
    side: Side = "front"
    footer: Optional[str] = None
    rotate_to_fit: bool = False


class DesignsUpdate(BaseModel):
    front_design: Optional[Dict[str, Any]] = Field(default=None, alias="frontDesign")
    back_design: Optional[Dict[str, Any]] = Field(default=None, alias="backDesign")

    model_config = {"populate_by_name": True}
