import datetime as dt
from pydantic import BaseModel, ConfigDict

class ImportJobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: int
    created_by: int
    filename: str
    mapping: dict[str, str | None]
    status: str
    total_rows: int | None
    processed_rows: int
    success_rows: int
    error_rows: int
    has_error_report: bool
    failure_reason: str | None
    cancel_requested: bool
    created_at: dt.datetime | None
    started_at: dt.datetime | None
    completed_at: dt.datetime | None

class ImportJobErrorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    row_index: int | None
    column: str | None
    message: str

class CaseFieldOut(BaseModel):
    value: str
    label: str
    required: bool

class ImportPreviewOut(BaseModel):
    filename: str
    headers: list[str]
    total_rows: int
    sample: list[dict]
    suggested_mapping: dict[str, str | None]
