import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.db.models.case import Sex
from app.services.imports.utils import is_blank, to_date, to_int


class CaseCreate(BaseModel):
    """Constraints every new case record has to satisfy, whatever created it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    patient_name: str | None = Field(default=None, max_length=256)
    species: str = Field(min_length=1, max_length=64)
    breed: str = Field(min_length=1, max_length=128)
    sex: Sex | None = None
    age_years: int | None = Field(default=None, ge=0, le=40)
    age_months: int | None = Field(default=None, ge=0, le=11)

    tumour_type_custom: str | None = Field(default=None, max_length=256)
    anatomical_site_custom: str | None = Field(default=None, max_length=256)
    laterality: Literal["left", "right", "bilateral", "central"] | None = None
    stage: str | None = Field(default=None, max_length=64)

    diagnosis_method: str | None = Field(default=None, max_length=128)
    diagnosis_date: dt.date
    treatment_plan: str | None = None
    treatment_start: dt.date | None = None

    notes: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_none(cls, v: Any) -> Any:
        return None if is_blank(v) else v

    @field_validator("patient_name", "species", "breed", "stage", "tumour_type_custom",
                     "anatomical_site_custom", "diagnosis_method", "treatment_plan", "notes", mode="before")
    @classmethod
    def _as_text(cls, v: Any) -> Any:
        # spreadsheets hand us numbers for things like stage "2"
        if is_blank(v):
            return None
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("diagnosis_date", "treatment_start", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> Any:
        if is_blank(v):
            return None
        d = to_date(v)
        if d is None:
            raise ValueError(f"invalid date '{v}'")
        return d

    @field_validator("age_years", "age_months", mode="before")
    @classmethod
    def _parse_int(cls, v: Any) -> Any:
        if is_blank(v):
            return None
        n = to_int(v)
        if n is None:
            raise ValueError(f"'{v}' is not a whole number")
        return n

    @field_validator("sex", mode="before")
    @classmethod
    def _parse_sex(cls, v: Any) -> Any:
        if is_blank(v):
            return None
        if isinstance(v, str):
            return "_".join(v.replace("-", " ").replace("/", " ").upper().split())
        return v

    @field_validator("laterality", mode="before")
    @classmethod
    def _parse_laterality(cls, v: Any) -> Any:
        if is_blank(v):
            return None
        return v.strip().lower() if isinstance(v, str) else v
