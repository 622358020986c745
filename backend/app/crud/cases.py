import datetime as dt
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.models.case import CaseRecord, CaseStatus
from app.schemas.cases import CaseCreate
from app.services.imports.fields import CaseField

CASE_NUMBER_PREFIX = "VC"

_SIGNATURE_COLUMNS = {
    CaseField.patient_name: CaseRecord.patient_name,
    CaseField.species: CaseRecord.species,
    CaseField.breed: CaseRecord.breed,
    CaseField.sex: CaseRecord.sex,
    CaseField.diagnosis_date: CaseRecord.diagnosis_date,
    CaseField.tumour_type_custom: CaseRecord.tumour_type_custom,
    CaseField.anatomical_site_custom: CaseRecord.anatomical_site_custom,
}


def next_case_number(db: Session, year: int | None = None) -> str:
    year = year or dt.date.today().year
    prefix = f"{CASE_NUMBER_PREFIX}-{year}-"
    # longest first: past 99999 the suffix grows a digit and string order breaks
    last = (
        db.query(CaseRecord.case_number)
        .filter(CaseRecord.case_number.like(f"{prefix}%"))
        .order_by(func.length(CaseRecord.case_number).desc(), CaseRecord.case_number.desc())
        .limit(1)
        .scalar()
    )
    seq = int(last[len(prefix):]) + 1 if last else 1
    return f"{prefix}{seq:05d}"


def create_case(
    db: Session,
    clinic_id: int,
    created_by: int,
    data: CaseCreate,
    import_job_id: int | None = None,
    status: CaseStatus = CaseStatus.draft,
) -> CaseRecord:
    values = data.model_dump()
    if values.get("sex") is not None:
        values["sex"] = values["sex"].value
    c = CaseRecord(
        case_number=next_case_number(db),
        clinic_id=clinic_id,
        created_by=created_by,
        import_job_id=import_job_id,
        status=status.value,
        extra={},
        **values,
    )
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def find_similar_case(db: Session, clinic_id: int, signature: dict[CaseField, Any]) -> CaseRecord | None:
    """Same clinic plus every signature field equal (text compared case-insensitively)."""
    q = db.query(CaseRecord).filter(CaseRecord.clinic_id == clinic_id)
    for field, value in signature.items():
        col = _SIGNATURE_COLUMNS.get(field)
        if col is None:
            raise ValueError(f"'{field.value}' cannot be used in a duplicate signature")
        if isinstance(value, str):
            q = q.filter(func.lower(col) == value.strip().lower())
        else:
            q = q.filter(col == getattr(value, "value", value))
    return q.order_by(CaseRecord.id).first()
