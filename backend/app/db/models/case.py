import datetime as dt
from enum import Enum
from sqlalchemy import String, Text, Date, Integer, ForeignKey, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models._mixins import TimestampMixin

class Sex(str, Enum):
    male_neutered = "MALE_NEUTERED"
    male_intact = "MALE_INTACT"
    female_spayed = "FEMALE_SPAYED"
    female_intact = "FEMALE_INTACT"

class CaseStatus(str, Enum):
    draft = "DRAFT"
    active = "ACTIVE"
    completed = "COMPLETED"
    archived = "ARCHIVED"

class CaseRecord(Base, TimestampMixin):
    __tablename__ = "case_record"
    __table_args__ = (
        Index("ix_case_record_signature", "clinic_id", "species", "diagnosis_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    case_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinic.id", ondelete="CASCADE"), index=True)
    created_by: Mapped[int] = mapped_column(ForeignKey("user.id"))
    import_job_id: Mapped[int | None] = mapped_column(ForeignKey("import_job.id", ondelete="SET NULL"), nullable=True, index=True)

    # patient
    patient_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    species: Mapped[str] = mapped_column(String(64))
    breed: Mapped[str] = mapped_column(String(128))
    sex: Mapped[str | None] = mapped_column(String(32), nullable=True)
    age_years: Mapped[int | None] = mapped_column(Integer, nullable=True)
    age_months: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # tumour
    tumour_type_custom: Mapped[str | None] = mapped_column(String(256), nullable=True)
    anatomical_site_custom: Mapped[str | None] = mapped_column(String(256), nullable=True)
    laterality: Mapped[str | None] = mapped_column(String(16), nullable=True)
    stage: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # diagnosis / treatment
    diagnosis_method: Mapped[str | None] = mapped_column(String(128), nullable=True)
    diagnosis_date: Mapped[dt.date] = mapped_column(Date, index=True)
    treatment_plan: Mapped[str | None] = mapped_column(Text, nullable=True)
    treatment_start: Mapped[dt.date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=CaseStatus.draft.value)
    extra: Mapped[dict] = mapped_column(JSON, default=dict)

    clinic = relationship("Clinic")
    import_job = relationship("ImportJob")
