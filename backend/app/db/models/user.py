from sqlalchemy import String, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from enum import Enum

from app.db.base import Base
from app.db.models._mixins import TimestampMixin

class Role(str, Enum):
    admin = "ADMIN"
    manager = "MANAGER"
    clinician = "CLINICIAN"
    researcher = "RESEARCHER"

class User(Base, TimestampMixin):
    __tablename__ = "user"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(256), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(256))
    role: Mapped[str] = mapped_column(String(32), default=Role.clinician.value)
    clinic_id: Mapped[int | None] = mapped_column(ForeignKey("clinic.id"), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    clinic = relationship("Clinic", back_populates="users")
