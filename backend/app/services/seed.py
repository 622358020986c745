from sqlalchemy.orm import Session
from app.db.session import SessionLocal
from app.core.config import settings
from app.core.logging import logger
from app.core.security import create_access_token
from app.crud.clinics import list_clinics, create_clinic
from app.crud.users import get_user_by_email, create_user
from app.db.models.user import Role

def seed_demo():
    db: Session = SessionLocal()
    try:
        clinics = list_clinics(db)
        clinic = clinics[0] if clinics else create_clinic(db, settings.DEMO_CLINIC_NAME, state="LAGOS", city="Ikeja")
        if settings.DEMO_ADMIN_EMAIL:
            u = get_user_by_email(db, settings.DEMO_ADMIN_EMAIL)
            if not u:
                u = create_user(db, settings.DEMO_ADMIN_EMAIL, "Demo Admin", Role.admin, clinic.id)
            # dev only: print a token so the API can be tried without the identity service
            token = create_access_token(sub=u.email, role=u.role, clinic_id=u.clinic_id)
            logger.info("demo_token", email=u.email, token=token)
    finally:
        db.close()
