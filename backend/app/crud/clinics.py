from sqlalchemy.orm import Session
from app.db.models.clinic import Clinic

def list_clinics(db: Session):
    return db.query(Clinic).order_by(Clinic.id).all()

def create_clinic(db: Session, name: str, state: str, city: str) -> Clinic:
    c = Clinic(name=name, state=state, city=city)
    db.add(c)
    db.commit()
    db.refresh(c)
    return c
