from sqlalchemy.orm import Session
from app.db.models.user import User, Role

def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == email).one_or_none()

def create_user(db: Session, email: str, name: str, role: Role, clinic_id: int | None) -> User:
    u = User(email=email, name=name, role=role.value, clinic_id=clinic_id, is_active=True)
    db.add(u)
    db.commit()
    db.refresh(u)
    return u
