from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.core.security import decode_token
from app.db.models.user import User, Role
from app.crud.users import get_user_by_email

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=True)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_current_user(db: Session = Depends(get_db), token: str = Depends(oauth2_scheme)) -> User:
    try:
        payload = decode_token(token)
        email = payload.get("sub")
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user = get_user_by_email(db, email) if email else None
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found/disabled")
    # a token minted for one clinic must not follow the user to another
    claimed = payload.get("clinic_id")
    if claimed is not None and claimed != user.clinic_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token clinic does not match user")
    return user

def require_roles(*roles: Role):
    allowed = {r.value for r in roles}

    def _dep(user: User = Depends(get_current_user)) -> User:
        role = user.role.value if hasattr(user.role, "value") else str(user.role)
        if role not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        if user.clinic_id is None:
            raise HTTPException(status_code=403, detail="User is not attached to a clinic")
        return user
    return _dep
