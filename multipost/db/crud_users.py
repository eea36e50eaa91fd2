from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from multipost.db.models import User
from multipost.errors import Conflict, ValidationError

def create_user(db: Session, email: str, credential: Optional[str] = None) -> User:
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    u = User(email=email, credential=credential)
    db.add(u)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Email already registered")
    db.refresh(u)
    return u

def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)

def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.strip().lower()).first()
