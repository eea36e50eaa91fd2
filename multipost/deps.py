from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from multipost.db.base import SessionLocal, engine, Base
from multipost.db import models, crud_users
from multipost.db.migrate import migrate

def init_db() -> None:
    Base.metadata.create_all(bind=engine)
    migrate(engine)

def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def current_user_id(
    x_user_id: Optional[int] = Header(None),
    db: Session = Depends(get_db),
) -> int:
    # identity is passed explicitly; cookie sessions are handled in front of this service
    if x_user_id is None or crud_users.get_user(db, x_user_id) is None:
        raise HTTPException(401, "Not logged in")
    return x_user_id
