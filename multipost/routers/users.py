from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Any, Dict
from sqlalchemy.orm import Session

from multipost.deps import get_db, current_user_id
from multipost.db import crud_users

router = APIRouter(prefix="/users", tags=["users"])

class UserIn(BaseModel):
    email: str

@router.post("")
def create_user(body: UserIn, db: Session = Depends(get_db)) -> Dict[str, Any]:
    u = crud_users.create_user(db, body.email)
    return {"user": {"id": u.id, "email": u.email}}

@router.get("/me")
def me(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)) -> Dict[str, Any]:
    u = crud_users.get_user(db, user_id)
    return {"user": {"id": u.id, "email": u.email}}
