# multipost/db/crud_states.py
"""Single-use OAuth ``state`` tokens, at most one live token per user."""
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from multipost.config import settings
from multipost.db.models import OAuthState
from multipost.utils.helpers import utcnow

def issue_state(db: Session, user_id: int) -> str:
    state = secrets.token_urlsafe(32)
    # replace, not append: a new flow invalidates the previous one
    db.query(OAuthState).filter(OAuthState.user_id == user_id).delete(synchronize_session=False)
    db.add(OAuthState(state=state, user_id=user_id, created_at=utcnow()))
    db.commit()
    return state

def consume_state(db: Session, state: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """Delete the token and return its user id, or None if unknown, used or expired."""
    if not state:
        return None
    row = db.query(OAuthState).filter(OAuthState.state == state).first()
    if row is None:
        return None
    user_id, created_at = row.user_id, row.created_at

    # whoever deletes the row owns it; a concurrent consumer sees rowcount 0
    deleted = (
        db.query(OAuthState)
        .filter(OAuthState.state == state)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted != 1:
        return None

    now = now or utcnow()
    if created_at + timedelta(seconds=settings.oauth_state_ttl_seconds) < now:
        return None
    return user_id
