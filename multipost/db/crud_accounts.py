# multipost/db/crud_accounts.py
"""Per-user, per-platform connection rows.

Secrets are stored encrypted (see token_crypto) and never leave this module
through ``list_accounts``.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from multipost.db.models import ConnectedAccount, Platform
from multipost.errors import ValidationError
from multipost.utils.helpers import isoformat, utcnow

# fields a connect replaces wholesale; anything not supplied is cleared
_REPLACEABLE_FIELDS = (
    "access_token_encrypted",
    "refresh_token_encrypted",
    "token_expires_at",
    "platform_user_id",
    "handle",
    "app_password_encrypted",
)

def parse_platform(name: Any) -> Platform:
    if isinstance(name, Platform):
        return name
    try:
        return Platform(str(name).strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid platform: {name}")

def get_account(db: Session, user_id: int, platform: Any, fresh: bool = False) -> Optional[ConnectedAccount]:
    q = db.query(ConnectedAccount).filter(
        ConnectedAccount.user_id == user_id,
        ConnectedAccount.platform == parse_platform(platform).value,
    )
    if fresh:
        q = q.populate_existing()
    return q.first()

def upsert_account(db: Session, user_id: int, platform: Any, **fields: Any) -> ConnectedAccount:
    unknown = set(fields) - set(_REPLACEABLE_FIELDS)
    if unknown:
        raise TypeError(f"Unknown account fields: {sorted(unknown)}")
    platform = parse_platform(platform)
    values = {f: fields.get(f) for f in _REPLACEABLE_FIELDS}

    for attempt in (1, 2):
        now = utcnow()
        row = get_account(db, user_id, platform)
        if row is None:
            row = ConnectedAccount(user_id=user_id, platform=platform.value)
            db.add(row)
        for key, value in values.items():
            setattr(row, key, value)
        row.created_at = now
        row.updated_at = now
        try:
            db.commit()
        except IntegrityError:
            # a concurrent connect inserted the row first; replace it instead
            db.rollback()
            if attempt == 2:
                raise
            continue
        db.refresh(row)
        return row

def list_accounts(db: Session, user_id: int) -> List[Dict[str, Any]]:
    rows = (
        db.query(ConnectedAccount)
        .filter(ConnectedAccount.user_id == user_id)
        .order_by(ConnectedAccount.id)
        .all()
    )
    return [
        {
            "id": r.id,
            "platform": r.platform,
            "platform_user_id": r.platform_user_id,
            "handle": r.handle,
            "created_at": isoformat(r.created_at),
        }
        for r in rows
    ]

def delete_account(db: Session, user_id: int, platform: Any) -> bool:
    deleted = (
        db.query(ConnectedAccount)
        .filter(
            ConnectedAccount.user_id == user_id,
            ConnectedAccount.platform == parse_platform(platform).value,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return bool(deleted)

def rotate_tokens(
    db: Session,
    user_id: int,
    platform: Any,
    expected_access_token_encrypted: Optional[str],
    access_token_encrypted: str,
    refresh_token_encrypted: Optional[str],
    token_expires_at: Optional[datetime],
) -> bool:
    """Compare-and-set the token columns; False when the row changed underneath."""
    stmt = (
        update(ConnectedAccount)
        .where(
            ConnectedAccount.user_id == user_id,
            ConnectedAccount.platform == parse_platform(platform).value,
            ConnectedAccount.access_token_encrypted == expected_access_token_encrypted,
        )
        .values(
            access_token_encrypted=access_token_encrypted,
            refresh_token_encrypted=refresh_token_encrypted,
            token_expires_at=token_expires_at,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    res = db.execute(stmt)
    db.commit()
    return res.rowcount == 1
