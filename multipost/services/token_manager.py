# multipost/services/token_manager.py
"""
LinkedIn access-token lifecycle: validity, transparent refresh, reconnect signals.

A stored credential is in one of three states:

* VALID        - more than the safety margin before expiry
* REFRESHABLE  - inside the margin (or expired) and a refresh token is stored
* DEAD         - inside the margin (or expired) and no refresh token

Refresh is serialized per (user, platform) inside the process, and persisted
with a compare-and-set on the previous access token so a concurrent writer in
another process cannot be overwritten with stale data.
"""
import enum
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from cryptography.fernet import InvalidToken
from sqlalchemy.orm import Session

from multipost.config import settings
from multipost.db import crud_accounts, token_crypto
from multipost.db.models import ConnectedAccount, Platform
from multipost.errors import AuthExchangeFailed, NotConnected, ReauthRequired
from multipost.services.linkedin_api import LinkedInClient
from multipost.utils.helpers import isoformat, utcnow
from multipost.utils.logging import get_logger

logger = get_logger(__name__)

RECONNECT_HINT = "Please reconnect your LinkedIn account."


class TokenState(str, enum.Enum):
    VALID = "valid"
    REFRESHABLE = "refreshable"
    DEAD = "dead"


@dataclass(frozen=True)
class ValidToken:
    access_token: str
    refreshed: bool


_locks: Dict[Tuple[int, str], threading.Lock] = {}
_locks_guard = threading.Lock()


def _refresh_lock(user_id: int, platform: Platform) -> threading.Lock:
    with _locks_guard:
        return _locks.setdefault((user_id, platform.value), threading.Lock())


def is_token_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    # no recorded expiry counts as expired
    if expires_at is None:
        return True
    now = now or utcnow()
    return now >= expires_at - timedelta(seconds=settings.token_refresh_margin_seconds)


def token_state(account: ConnectedAccount, now: Optional[datetime] = None) -> TokenState:
    if not is_token_expired(account.token_expires_at, now):
        return TokenState.VALID
    if account.refresh_token_encrypted:
        return TokenState.REFRESHABLE
    return TokenState.DEAD


def _decrypt(cipher: Optional[str]) -> str:
    if not cipher:
        raise ReauthRequired(f"LinkedIn credentials are missing. {RECONNECT_HINT}")
    try:
        return token_crypto.decrypt_token(cipher)
    except InvalidToken:
        raise ReauthRequired(f"Stored LinkedIn credentials are unreadable. {RECONNECT_HINT}")


def get_valid_token(
    db: Session,
    user_id: int,
    client: Optional[LinkedInClient] = None,
    now: Optional[datetime] = None,
) -> ValidToken:
    platform = Platform.LINKEDIN
    account = crud_accounts.get_account(db, user_id, platform)
    if account is None:
        raise NotConnected("LinkedIn account not connected")

    state = token_state(account, now)
    if state is TokenState.VALID:
        return ValidToken(_decrypt(account.access_token_encrypted), refreshed=False)
    if state is TokenState.DEAD:
        raise ReauthRequired(f"LinkedIn token expired and no refresh token available. {RECONNECT_HINT}")

    with _refresh_lock(user_id, platform):
        # another request may have rotated the token while we waited
        account = crud_accounts.get_account(db, user_id, platform, fresh=True)
        if account is None:
            raise NotConnected("LinkedIn account not connected")
        state = token_state(account, now)
        if state is TokenState.VALID:
            return ValidToken(_decrypt(account.access_token_encrypted), refreshed=False)
        if state is TokenState.DEAD:
            raise ReauthRequired(f"LinkedIn token expired and no refresh token available. {RECONNECT_HINT}")

        return _refresh(db, user_id, account, client, now)


def _refresh(
    db: Session,
    user_id: int,
    account: ConnectedAccount,
    client: Optional[LinkedInClient],
    now: Optional[datetime],
) -> ValidToken:
    refresh_plain = _decrypt(account.refresh_token_encrypted)
    previous_access = account.access_token_encrypted

    owns_client = client is None
    client = client or LinkedInClient()
    try:
        grant = client.refresh(refresh_plain)
    except AuthExchangeFailed as e:
        logger.warning("linkedin_token_refresh_failed", user_id=user_id, error=e.message)
        raise ReauthRequired(f"LinkedIn token refresh failed: {e.message}. {RECONNECT_HINT}") from e
    finally:
        if owns_client:
            client.close()

    # LinkedIn may or may not issue a new refresh token
    new_refresh = grant.refresh_token or refresh_plain
    expires_at = (now or utcnow()) + timedelta(seconds=grant.expires_in)
    rotated = crud_accounts.rotate_tokens(
        db,
        user_id,
        Platform.LINKEDIN,
        expected_access_token_encrypted=previous_access,
        access_token_encrypted=token_crypto.encrypt_token(grant.access_token),
        refresh_token_encrypted=token_crypto.encrypt_token(new_refresh),
        token_expires_at=expires_at,
    )
    if not rotated:
        # the row was reconnected, rotated or removed meanwhile; trust what is stored now
        logger.info("linkedin_token_rotation_lost_race", user_id=user_id)
        current = crud_accounts.get_account(db, user_id, Platform.LINKEDIN, fresh=True)
        if current is None:
            raise NotConnected("LinkedIn account not connected")
        if token_state(current, now) is TokenState.VALID:
            return ValidToken(_decrypt(current.access_token_encrypted), refreshed=False)
        raise ReauthRequired(f"LinkedIn token could not be refreshed. {RECONNECT_HINT}")

    logger.info("linkedin_token_refreshed", user_id=user_id, expires_at=isoformat(expires_at))
    return ValidToken(grant.access_token, refreshed=True)


def get_status(db: Session, user_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Read-only token status for display; never refreshes."""
    account = crud_accounts.get_account(db, user_id, Platform.LINKEDIN)
    if account is None:
        return {"connected": False}

    expired = is_token_expired(account.token_expires_at, now)
    can_refresh = bool(account.refresh_token_encrypted)
    return {
        "connected": True,
        "expiresAt": isoformat(account.token_expires_at),
        "isExpired": expired,
        "canRefresh": can_refresh,
        "needsReconnect": expired and not can_refresh,
    }
