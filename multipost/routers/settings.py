# multipost/routers/settings.py
from datetime import timedelta
from typing import Any, Dict, Generator, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from multipost.config import settings
from multipost.deps import get_db, current_user_id
from multipost.db import crud_accounts, crud_states, token_crypto
from multipost.db.models import Platform
from multipost.errors import AuthExchangeFailed, ValidationError
from multipost.services import token_manager
from multipost.services.bluesky_api import BlueskyClient
from multipost.services.linkedin_api import LinkedInClient
from multipost.utils.helpers import utcnow
from multipost.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])

class BlueskyConnectIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    handle: str = ""
    app_password: str = Field("", alias="appPassword")

def get_linkedin_client() -> Generator[LinkedInClient, None, None]:
    with LinkedInClient() as client:
        yield client

def get_bluesky_client() -> Generator[BlueskyClient, None, None]:
    with BlueskyClient() as client:
        yield client

def _settings_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.frontend_url}/settings?{urlencode(params)}")

@router.get("/accounts")
def list_accounts(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"accounts": crud_accounts.list_accounts(db, user_id)}

@router.get("/linkedin/status")
def linkedin_status(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)) -> Dict[str, Any]:
    return token_manager.get_status(db, user_id)

@router.get("/linkedin/connect")
def linkedin_connect(
    redirect: bool = False,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    linkedin: LinkedInClient = Depends(get_linkedin_client),
):
    if not linkedin.client_id or not linkedin.client_secret or not settings.fernet_key:
        raise HTTPException(500, "Missing LinkedIn or FERNET config in .env")
    state = crud_states.issue_state(db, user_id)
    url = linkedin.authorization_url(state)
    if redirect:
        return RedirectResponse(url)
    return {"url": url}

@router.get("/linkedin/callback")
def linkedin_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    db: Session = Depends(get_db),
    linkedin: LinkedInClient = Depends(get_linkedin_client),
) -> RedirectResponse:
    # Browser redirect from LinkedIn: the state token is the only trusted link to
    # the user who started the flow. No state, no connect.
    user_id = crud_states.consume_state(db, state)
    if user_id is None:
        logger.warning("linkedin_callback_invalid_state", has_state=bool(state))
        return _settings_redirect(error="invalid_state")

    if error:
        return _settings_redirect(error=error_description or error)
    if not code:
        return _settings_redirect(error="no_code")

    try:
        grant = linkedin.exchange_code(code)
        member_id = linkedin.fetch_identity(grant.access_token, grant.id_token)
    except AuthExchangeFailed as e:
        logger.info("linkedin_connect_failed", user_id=user_id, error=e.message)
        return _settings_redirect(error=e.message)

    crud_accounts.upsert_account(
        db,
        user_id,
        Platform.LINKEDIN,
        access_token_encrypted=token_crypto.encrypt_token(grant.access_token),
        refresh_token_encrypted=token_crypto.encrypt_optional(grant.refresh_token),
        token_expires_at=utcnow() + timedelta(seconds=grant.expires_in),
        platform_user_id=member_id,
    )
    logger.info("linkedin_connected", user_id=user_id, has_refresh_token=bool(grant.refresh_token))
    return _settings_redirect(linkedin="connected")

@router.post("/bluesky/connect")
def bluesky_connect(
    body: BlueskyConnectIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    bluesky: BlueskyClient = Depends(get_bluesky_client),
) -> Dict[str, Any]:
    handle = body.handle.strip().lstrip("@")
    if not handle or not body.app_password:
        raise ValidationError("Handle and app password required")

    session = bluesky.login(handle, body.app_password)
    crud_accounts.upsert_account(
        db,
        user_id,
        Platform.BLUESKY,
        handle=handle,
        app_password_encrypted=token_crypto.encrypt_token(body.app_password),
        platform_user_id=session.did,
    )
    logger.info("bluesky_connected", user_id=user_id, did=session.did)
    return {"success": True, "handle": handle, "did": session.did}

@router.delete("/accounts/{platform}")
def disconnect(platform: str, user_id: int = Depends(current_user_id), db: Session = Depends(get_db)) -> Dict[str, Any]:
    removed = crud_accounts.delete_account(db, user_id, platform)
    if removed:
        logger.info("account_disconnected", user_id=user_id, platform=platform)
    return {"ok": True}
