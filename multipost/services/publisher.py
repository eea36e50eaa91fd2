# multipost/services/publisher.py
"""Fan one publish request out to every selected platform.

Each platform branch is independent: a missing connection, an expired token or
an API failure only produces that platform's failure entry.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from cryptography.fernet import InvalidToken
from sqlalchemy.orm import Session

from multipost.config import settings
from multipost.db import crud_accounts, token_crypto
from multipost.db.models import ConnectedAccount, Platform
from multipost.errors import MultipostError, ReauthRequired, ValidationError
from multipost.services import token_manager
from multipost.services.bluesky_api import BlueskyClient
from multipost.services.linkedin_api import LinkedInClient
from multipost.services.platforms import MediaFile, PublishResult
from multipost.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PublishRequest:
    content: str
    platforms: List[Platform]
    media: List[MediaFile] = field(default_factory=list)


def build_publish_request(
    content: Optional[str],
    platforms: Iterable[str],
    media: Sequence[MediaFile] = (),
) -> PublishRequest:
    """Validate raw input; raises ValidationError before anything leaves the process."""
    content = content or ""
    selected: List[Platform] = []
    for name in platforms or []:
        platform = crud_accounts.parse_platform(name)
        if platform not in selected:
            selected.append(platform)

    if not selected:
        raise ValidationError("At least one platform required")
    if not content.strip() and not media:
        raise ValidationError("Content or media required")
    if len(media) > settings.max_media_files:
        raise ValidationError(f"At most {settings.max_media_files} media files allowed")
    for item in media:
        if not item.is_image:
            raise ValidationError(f"{item.filename}: only images are supported")
        if item.size > settings.max_media_bytes:
            raise ValidationError(f"{item.filename}: file exceeds {settings.max_media_bytes} bytes")

    return PublishRequest(content=content, platforms=selected, media=list(media))


def publish(
    db: Session,
    user_id: int,
    request: PublishRequest,
    linkedin: Optional[LinkedInClient] = None,
    bluesky: Optional[BlueskyClient] = None,
) -> Dict[str, PublishResult]:
    results: Dict[str, PublishResult] = {}
    for platform in request.platforms:
        account = crud_accounts.get_account(db, user_id, platform)
        if account is None:
            results[platform.value] = PublishResult.failure(
                f"{platform.value} not connected. Go to Settings."
            )
            continue
        try:
            if platform is Platform.LINKEDIN:
                result = _publish_linkedin(db, user_id, account, request, linkedin)
            else:
                result = _publish_bluesky(account, request, bluesky)
        except MultipostError as e:
            result = PublishResult.failure(e.message)
        results[platform.value] = result
        logger.info(
            "publish_platform_done",
            user_id=user_id,
            platform=platform.value,
            success=result.success,
        )
    return results


def _publish_linkedin(
    db: Session,
    user_id: int,
    account: ConnectedAccount,
    request: PublishRequest,
    client: Optional[LinkedInClient],
) -> PublishResult:
    author_id = account.platform_user_id
    owns_client = client is None
    client = client or LinkedInClient()
    try:
        token = token_manager.get_valid_token(db, user_id, client=client)
        if token.refreshed:
            logger.info("linkedin_token_refreshed_for_publish", user_id=user_id)
        return client.publish(token.access_token, request.content, request.media, author_id=author_id)
    finally:
        if owns_client:
            client.close()


def _publish_bluesky(
    account: ConnectedAccount,
    request: PublishRequest,
    client: Optional[BlueskyClient],
) -> PublishResult:
    if not account.handle or not account.app_password_encrypted:
        raise ReauthRequired("Bluesky credentials are incomplete. Please reconnect your Bluesky account.")
    try:
        app_password = token_crypto.decrypt_token(account.app_password_encrypted)
    except InvalidToken:
        raise ReauthRequired("Stored Bluesky credentials are unreadable. Please reconnect your Bluesky account.")

    owns_client = client is None
    client = client or BlueskyClient()
    try:
        return client.publish(account.handle, app_password, request.content, request.media)
    finally:
        if owns_client:
            client.close()
