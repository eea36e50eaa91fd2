# multipost/services/bluesky_api.py
"""Bluesky (AT Protocol) adapter: app-password sessions, blob upload, post records."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

import httpx

from multipost.config import settings
from multipost.errors import AuthExchangeFailed, MultipostError, PublishFailed, UploadFailed
from multipost.services.platforms import MediaFile, PublishResult, default_timeout, error_message, json_dict
from multipost.utils.logging import get_logger

logger = get_logger(__name__)

CREATE_SESSION = "/xrpc/com.atproto.server.createSession"
UPLOAD_BLOB = "/xrpc/com.atproto.repo.uploadBlob"
CREATE_RECORD = "/xrpc/com.atproto.repo.createRecord"

POST_COLLECTION = "app.bsky.feed.post"
MAX_IMAGES = 4


@dataclass(frozen=True)
class BlueskySession:
    access_jwt: str
    did: str
    handle: str


class BlueskyClient:
    # TODO: cache the session until the access JWT nears expiry instead of logging in per publish
    def __init__(
        self,
        service_url: Optional[str] = None,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.service_url = (service_url or settings.bluesky_service_url).rstrip("/")
        self.client = httpx.Client(
            base_url=self.service_url,
            timeout=timeout or default_timeout(),
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "BlueskyClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def login(self, handle: str, app_password: str) -> BlueskySession:
        try:
            r = self.client.post(CREATE_SESSION, json={"identifier": handle, "password": app_password})
        except httpx.HTTPError as e:
            raise AuthExchangeFailed(f"Bluesky login failed: {e}") from e
        if not r.is_success:
            logger.info("bluesky_login_rejected", status=r.status_code)
            raise AuthExchangeFailed(f"Bluesky login failed: {error_message(r)}")

        data = json_dict(r)
        if not data.get("accessJwt") or not data.get("did"):
            raise AuthExchangeFailed("Bluesky login failed: incomplete session response")
        return BlueskySession(
            access_jwt=data["accessJwt"],
            did=data["did"],
            handle=data.get("handle") or handle,
        )

    def upload_blob(self, session: BlueskySession, media: MediaFile) -> Dict[str, Any]:
        if media.size > settings.bluesky_max_blob_bytes:
            raise UploadFailed(
                f"Bluesky image {media.filename} is {media.size} bytes; "
                f"limit is {settings.bluesky_max_blob_bytes}"
            )
        try:
            r = self.client.post(
                UPLOAD_BLOB,
                headers={
                    "Authorization": f"Bearer {session.access_jwt}",
                    "Content-Type": media.mime_type or "application/octet-stream",
                },
                content=media.content,
            )
        except httpx.HTTPError as e:
            raise UploadFailed(f"Bluesky image upload failed for {media.filename}: {e}") from e
        if not r.is_success:
            raise UploadFailed(f"Bluesky image upload failed for {media.filename}: {error_message(r)}")

        blob = json_dict(r).get("blob")
        if not blob:
            raise UploadFailed(f"Bluesky image upload returned no blob for {media.filename}")
        return blob

    def publish(
        self,
        handle: str,
        app_password: str,
        text: str,
        media: Sequence[MediaFile] = (),
    ) -> PublishResult:
        if len(media) > MAX_IMAGES:
            return PublishResult.failure(f"Bluesky accepts at most {MAX_IMAGES} images")
        try:
            session = self.login(handle, app_password)
            images = [
                {"alt": item.filename or "", "image": self.upload_blob(session, item)}
                for item in media
            ]
            uri = self._create_post(session, text, images)
        except MultipostError as e:
            logger.info("bluesky_publish_failed", error=e.message)
            return PublishResult.failure(e.message)
        logger.info("bluesky_published", uri=uri, images=len(images))
        return PublishResult.ok(uri)

    def _create_post(self, session: BlueskySession, text: str, images: Sequence[Dict[str, Any]]) -> str:
        record: Dict[str, Any] = {
            "$type": POST_COLLECTION,
            "text": text,
            "createdAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        if images:
            record["embed"] = {"$type": "app.bsky.embed.images", "images": list(images)}
        try:
            r = self.client.post(
                CREATE_RECORD,
                headers={"Authorization": f"Bearer {session.access_jwt}"},
                json={"repo": session.did, "collection": POST_COLLECTION, "record": record},
            )
        except httpx.HTTPError as e:
            raise PublishFailed(f"Bluesky post failed: {e}") from e
        if not r.is_success:
            raise PublishFailed(f"Bluesky post failed: {error_message(r)}")
        uri = json_dict(r).get("uri")
        if not uri:
            raise PublishFailed("Bluesky post failed: no record uri in response")
        return uri
