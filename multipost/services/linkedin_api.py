# multipost/services/linkedin_api.py
"""LinkedIn OAuth2 + UGC posting adapter."""
from typing import Any, Dict, Optional, Sequence, Tuple
from urllib.parse import urlencode, quote

import httpx

from multipost.auth.oidc import id_token_subject
from multipost.config import settings
from multipost.errors import AuthExchangeFailed, MultipostError, PublishFailed, UploadFailed
from multipost.services.platforms import MediaFile, PublishResult, TokenGrant, default_timeout, error_message, json_dict
from multipost.utils.logging import get_logger

logger = get_logger(__name__)

AUTH_URL  = "https://www.linkedin.com/oauth/v2/authorization"
TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
USERINFO_URL = "https://api.linkedin.com/v2/userinfo"
UGC_URL   = "https://api.linkedin.com/v2/ugcPosts"
REGISTER_UPLOAD_URL = "https://api.linkedin.com/v2/assets?action=registerUpload"

UPLOAD_MECHANISM = "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest"
DEFAULT_EXPIRES_IN = 3600


def log_request_id(resp: httpx.Response) -> None:
    req_id = resp.headers.get("x-restli-request-id")
    if req_id:
        logger.debug("linkedin_request_id", request_id=req_id, status=resp.status_code)


def person_urn(person_id: str) -> str:
    return f"urn:li:person:{person_id}"


class LinkedInClient:
    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.client_id = client_id or settings.linkedin_client_id
        self.client_secret = client_secret or settings.linkedin_client_secret
        self.redirect_uri = redirect_uri or settings.linkedin_redirect_uri
        self.client = httpx.Client(timeout=timeout or default_timeout(), transport=transport)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "LinkedInClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # --- OAuth ---

    def authorization_url(self, state: str, scopes: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": scopes or settings.linkedin_scopes,
            "state": state,
        }
        qs = urlencode(params, quote_via=quote, safe=":/")
        return f"{AUTH_URL}?{qs}"

    def exchange_code(self, code: str, redirect_uri: Optional[str] = None) -> TokenGrant:
        return self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or self.redirect_uri,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        })

    def refresh(self, refresh_token: str) -> TokenGrant:
        return self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        })

    def _token_request(self, data: Dict[str, str]) -> TokenGrant:
        grant_type = data["grant_type"]
        try:
            r = self.client.post(
                TOKEN_URL,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            logger.warning("linkedin_token_request_error", grant_type=grant_type, error=str(e))
            raise AuthExchangeFailed(f"LinkedIn token request failed: {e}") from e

        log_request_id(r)
        body = json_dict(r)
        if not r.is_success:
            logger.warning("linkedin_token_rejected", grant_type=grant_type, status=r.status_code)
            raise AuthExchangeFailed(error_message(r, "error_description", "error", "message"))
        if not body.get("access_token"):
            logger.warning("linkedin_token_missing", grant_type=grant_type)
            raise AuthExchangeFailed(body.get("error_description") or body.get("error") or "token_failed")

        return TokenGrant(
            access_token=body["access_token"],
            expires_in=int(body.get("expires_in") or DEFAULT_EXPIRES_IN),
            refresh_token=body.get("refresh_token"),
            id_token=body.get("id_token"),
        )

    def fetch_identity(self, access_token: str, id_token: Optional[str] = None) -> str:
        """Return the member id (OpenID sub) that authors posts."""
        if id_token:
            sub = id_token_subject(id_token)
            if sub:
                return sub

        try:
            r = self.client.get(USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
        except httpx.HTTPError as e:
            raise AuthExchangeFailed(f"Profile fetch failed: {e}") from e
        log_request_id(r)
        if not r.is_success:
            raise AuthExchangeFailed(f"Profile fetch failed: {error_message(r)}")
        sub = json_dict(r).get("sub")
        if not sub:
            raise AuthExchangeFailed("Profile fetch failed: no 'sub' in userinfo")
        return str(sub)

    # --- media ---

    def register_image_upload(self, access_token: str, author_urn: str) -> Tuple[str, str]:
        """Return (upload_url, asset_urn)."""
        payload = {
            "registerUploadRequest": {
                "owner": author_urn,
                "recipes": ["urn:li:digitalmediaRecipe:feedshare-image"],
                "serviceRelationships": [{
                    "relationshipType": "OWNER",
                    "identifier": "urn:li:userGeneratedContent"
                }]
            }
        }
        try:
            r = self.client.post(
                REGISTER_UPLOAD_URL,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
        except httpx.HTTPError as e:
            raise UploadFailed(f"LinkedIn image registration failed: {e}") from e
        log_request_id(r)
        if not r.is_success:
            raise UploadFailed(f"LinkedIn image registration failed: {error_message(r)}")
        try:
            value = r.json()["value"]
            return value["uploadMechanism"][UPLOAD_MECHANISM]["uploadUrl"], value["asset"]
        except (KeyError, TypeError, ValueError):
            raise UploadFailed("LinkedIn image registration returned no upload URL")

    def upload_image(self, upload_url: str, access_token: str, media: MediaFile) -> None:
        try:
            r = self.client.put(
                upload_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": media.mime_type or "application/octet-stream",
                },
                content=media.content,
            )
        except httpx.HTTPError as e:
            raise UploadFailed(f"LinkedIn image upload failed for {media.filename}: {e}") from e
        if not r.is_success:
            raise UploadFailed(f"LinkedIn image upload failed for {media.filename}: HTTP {r.status_code}")

    # --- posting ---

    def publish(
        self,
        access_token: str,
        text: str,
        media: Sequence[MediaFile] = (),
        author_id: Optional[str] = None,
    ) -> PublishResult:
        try:
            author_urn = person_urn(author_id or self.fetch_identity(access_token))
            assets = []
            for item in media:
                upload_url, asset_urn = self.register_image_upload(access_token, author_urn)
                self.upload_image(upload_url, access_token, item)
                assets.append(asset_urn)
            post_id = self._create_post(access_token, author_urn, text, assets)
        except MultipostError as e:
            logger.info("linkedin_publish_failed", error=e.message)
            return PublishResult.failure(e.message)
        logger.info("linkedin_published", post_id=post_id, images=len(assets))
        return PublishResult.ok(post_id)

    def _create_post(self, access_token: str, author_urn: str, text: str, assets: Sequence[str]) -> str:
        share: Dict[str, Any] = {
            "shareCommentary": {"text": text},
            "shareMediaCategory": "IMAGE" if assets else "NONE",
        }
        if assets:
            share["media"] = [{"status": "READY", "media": asset} for asset in assets]
        payload = {
            "author": author_urn,
            "lifecycleState": "PUBLISHED",
            "specificContent": {"com.linkedin.ugc.ShareContent": share},
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }
        try:
            r = self.client.post(
                UGC_URL,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                    "X-Restli-Protocol-Version": "2.0.0",
                },
                json=payload,
            )
        except httpx.HTTPError as e:
            raise PublishFailed(f"LinkedIn post failed: {e}") from e
        log_request_id(r)
        if not r.is_success:
            raise PublishFailed(f"LinkedIn post failed ({r.status_code}): {error_message(r)}")

        post_id = json_dict(r).get("id") or r.headers.get("x-restli-id")
        if not post_id:
            raise PublishFailed("LinkedIn post failed: no post id in response")
        return str(post_id)
