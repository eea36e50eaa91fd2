# multipost/services/platforms.py
"""Types shared by the platform adapters and the publish orchestrator."""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from multipost.config import settings


@dataclass(frozen=True)
class MediaFile:
    content: bytes
    mime_type: str
    filename: str
    size: int

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")


@dataclass(frozen=True)
class PublishResult:
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, post_id: str) -> "PublishResult":
        return cls(success=True, id=post_id)

    @classmethod
    def failure(cls, error: str) -> "PublishResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "id": self.id}
        return {"success": False, "error": self.error}


@dataclass(frozen=True)
class TokenGrant:
    """Token endpoint response, normalised."""
    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None


def default_timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.http_timeout_seconds, connect=5)


def json_dict(resp: httpx.Response) -> Dict[str, Any]:
    """Response body as a dict; anything else (invalid JSON, lists, scalars) becomes {}."""
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def error_message(resp: httpx.Response, *keys: str) -> str:
    """Best human-readable error from a platform response body."""
    data = json_dict(resp)
    if data:
        for key in keys or ("message", "error_description", "error"):
            if data.get(key):
                return str(data[key])
    text = (resp.text or "").strip()
    return text[:500] if text else f"HTTP {resp.status_code}"
