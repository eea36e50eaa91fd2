# multipost/routers/publish.py
import json
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from multipost.deps import get_db, current_user_id
from multipost.errors import ValidationError
from multipost.routers.settings import get_bluesky_client, get_linkedin_client
from multipost.services import publisher
from multipost.services.bluesky_api import BlueskyClient
from multipost.services.linkedin_api import LinkedInClient
from multipost.services.platforms import MediaFile

router = APIRouter(tags=["publish"])

def _parse_platforms(raw: str) -> List[str]:
    try:
        value = json.loads(raw or "[]")
    except json.JSONDecodeError:
        raise ValidationError("platforms must be a JSON list")
    if not isinstance(value, list):
        raise ValidationError("platforms must be a JSON list")
    return [str(p) for p in value]

@router.post("/publish")
def publish(
    content: str = Form(""),
    platforms: str = Form("[]"),
    media: List[UploadFile] = File(default=[]),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    linkedin: LinkedInClient = Depends(get_linkedin_client),
    bluesky: BlueskyClient = Depends(get_bluesky_client),
) -> Dict[str, Any]:
    files = []
    for upload in media:
        data = upload.file.read()
        files.append(MediaFile(
            content=data,
            mime_type=upload.content_type or "application/octet-stream",
            filename=upload.filename or "",
            size=len(data),
        ))

    request = publisher.build_publish_request(content, _parse_platforms(platforms), files)
    results = publisher.publish(db, user_id, request, linkedin=linkedin, bluesky=bluesky)
    return {"results": {name: result.to_dict() for name, result in results.items()}}
