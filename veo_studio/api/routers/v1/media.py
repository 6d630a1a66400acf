from fastapi import APIRouter, Depends, HTTPException, Response

from ...services.media_store import MediaStore
from ...services.session import get_media_store

router = APIRouter()


@router.get("/media/{media_id}")
def get_media(media_id: str, download: bool = False, store: MediaStore = Depends(get_media_store)):
    found = store.resolve(media_id)
    if found is None:
        raise HTTPException(status_code=404, detail="media not found")
    ref, data = found
    headers = {}
    if download:
        headers["Content-Disposition"] = 'attachment; filename="generated-video.mp4"'
    return Response(content=data, media_type=ref.mime_type, headers=headers)
