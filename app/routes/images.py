"""Card image delivery."""

from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from app.config import settings
from app.dependencies import get_blob_store
from app.services.blob_store import BlobStore, InvalidBlobKeyError
from app.services.image_token import verify_token

router = APIRouter(prefix="/api/images", tags=["images"])


@router.get("/{key:path}")
def get_image(
    key: str,
    request: Request,
    t: Optional[str] = None,
    blobs: BlobStore = Depends(get_blob_store),
):
    """
    Serve a stored image.

    A Referer from another host is rejected. When IMAGE_SECRET is configured
    a valid signed token must be passed as `t`.
    """
    referer = request.headers.get("referer")
    if referer and urlparse(referer).netloc != request.url.netloc:
        raise HTTPException(status_code=403, detail="Forbidden")

    if settings.IMAGE_SECRET and not (t and verify_token(key, t, settings.IMAGE_SECRET)):
        raise HTTPException(status_code=403, detail="Forbidden")

    try:
        blob = blobs.get(key)
    except InvalidBlobKeyError:
        raise HTTPException(status_code=400, detail="Invalid key")
    if blob is None:
        raise HTTPException(status_code=404, detail="Not found")

    return Response(
        content=blob.data,
        media_type=blob.mime_type,
        headers={
            "ETag": f'"{blob.etag}"',
            "Cache-Control": "public, max-age=31536000, immutable",
        },
    )
