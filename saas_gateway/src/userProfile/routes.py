import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from ...config import get_settings
from ...middlewares.jwt_auth import get_current_user, require_csrf
from ..auth.schema import JWTClaims

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["User Profile"])


IMAGE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}


@router.post("/upload-profile-image", dependencies=[Depends(require_csrf)])
async def upload_profile_image(
    image: Optional[UploadFile] = File(None),
    current_user: JWTClaims = Depends(get_current_user),
):
    """Store a profile picture and return its public URL; the client saves it with update-user"""
    settings = get_settings()
    if image is None or not image.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")

    # The stored extension comes from the content type, never from the client file name
    extension = IMAGE_EXTENSIONS.get((image.content_type or "").lower())
    if extension is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be an image")

    # Read one byte past the limit so oversized files are detected without loading all of them
    content = await image.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File size must be less than 5MB")

    file_name = f"{uuid.uuid4()}.{extension}"
    upload_dir = Path(settings.UPLOAD_DIR)
    try:
        upload_dir.mkdir(parents=True, exist_ok=True)
        (upload_dir / file_name).write_bytes(content)
    except OSError as e:
        logger.error("Image upload error: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to upload image")

    logger.info("🖼️ Stored profile image %s for %s", file_name, current_user.user_id)
    return {"imageUrl": f"{settings.UPLOAD_URL_PREFIX.rstrip('/')}/{file_name}"}
