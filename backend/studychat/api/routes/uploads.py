"""API routes for chat attachment uploads."""

import logging

from fastapi import APIRouter, HTTPException, status

from studychat.api.deps import CurrentUserId, StorageDep
from studychat.config import get_settings
from studychat.schemas.uploads import UploadURLRequest, UploadURLResponse
from studychat.services.storage import StorageError

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/uploads", tags=["uploads"])

ALLOWED_CONTENT_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
    }
)


@router.post("/chat-url", response_model=UploadURLResponse)
async def get_chat_upload_url(
    request: UploadURLRequest,
    storage: StorageDep,
    user_id: CurrentUserId,
):
    """
    Generate presigned POST data for a chat image or document.

    Flow:
    1. Client calls this endpoint with filename and content type
    2. Client uploads the file directly to storage using the presigned data
    3. Client sends ``public_url`` as the message's image_url or file_url
    """
    content_type = request.content_type.lower()
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported file type: {request.content_type}",
        )

    file_key = storage.chat_upload_key(user_id, request.filename)
    try:
        presigned = await storage.generate_presigned_upload_url(
            bucket=settings.chat_uploads_bucket,
            file_key=file_key,
            content_type=content_type,
        )
    except StorageError:
        logger.exception("Presigned upload failed for %s", file_key)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Upload storage is unavailable. Please try again later.",
        )

    return UploadURLResponse(
        upload_url=presigned["url"],
        fields=presigned["fields"],
        file_path=file_key,
        public_url=storage.public_url(settings.chat_uploads_bucket, file_key),
    )
