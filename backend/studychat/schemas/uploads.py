"""Pydantic schemas for chat attachment uploads."""

from pydantic import BaseModel, Field


class UploadURLRequest(BaseModel):
    """Request for a presigned upload of a chat image or file."""

    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(default="application/octet-stream", max_length=255)


class UploadURLResponse(BaseModel):
    """Presigned POST data plus the public URL the object will have."""

    upload_url: str
    fields: dict
    file_path: str
    public_url: str
