"""
Upload token and upload record models
"""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class UploadState(str, Enum):
    PENDING_LOCAL = "pending_local"
    IN_DURABLE_STORAGE = "in_durable_storage"
    FAILED = "failed"


class UploadToken(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    user_id: str
    token: str  # "<64 hex>.<16 hex>"
    name: str
    max_uploads: int
    current_uploads: int = 0
    created_at: datetime
    expires_at: Optional[datetime] = None
    used: bool = False
    deleted_at: Optional[datetime] = None
    signing_payload: Optional[str] = None  # canonical JSON the suffix was signed over
    access_count: int = 0
    qr_generated_at: Optional[datetime] = None


class UploadRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    token_id: str
    user_id: str
    original_name: str
    filename: str  # name in temporary storage
    size: int
    mime_type: str
    guest_name: str = "Anonymous"
    guest_message: str = ""
    created_at: datetime
    state: UploadState = UploadState.PENDING_LOCAL
    durable_at: Optional[datetime] = None
    remote_handle: Optional[str] = None
    relay_attempts: int = 0
    last_error: Optional[str] = None


class IncomingFile(BaseModel):
    """A file presented for admission, fully read into memory"""
    filename: str
    content_type: str
    content: bytes = Field(repr=False)

    @property
    def size(self) -> int:
        return len(self.content)


class GuestInfo(BaseModel):
    guest_name: str = "Anonymous"
    guest_message: str = ""
