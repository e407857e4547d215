"""Pydantic request/response schemas for the GuestDrop API"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


# ============== Token Models ==============
class TokenCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    max_uploads: int = Field(ge=1, le=100000)
    expires_in: Optional[int] = Field(default=None, ge=1)  # days

class BulkTokenCreate(BaseModel):
    tokens: List[dict]

class TokenRefresh(BaseModel):
    expires_in: Optional[int] = Field(default=None, ge=1)  # days; None clears expiry

class TokenCreated(BaseModel):
    token: str
    token_id: str
    url: str
    name: str
    max_uploads: int
    expires_at: Optional[datetime] = None

class TokenSummary(BaseModel):
    id: str
    name: str
    token: str
    max_uploads: int
    current_uploads: int
    created_at: datetime
    expires_at: Optional[datetime] = None
    is_expired: bool = False
    used: bool = False

class TokenInfo(BaseModel):
    """Public, read-only view used by the guest upload page"""
    name: str
    max_uploads: int
    current_uploads: int
    remaining_uploads: int
    expires_at: Optional[datetime] = None
    is_expired: bool = False
    can_upload: bool = True


# ============== Upload Models ==============
class UploadResult(BaseModel):
    id: str
    filename: str
    status: str = "pending"

class QuotaInfo(BaseModel):
    file_count: int
    storage_bytes_used: int
    max_file_count: Optional[int] = None
    max_storage_bytes: int
    remaining_files: Optional[int] = None
    remaining_storage_bytes: int

class AdmissionResponse(BaseModel):
    success: bool = True
    message: str
    uploads: List[UploadResult]
    remaining_uploads: int
    quota: Optional[QuotaInfo] = None

class UploadSummary(BaseModel):
    id: str
    token_id: str
    original_name: str
    size: int
    mime_type: str
    guest_name: str
    guest_message: str
    created_at: datetime
    state: str
    durable_at: Optional[datetime] = None

class GuestUpload(BaseModel):
    """Public view of an upload, without owner or storage details"""
    id: str
    original_name: str
    size: int
    guest_name: str
    created_at: datetime
    state: str


# ============== Relay Models ==============
class RelayPassSummary(BaseModel):
    processed: int = 0
    failed: int = 0
    given_up: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

class RelayStatus(BaseModel):
    running: bool
    last_pass: Optional[RelayPassSummary] = None
    pending: int = 0
    failed: int = 0
