# Models package
from .user import UserRegister, UserLogin, User, UserInDB, Token, AdminLogin, AdminToken
from .billing import Plan, Subscription, Usage, SubscriptionSnapshot
from .upload import UploadState, UploadToken, UploadRecord, IncomingFile, GuestInfo
from .schemas import (
    TokenCreate, BulkTokenCreate, TokenRefresh, TokenCreated, TokenSummary, TokenInfo,
    UploadResult, QuotaInfo, AdmissionResponse, UploadSummary,
    RelayPassSummary, RelayStatus
)
