"""
Domain exceptions.

Every error a guest can see carries a stable `code` and a short, fixed
`message`; internal details stay in the logs.
"""


class GuestDropError(Exception):
    code = "Error"
    status_code = 500
    message = "Something went wrong"

    def __init__(self, message: str = None, **details):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {"code": self.code, "error": self.message}


# ============ Admission: malformed input ============

class InvalidTokenFormat(GuestDropError):
    code = "InvalidTokenFormat"
    status_code = 400
    message = "Invalid upload link"


class NoFilesUploaded(GuestDropError):
    code = "NoFilesUploaded"
    status_code = 400
    message = "No files uploaded"


class TooManyFiles(GuestDropError):
    code = "TooManyFiles"
    status_code = 400
    message = "Too many files in one upload"


class FileTooLarge(GuestDropError):
    code = "FileTooLarge"
    status_code = 413
    message = "File too large. Maximum size is 10MB."


class UnsupportedFileType(GuestDropError):
    code = "UnsupportedFileType"
    status_code = 415
    message = "Only image files are allowed"


# ============ Admission: absent / expired ============

class TokenNotFound(GuestDropError):
    code = "TokenNotFound"
    status_code = 404
    message = "Invalid upload link"


class TokenExpired(GuestDropError):
    code = "TokenExpired"
    status_code = 410
    message = "Upload link has expired"


# ============ Admission: capacity ============

class UploadLimitExceeded(GuestDropError):
    code = "UploadLimitExceeded"
    status_code = 413
    message = "This upload link is full"


class QuotaDenied(GuestDropError):
    """Base for subscription quota denials"""
    status_code = 403


class NoActiveSubscription(QuotaDenied):
    code = "NoActiveSubscription"
    message = "The organizer has no active subscription"


class FileLimitExceeded(QuotaDenied):
    code = "FileLimitExceeded"
    message = "The organizer's file limit has been reached"


class StorageLimitExceeded(QuotaDenied):
    code = "StorageLimitExceeded"
    status_code = 413
    message = "The organizer's storage limit has been reached"


class TooManyTokens(GuestDropError):
    code = "TooManyTokens"
    status_code = 400
    message = "Too many tokens in one request"


class UnsupportedQrFormat(GuestDropError):
    code = "UnsupportedQrFormat"
    status_code = 400
    message = "QR format must be png or svg"


class PlanNotFound(GuestDropError):
    code = "PlanNotFound"
    status_code = 404
    message = "Plan not found"


class TrialAlreadyUsed(GuestDropError):
    code = "TrialAlreadyUsed"
    status_code = 409
    message = "The free trial has already been used"


class UploadFailed(GuestDropError):
    code = "UploadFailed"
    status_code = 500
    message = "Upload failed. Please try again."


# ============ Storage / relay ============

class StorageError(GuestDropError):
    code = "StorageError"
    message = "Storage operation failed"


class StorageNotConfigured(StorageError):
    code = "StorageNotConfigured"
    message = "Durable storage is not configured"


class ContainerResolutionError(StorageError):
    code = "ContainerResolutionError"
    message = "Could not resolve durable storage destination"


QUOTA_ERRORS = {
    NoActiveSubscription.code: NoActiveSubscription,
    FileLimitExceeded.code: FileLimitExceeded,
    StorageLimitExceeded.code: StorageLimitExceeded,
}
