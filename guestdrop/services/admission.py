"""
Guest upload admission.

Every check runs before anything is written. Only a batch that passes all
of them is persisted, and a failure while persisting removes whatever the
batch already wrote.
"""
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Tuple

from guestdrop.core.config import (
    ALLOWED_EXTENSIONS,
    ALLOWED_MIME_TYPES,
    MAX_FILE_SIZE,
    MAX_FILES_PER_REQUEST,
)
from guestdrop.models.schemas import TokenInfo
from guestdrop.models.upload import GuestInfo, IncomingFile, UploadRecord, UploadState, UploadToken
from guestdrop.storage.local import LocalStorage
from guestdrop.utils.helpers import get_file_extension, is_past, utc_now
from guestdrop.utils.locks import KeyedLock
from . import tokens
from .errors import (
    QUOTA_ERRORS,
    FileTooLarge,
    GuestDropError,
    InvalidTokenFormat,
    NoActiveSubscription,
    NoFilesUploaded,
    TokenExpired,
    TokenNotFound,
    TooManyFiles,
    UnsupportedFileType,
    UploadFailed,
    UploadLimitExceeded,
)
from .quota import QuotaDecision, QuotaGate

logger = logging.getLogger(__name__)


@dataclass
class AdmissionResult:
    token_id: str
    records: List[UploadRecord]
    remaining_uploads: int
    quota: QuotaDecision

    @property
    def record_ids(self) -> List[str]:
        return [record.id for record in self.records]


@dataclass
class _BatchProgress:
    """What a batch has persisted so far, for rollback"""
    written: List[str] = field(default_factory=list)
    counted: int = 0
    recorded: Optional[Tuple[int, int]] = None
    record_ids: List[str] = field(default_factory=list)
    created: List[UploadRecord] = field(default_factory=list)


class AdmissionController:

    def __init__(
        self,
        repo,
        temp_storage: LocalStorage,
        secret_key: str,
        locks: Optional[KeyedLock] = None,
        max_file_size: int = MAX_FILE_SIZE,
        max_files: int = MAX_FILES_PER_REQUEST,
    ):
        self.repo = repo
        self.temp_storage = temp_storage
        self.secret_key = secret_key
        self.quota = QuotaGate(repo, locks)
        self.max_file_size = max_file_size
        self.max_files = max_files

    def validate_files(self, files: List[IncomingFile]) -> None:
        if not files:
            raise NoFilesUploaded()
        if len(files) > self.max_files:
            raise TooManyFiles(f"Maximum {self.max_files} files per upload")

        for incoming in files:
            extension = get_file_extension(incoming.filename)
            content_type = (incoming.content_type or '').lower()
            if extension not in ALLOWED_EXTENSIONS or content_type not in ALLOWED_MIME_TYPES:
                raise UnsupportedFileType(filename=incoming.filename)
            if incoming.size > self.max_file_size:
                raise FileTooLarge(filename=incoming.filename, size=incoming.size)

    async def resolve_token(self, token_string: str) -> UploadToken:
        if not tokens.verify_shape(token_string):
            raise InvalidTokenFormat()

        token = await self.repo.get_token_by_value(token_string)
        if not token or token.deleted_at:
            raise TokenNotFound()

        if token.signing_payload:
            payload = json.loads(token.signing_payload)
            if not tokens.verify_signature(self.secret_key, token_string, payload):
                logger.warning(f"Signature mismatch for upload token {token.id}")
                raise TokenNotFound()
        return token

    async def token_info(self, token_string: str, now: Optional[datetime] = None) -> TokenInfo:
        """Read-only capacity view for the guest upload page"""
        token = await self.resolve_token(token_string)
        if is_past(token.expires_at, now or utc_now()):
            raise TokenExpired()

        remaining = max(0, token.max_uploads - token.current_uploads)
        return TokenInfo(
            name=token.name,
            max_uploads=token.max_uploads,
            current_uploads=token.current_uploads,
            remaining_uploads=remaining,
            expires_at=token.expires_at,
            is_expired=False,
            can_upload=remaining > 0,
        )

    async def admit(
        self,
        token_string: str,
        files: List[IncomingFile],
        guest: Optional[GuestInfo] = None,
        now: Optional[datetime] = None,
    ) -> AdmissionResult:
        guest = guest or GuestInfo()
        now = now or utc_now()

        if not tokens.verify_shape(token_string):
            raise InvalidTokenFormat()
        self.validate_files(files)

        token = await self.resolve_token(token_string)
        if is_past(token.expires_at, now):
            raise TokenExpired()

        batch_size = len(files)
        if token.current_uploads + batch_size > token.max_uploads:
            raise UploadLimitExceeded(
                current=token.current_uploads, requested=batch_size, maximum=token.max_uploads
            )

        total_size = sum(incoming.size for incoming in files)
        async with self.quota.hold(token.user_id):
            decision = await self.quota.check(token.user_id, total_size, batch_size)
            if not decision.allowed:
                raise QUOTA_ERRORS[decision.reason]()

            records = await self._persist_batch(token, files, guest, total_size, now)

        remaining = await self._refresh_token_state(token)
        logger.info(f"Admitted {batch_size} file(s) for token {token.id}, {remaining} upload(s) left")
        return AdmissionResult(
            token_id=token.id,
            records=records,
            remaining_uploads=remaining,
            quota=replace(
                decision,
                file_count=decision.file_count + batch_size,
                storage_bytes_used=decision.storage_bytes_used + total_size,
            ),
        )

    async def _persist_batch(
        self,
        token: UploadToken,
        files: List[IncomingFile],
        guest: GuestInfo,
        total_size: int,
        now: datetime,
    ) -> List[UploadRecord]:
        batch = _BatchProgress()

        try:
            for incoming in files:
                stored_name = f"{uuid.uuid4().hex}.{get_file_extension(incoming.filename)}"
                await self.temp_storage.write(stored_name, incoming.content)
                batch.written.append(stored_name)

            # Conditional on the ceiling, so a concurrent batch cannot push past it
            if not await self.repo.increment_token_upload_count(token.id, len(files)):
                raise UploadLimitExceeded()
            batch.counted = len(files)

            if not await self.quota.record(token.user_id, total_size, len(files)):
                raise NoActiveSubscription()
            batch.recorded = (total_size, len(files))

            # Records go last; the relay re-reads each one under the same per-user lock
            for incoming, stored_name in zip(files, batch.written):
                record = UploadRecord(
                    id=str(uuid.uuid4()),
                    token_id=token.id,
                    user_id=token.user_id,
                    original_name=incoming.filename,
                    filename=stored_name,
                    size=incoming.size,
                    mime_type=incoming.content_type.lower(),
                    guest_name=guest.guest_name.strip() or "Anonymous",
                    guest_message=guest.guest_message,
                    created_at=now,
                    state=UploadState.PENDING_LOCAL,
                )
                batch.record_ids.append(record.id)
                batch.created.append(await self.repo.create_upload_record(record))
        except GuestDropError:
            await self._rollback(token, batch)
            raise
        except Exception as e:
            logger.error(f"Upload batch for token {token.id} failed: {e}")
            await self._rollback(token, batch)
            raise UploadFailed() from e

        return batch.created

    async def _rollback(self, token: UploadToken, batch: _BatchProgress) -> None:
        """
        Undo a partially persisted batch. Every step runs even when an
        earlier one fails; failures are logged and the caller's error stands.
        """
        for stored_name in batch.written:
            try:
                await self.temp_storage.delete(stored_name)
            except Exception as e:
                logger.error(f"Rollback could not delete local file {stored_name}: {e}")

        if batch.counted:
            try:
                await self.repo.increment_token_upload_count(token.id, -batch.counted)
            except Exception as e:
                logger.error(f"Rollback could not release {batch.counted} slot(s) on token {token.id}: {e}")

        if batch.recorded:
            size, count = batch.recorded
            try:
                await self.repo.increment_usage(token.user_id, -size, -count)
            except Exception as e:
                logger.error(f"Rollback could not revert usage for user {token.user_id}: {e}")

        # Includes an id whose insert raised; it may have been written anyway
        for record_id in batch.record_ids:
            try:
                await self.repo.delete_upload_record(record_id)
            except Exception as e:
                logger.error(f"Rollback could not delete upload record {record_id}: {e}")

        logger.warning(f"Rolled back {len(batch.written)} file(s) for token {token.id}")

    async def _refresh_token_state(self, token: UploadToken) -> int:
        current = await self.repo.get_token_by_id(token.id)
        remaining = max(0, current.max_uploads - current.current_uploads)
        if remaining == 0 and not current.used:
            await self.repo.update_token(token.id, used=True)
        return remaining
