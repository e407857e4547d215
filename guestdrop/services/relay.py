"""
Relay worker: moves admitted uploads from temporary storage into durable
storage.

Each pass walks every record still in `pending_local`, oldest first, one
file at a time. A failure on one file is logged and counted and the pass
moves on; only a failure to resolve the destination container aborts it.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from guestdrop.core.config import RELAY_FILE_TIMEOUT, RELAY_MAX_ATTEMPTS
from guestdrop.models.schemas import RelayPassSummary
from guestdrop.models.upload import UploadRecord, UploadState
from guestdrop.storage.base import DurableStorage
from guestdrop.storage.local import LocalStorage
from guestdrop.utils.helpers import format_file_size, utc_now
from guestdrop.utils.locks import KeyedLock
from .errors import ContainerResolutionError

logger = logging.getLogger(__name__)

PROCESSED = "processed"
FAILED = "failed"
GIVEN_UP = "given_up"

MISSING_FILE_ERROR = "Local file missing"


@dataclass
class RelayPassResult:
    processed: int = 0
    failed: int = 0
    given_up: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_summary(self) -> RelayPassSummary:
        return RelayPassSummary(
            processed=self.processed,
            failed=self.failed,
            given_up=self.given_up,
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


class RelayWorker:

    def __init__(
        self,
        repo,
        temp_storage: LocalStorage,
        durable: DurableStorage,
        container_name: str,
        file_timeout: float = RELAY_FILE_TIMEOUT,
        max_attempts: int = RELAY_MAX_ATTEMPTS,
        locks: Optional[KeyedLock] = None,
    ):
        self.repo = repo
        self.temp_storage = temp_storage
        self.durable = durable
        self.container_name = container_name
        self.file_timeout = file_timeout
        self.max_attempts = max_attempts
        self.locks = locks or KeyedLock()
        self._container: Optional[str] = None

    async def resolve_container(self) -> str:
        """Find or create the destination once, then reuse it for later passes"""
        if self._container is None:
            try:
                self._container = await self.durable.ensure_container(self.container_name)
            except ContainerResolutionError:
                raise
            except Exception as e:
                raise ContainerResolutionError(f"{self.container_name}: {e}") from e
            logger.info(f"Relay destination resolved: {self._container}")
        return self._container

    async def run_pass(self) -> RelayPassResult:
        result = RelayPassResult(started_at=utc_now())
        container = await self.resolve_container()

        records = await self.repo.list_records_by_state(UploadState.PENDING_LOCAL)
        for listed in records:
            try:
                record = await self._confirm_pending(listed)
                if record is None:
                    continue
                outcome = await self._relay_one(record, container)
            except Exception as e:
                logger.error(f"Relay bookkeeping failed for upload {listed.id}: {e}")
                outcome = FAILED

            if outcome == PROCESSED:
                result.processed += 1
            elif outcome == GIVEN_UP:
                result.failed += 1
                result.given_up += 1
            else:
                result.failed += 1

        result.finished_at = utc_now()
        logger.info(
            f"Relay pass finished: {result.processed} processed, "
            f"{result.failed} failed ({result.given_up} given up) of {len(records)}"
        )
        return result

    async def _confirm_pending(self, listed: UploadRecord) -> Optional[UploadRecord]:
        """Wait out any admission still holding the owner's lock, then re-read the record"""
        async with self.locks.hold(listed.user_id):
            current = await self.repo.get_upload_record(listed.id)
        if current is None or current.state != UploadState.PENDING_LOCAL:
            return None
        return current

    async def _relay_one(self, record: UploadRecord, container: str) -> str:
        if not await self.temp_storage.exists(record.filename):
            logger.warning(f"Local file for upload {record.id} is missing, giving up on it")
            await self.repo.update_record_state(
                record.id,
                UploadState.IN_DURABLE_STORAGE,
                durable_at=utc_now(),
                last_error=MISSING_FILE_ERROR,
            )
            return GIVEN_UP

        try:
            remote_handle = await asyncio.wait_for(
                self.durable.put(
                    container,
                    self.temp_storage.path(record.filename),
                    record.original_name,
                    record.mime_type,
                ),
                timeout=self.file_timeout,
            )
        except Exception as e:
            await self._record_failure(record, e)
            return FAILED

        # State first: a crash before the delete leaves a stray local file, not a lost handle
        await self.repo.update_record_state(
            record.id,
            UploadState.IN_DURABLE_STORAGE,
            durable_at=utc_now(),
            remote_handle=remote_handle,
            last_error=None,
        )
        await self.temp_storage.delete(record.filename)
        logger.info(f"Relayed upload {record.id} ({format_file_size(record.size)}) to {self.durable.name}")
        return PROCESSED

    async def _record_failure(self, record: UploadRecord, error: Exception) -> None:
        attempts = record.relay_attempts + 1
        message = str(error) or type(error).__name__
        new_state = UploadState.PENDING_LOCAL
        if self.max_attempts and attempts >= self.max_attempts:
            new_state = UploadState.FAILED

        logger.error(f"Relay of upload {record.id} failed (attempt {attempts}): {message}")
        await self.repo.update_record_state(
            record.id,
            new_state,
            relay_attempts=attempts,
            last_error=message[:500],
        )

    async def retry_failed(self) -> int:
        """Put records parked in `failed` back in the queue"""
        records = await self.repo.list_records_by_state(UploadState.FAILED)
        for record in records:
            await self.repo.update_record_state(
                record.id,
                UploadState.PENDING_LOCAL,
                relay_attempts=0,
                last_error=None,
            )
        if records:
            logger.info(f"Re-queued {len(records)} failed upload(s)")
        return len(records)
