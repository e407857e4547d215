"""
Persistence interface.

The relational and document implementations expose the same coroutine
methods; one is chosen at startup (see core.database) and the rest of the
app only ever talks to this interface.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import List, Optional

from guestdrop.models.billing import Plan, Subscription, Usage, SubscriptionSnapshot
from guestdrop.models.upload import UploadRecord, UploadState, UploadToken
from guestdrop.models.user import UserInDB
from guestdrop.utils.helpers import ensure_utc, is_past, utc_now


def normalize_document(doc: dict) -> dict:
    """UTC-normalize datetimes and unwrap enums on the way in or out of storage"""
    normalized = {}
    for key, value in doc.items():
        if isinstance(value, datetime):
            value = ensure_utc(value)
        elif isinstance(value, Enum):
            value = value.value
        normalized[key] = value
    return normalized


class Repository(ABC):

    async def init(self):
        """Create tables/indexes. Safe to call repeatedly."""

    async def close(self):
        """Release connections."""

    # ============ Users ============

    @abstractmethod
    async def create_user(self, email: str, name: str, password_hash: str, is_admin: bool = False) -> UserInDB:
        ...

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> Optional[UserInDB]:
        ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[UserInDB]:
        ...

    # ============ Plans & subscriptions ============

    @abstractmethod
    async def upsert_plan(self, plan: dict) -> Plan:
        """Insert a plan keyed by name, or update the existing one"""

    @abstractmethod
    async def list_plans(self) -> List[Plan]:
        ...

    @abstractmethod
    async def get_plan(self, plan_id: str) -> Optional[Plan]:
        ...

    @abstractmethod
    async def get_plan_by_name(self, name: str) -> Optional[Plan]:
        ...

    @abstractmethod
    async def create_subscription(self, user_id: str, plan_id: str, now: Optional[datetime] = None) -> Subscription:
        """Cancel any active subscription, open a new one and a fresh usage period"""

    @abstractmethod
    async def get_subscription(self, user_id: str) -> Optional[Subscription]:
        """Latest subscription with status active, regardless of period end"""

    @abstractmethod
    async def list_subscriptions(self, user_id: str) -> List[Subscription]:
        ...

    @abstractmethod
    async def get_usage(self, user_id: str) -> Usage:
        """Usage counters for the current active subscription (zeros if none)"""

    @abstractmethod
    async def increment_usage(self, user_id: str, size: int, file_count: int = 1) -> bool:
        ...

    async def get_active_subscription(self, user_id: str, now: Optional[datetime] = None) -> Optional[SubscriptionSnapshot]:
        """
        Snapshot of plan limits plus usage. A subscription whose period has
        ended is reported as absent whatever its stored status says.
        """
        subscription = await self.get_subscription(user_id)
        if not subscription:
            return None
        if is_past(subscription.current_period_end, now or utc_now()):
            return None

        plan = await self.get_plan(subscription.plan_id)
        if not plan:
            return None

        usage = await self.get_usage(user_id)
        return SubscriptionSnapshot(
            user_id=user_id,
            subscription_id=subscription.id,
            plan_id=plan.id,
            plan_name=plan.name,
            max_storage_bytes=plan.max_storage_bytes,
            max_file_count=plan.max_files,
            period_start=subscription.current_period_start,
            period_end=subscription.current_period_end,
            file_count=usage.file_count,
            storage_bytes_used=usage.storage_bytes_used,
        )

    # ============ Upload tokens ============

    @abstractmethod
    async def create_token(self, token: UploadToken) -> UploadToken:
        ...

    @abstractmethod
    async def get_token_by_value(self, value: str) -> Optional[UploadToken]:
        """Exact match on the token string, soft-deleted tokens included"""

    @abstractmethod
    async def get_token_by_id(self, token_id: str) -> Optional[UploadToken]:
        ...

    @abstractmethod
    async def list_tokens(self, user_id: str) -> List[UploadToken]:
        """Owner's tokens, newest first, soft-deleted ones excluded"""

    @abstractmethod
    async def list_expired_tokens(self, now: datetime) -> List[UploadToken]:
        """Tokens of every owner whose expiry is before now, soft-deleted ones excluded"""

    @abstractmethod
    async def increment_token_upload_count(self, token_id: str, count: int) -> bool:
        """
        Atomically add `count` to current_uploads only if the result stays
        within max_uploads. Negative counts (rollback) always apply.
        Returns False when the ceiling would be crossed.
        """

    @abstractmethod
    async def update_token(self, token_id: str, **fields) -> bool:
        ...

    @abstractmethod
    async def increment_token_access(self, token_id: str) -> None:
        ...

    async def soft_delete_token(self, token_id: str) -> bool:
        return await self.update_token(token_id, deleted_at=utc_now())

    # ============ Upload records ============

    @abstractmethod
    async def create_upload_record(self, record: UploadRecord) -> UploadRecord:
        ...

    @abstractmethod
    async def delete_upload_record(self, record_id: str) -> bool:
        """Only used to roll back a batch that never completed admission"""

    @abstractmethod
    async def get_upload_record(self, record_id: str) -> Optional[UploadRecord]:
        ...

    @abstractmethod
    async def list_records_by_state(self, state: UploadState, limit: Optional[int] = None) -> List[UploadRecord]:
        """Oldest first"""

    @abstractmethod
    async def count_records_by_state(self, state: UploadState) -> int:
        ...

    @abstractmethod
    async def list_records_by_token(self, token_id: str) -> List[UploadRecord]:
        ...

    @abstractmethod
    async def list_records_by_user(self, user_id: str) -> List[UploadRecord]:
        """Newest first"""

    @abstractmethod
    async def update_record_state(self, record_id: str, new_state: UploadState, **fields) -> bool:
        ...
