"""
Subscription quota evaluation
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from guestdrop.models.billing import SubscriptionSnapshot
from guestdrop.utils.helpers import is_past, utc_now
from guestdrop.utils.locks import KeyedLock

NO_ACTIVE_SUBSCRIPTION = "NoActiveSubscription"
FILE_LIMIT_EXCEEDED = "FileLimitExceeded"
STORAGE_LIMIT_EXCEEDED = "StorageLimitExceeded"


@dataclass
class QuotaDecision:
    allowed: bool
    reason: Optional[str] = None
    file_count: int = 0
    storage_bytes_used: int = 0
    max_file_count: Optional[int] = None
    max_storage_bytes: int = 0

    @property
    def remaining_storage_bytes(self) -> int:
        return max(0, self.max_storage_bytes - self.storage_bytes_used)

    @property
    def remaining_files(self) -> Optional[int]:
        if self.max_file_count is None:
            return None
        return max(0, self.max_file_count - self.file_count)

    def to_dict(self) -> dict:
        return {
            "file_count": self.file_count,
            "storage_bytes_used": self.storage_bytes_used,
            "max_file_count": self.max_file_count,
            "max_storage_bytes": self.max_storage_bytes,
            "remaining_files": self.remaining_files,
            "remaining_storage_bytes": self.remaining_storage_bytes,
        }


def evaluate(
    snapshot: Optional[SubscriptionSnapshot],
    file_size: int,
    file_count: int = 1,
    now: Optional[datetime] = None,
) -> QuotaDecision:
    """
    Decide whether `file_count` files totalling `file_size` bytes fit in the
    snapshot's plan. Checks run in order: subscription, file count, storage.
    """
    now = now or utc_now()

    if snapshot is None or is_past(snapshot.period_end, now):
        return QuotaDecision(allowed=False, reason=NO_ACTIVE_SUBSCRIPTION)

    decision = QuotaDecision(
        allowed=True,
        file_count=snapshot.file_count,
        storage_bytes_used=snapshot.storage_bytes_used,
        max_file_count=snapshot.max_file_count,
        max_storage_bytes=snapshot.max_storage_bytes,
    )

    if snapshot.max_file_count is not None and snapshot.file_count + file_count > snapshot.max_file_count:
        decision.allowed = False
        decision.reason = FILE_LIMIT_EXCEEDED
        return decision

    projected_storage = snapshot.storage_bytes_used + file_size
    if projected_storage > snapshot.max_storage_bytes:
        decision.allowed = False
        decision.reason = STORAGE_LIMIT_EXCEEDED
        return decision

    return decision


async def check_quota(repo, user_id: str, file_size: int, file_count: int = 1) -> QuotaDecision:
    """Evaluate against a freshly loaded snapshot"""
    snapshot = await repo.get_active_subscription(user_id)
    return evaluate(snapshot, file_size, file_count)


class QuotaGate:
    """
    Quota check and usage increment for one organizer at a time.

    Callers hold `hold(user_id)` across `check` and `record` so two
    concurrent batches for the same organizer cannot both pass the check
    against the same usage numbers.
    """

    def __init__(self, repo, locks: Optional[KeyedLock] = None):
        self.repo = repo
        self.locks = locks or KeyedLock()

    def hold(self, user_id: str):
        return self.locks.hold(user_id)

    async def check(self, user_id: str, file_size: int, file_count: int = 1) -> QuotaDecision:
        return await check_quota(self.repo, user_id, file_size, file_count)

    async def record(self, user_id: str, file_size: int, file_count: int = 1) -> bool:
        return await self.repo.increment_usage(user_id, file_size, file_count)
