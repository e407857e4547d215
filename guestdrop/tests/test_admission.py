"""
Tests for guest upload admission
"""
import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from guestdrop.core.config import PLAN_PHOTO, TOKEN_SECRET
from guestdrop.models.upload import GuestInfo, UploadState
from guestdrop.services.admission import AdmissionController
from guestdrop.services.errors import (
    FileLimitExceeded,
    FileTooLarge,
    InvalidTokenFormat,
    NoActiveSubscription,
    NoFilesUploaded,
    StorageLimitExceeded,
    TokenExpired,
    TokenNotFound,
    TooManyFiles,
    UnsupportedFileType,
    UploadFailed,
    UploadLimitExceeded,
)
from guestdrop.services.relay import RelayWorker
from guestdrop.storage.local import LocalStorage
from guestdrop.utils.helpers import utc_now
from guestdrop.utils.locks import KeyedLock

from conftest import FakeDurableStorage

UNKNOWN_TOKEN = "a" * 64 + "." + "b" * 16


def stored_files(temp_storage):
    return sorted(p.name for p in temp_storage.root.iterdir())


class FlakyStorage(LocalStorage):
    """Fails the Nth write"""

    def __init__(self, root, fail_at):
        super().__init__(root)
        self.fail_at = fail_at
        self.writes = 0

    async def write(self, filename, content):
        self.writes += 1
        if self.writes == self.fail_at:
            raise OSError("disk full")
        return await super().write(filename, content)


class TestSuccessfulAdmission:
    """Batches that pass every check"""

    @pytest.mark.asyncio
    async def test_batch_creates_pending_records(self, repo, controller, temp_storage, token_factory, photo_factory):
        token = await token_factory(max_uploads=10)
        files = [photo_factory(f"photo{i}.jpg", color=c) for i, c in enumerate(["red", "green", "blue"])]

        result = await controller.admit(token.token, files, GuestInfo(guest_name="Sam", guest_message="Congrats!"))

        assert len(result.records) == 3
        assert result.remaining_uploads == 7
        for record, incoming in zip(result.records, files):
            assert record.state == UploadState.PENDING_LOCAL
            assert record.original_name == incoming.filename
            assert record.size == incoming.size
            assert record.mime_type == "image/jpeg"
            assert record.guest_name == "Sam"
            assert await temp_storage.read(record.filename) == incoming.content

        refreshed = await repo.get_token_by_id(token.id)
        assert refreshed.current_uploads == 3
        print("✓ Batch of 3 admitted")

    @pytest.mark.asyncio
    async def test_usage_incremented_by_batch(self, repo, controller, subscribed_user, token_factory, photo_factory):
        token = await token_factory()
        files = [photo_factory("a.jpg", content=b"x" * 100), photo_factory("b.png", content=b"y" * 50, content_type="image/png")]

        result = await controller.admit(token.token, files)

        usage = await repo.get_usage(subscribed_user.id)
        assert usage.file_count == 2
        assert usage.storage_bytes_used == 150
        assert result.quota.file_count == 2
        assert result.quota.storage_bytes_used == 150

    @pytest.mark.asyncio
    async def test_generated_names_keep_extension(self, controller, token_factory, photo_factory):
        token = await token_factory()
        result = await controller.admit(token.token, [photo_factory("../../Holiday.PNG", content_type="image/png")])

        stored = result.records[0].filename
        assert stored.endswith(".png")
        assert "/" not in stored and ".." not in stored
        assert result.records[0].original_name == "../../Holiday.PNG"

    @pytest.mark.asyncio
    async def test_token_marked_used_at_ceiling(self, repo, controller, token_factory, photo_factory):
        token = await token_factory(max_uploads=2)
        result = await controller.admit(token.token, [photo_factory("a.jpg"), photo_factory("b.jpg")])

        assert result.remaining_uploads == 0
        assert (await repo.get_token_by_id(token.id)).used is True

    @pytest.mark.asyncio
    async def test_anonymous_guest_by_default(self, controller, token_factory, photo_factory):
        token = await token_factory()
        result = await controller.admit(token.token, [photo_factory()], GuestInfo(guest_name="   "))
        assert result.records[0].guest_name == "Anonymous"


class TestRejections:
    """Every rejection leaves state untouched"""

    @pytest.mark.asyncio
    async def test_malformed_token_never_touches_storage(self, temp_storage, photo_factory):
        repo = MagicMock()
        repo.get_token_by_value = AsyncMock()
        controller = AdmissionController(repo, temp_storage, TOKEN_SECRET)

        with pytest.raises(InvalidTokenFormat):
            await controller.admit("not-a-token", [photo_factory()])

        repo.get_token_by_value.assert_not_awaited()
        assert stored_files(temp_storage) == []

    @pytest.mark.asyncio
    async def test_unknown_token(self, controller, photo_factory):
        with pytest.raises(TokenNotFound):
            await controller.admit(UNKNOWN_TOKEN, [photo_factory()])

    @pytest.mark.asyncio
    async def test_deleted_token(self, repo, controller, token_factory, photo_factory):
        token = await token_factory()
        await repo.soft_delete_token(token.id)
        with pytest.raises(TokenNotFound):
            await controller.admit(token.token, [photo_factory()])

    @pytest.mark.asyncio
    async def test_payload_that_does_not_match_signature(self, repo, controller, token_factory, photo_factory):
        token = await token_factory()
        payload = json.loads(token.signing_payload)
        payload["name"] = "Something else"
        await repo.update_token(token.id, signing_payload=json.dumps(payload))

        with pytest.raises(TokenNotFound):
            await controller.admit(token.token, [photo_factory()])

    @pytest.mark.asyncio
    async def test_expired_token(self, repo, controller, temp_storage, token_factory, photo_factory):
        token = await token_factory()
        await repo.update_token(token.id, expires_at=utc_now() - timedelta(minutes=1))

        with pytest.raises(TokenExpired):
            await controller.admit(token.token, [photo_factory()])
        assert stored_files(temp_storage) == []

    @pytest.mark.asyncio
    async def test_batch_over_token_limit_is_rejected_whole(self, repo, controller, temp_storage, token_factory, photo_factory):
        token = await token_factory(max_uploads=3)
        await controller.admit(token.token, [photo_factory("a.jpg"), photo_factory("b.jpg")])

        with pytest.raises(UploadLimitExceeded):
            await controller.admit(token.token, [photo_factory("c.jpg"), photo_factory("d.jpg")])

        assert (await repo.get_token_by_id(token.id)).current_uploads == 2
        assert len(await repo.list_records_by_token(token.id)) == 2
        assert len(stored_files(temp_storage)) == 2
        print("✓ Over-limit batch rejected without partial admission")

    @pytest.mark.asyncio
    async def test_no_files(self, controller, token_factory):
        token = await token_factory()
        with pytest.raises(NoFilesUploaded):
            await controller.admit(token.token, [])

    @pytest.mark.asyncio
    async def test_too_many_files(self, repo, temp_storage, token_factory, photo_factory):
        token = await token_factory()
        controller = AdmissionController(repo, temp_storage, TOKEN_SECRET, max_files=2)
        with pytest.raises(TooManyFiles):
            await controller.admit(token.token, [photo_factory() for _ in range(3)])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filename,content_type", [
        ("notes.txt", "text/plain"),
        ("photo.jpg", "application/pdf"),
        ("photo.svg", "image/svg+xml"),
        ("photo", "image/jpeg"),
    ])
    async def test_unsupported_type(self, controller, token_factory, photo_factory, filename, content_type):
        token = await token_factory()
        with pytest.raises(UnsupportedFileType):
            await controller.admit(token.token, [photo_factory(filename, content_type=content_type)])

    @pytest.mark.asyncio
    async def test_file_too_large(self, repo, temp_storage, token_factory, photo_factory):
        token = await token_factory()
        controller = AdmissionController(repo, temp_storage, TOKEN_SECRET, max_file_size=100)

        await controller.admit(token.token, [photo_factory(content=b"x" * 100)])
        with pytest.raises(FileTooLarge):
            await controller.admit(token.token, [photo_factory(content=b"x" * 101)])

    @pytest.mark.asyncio
    async def test_storage_quota_boundary(self, repo, controller, subscribed_user, token_factory, photo_factory):
        plan = await repo.upsert_plan({
            "name": "Tiny",
            "description": "1000 bytes",
            "price": 0.0,
            "max_storage_bytes": 1000,
            "max_files": None,
            "validity_days": 30,
            "is_trial": False,
        })
        await repo.create_subscription(subscribed_user.id, plan.id)
        await repo.increment_usage(subscribed_user.id, 900, file_count=0)
        token = await token_factory()

        with pytest.raises(StorageLimitExceeded):
            await controller.admit(token.token, [photo_factory(content=b"x" * 150)])

        result = await controller.admit(token.token, [photo_factory(content=b"x" * 50)])
        assert result.quota.storage_bytes_used == 950
        assert result.quota.remaining_storage_bytes == 50
        assert (await repo.get_usage(subscribed_user.id)).storage_bytes_used == 950

    @pytest.mark.asyncio
    async def test_file_quota_counts_batch(self, repo, controller, trial_user, token_manager, photo_factory):
        token = await token_manager.create(trial_user.id, "Trial party", 100)
        await repo.increment_usage(trial_user.id, 0, file_count=9)

        with pytest.raises(FileLimitExceeded):
            await controller.admit(token.token, [photo_factory("a.jpg"), photo_factory("b.jpg")])
        await controller.admit(token.token, [photo_factory("a.jpg")])

    @pytest.mark.asyncio
    async def test_subscription_expired_after_token_created(self, repo, controller, subscribed_user, token_factory, photo_factory):
        token = await token_factory()
        plan = await repo.get_plan_by_name(PLAN_PHOTO)
        await repo.create_subscription(subscribed_user.id, plan.id, now=utc_now() - timedelta(days=31))

        with pytest.raises(NoActiveSubscription):
            await controller.admit(token.token, [photo_factory()])


class TestRollback:
    """Failures while persisting remove everything the batch wrote"""

    @pytest.mark.asyncio
    async def test_disk_failure_mid_batch(self, repo, tmp_path, token_factory, photo_factory):
        token = await token_factory()
        storage = FlakyStorage(tmp_path / "flaky", fail_at=3)
        controller = AdmissionController(repo, storage, TOKEN_SECRET)

        with pytest.raises(UploadFailed):
            await controller.admit(token.token, [photo_factory(f"{i}.jpg") for i in range(5)])

        assert stored_files(storage) == []
        assert await repo.list_records_by_token(token.id) == []
        assert (await repo.get_token_by_id(token.id)).current_uploads == 0

    @pytest.mark.asyncio
    async def test_concurrent_batch_took_remaining_capacity(self, repo, controller, temp_storage, token_factory, photo_factory, monkeypatch):
        token = await token_factory()
        monkeypatch.setattr(repo, "increment_token_upload_count", AsyncMock(return_value=False))

        with pytest.raises(UploadLimitExceeded):
            await controller.admit(token.token, [photo_factory("a.jpg"), photo_factory("b.jpg")])

        assert stored_files(temp_storage) == []
        assert await repo.list_records_by_token(token.id) == []

    @pytest.mark.asyncio
    async def test_usage_failure_reverts_token_count(self, repo, controller, temp_storage, token_factory, photo_factory, monkeypatch):
        token = await token_factory()
        monkeypatch.setattr(repo, "increment_usage", AsyncMock(side_effect=RuntimeError("db gone")))

        with pytest.raises(UploadFailed):
            await controller.admit(token.token, [photo_factory("a.jpg"), photo_factory("b.jpg")])

        assert stored_files(temp_storage) == []
        assert await repo.list_records_by_token(token.id) == []
        assert (await repo.get_token_by_id(token.id)).current_uploads == 0

    @pytest.mark.asyncio
    async def test_failed_record_cleanup_still_restores_counts(self, repo, controller, temp_storage, subscribed_user, token_factory, photo_factory, monkeypatch):
        token = await token_factory()
        create_record = repo.create_upload_record
        calls = 0

        async def fail_second_insert(record):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise RuntimeError("insert timed out")
            return await create_record(record)

        monkeypatch.setattr(repo, "create_upload_record", fail_second_insert)
        monkeypatch.setattr(repo, "delete_upload_record", AsyncMock(side_effect=RuntimeError("db gone")))

        with pytest.raises(UploadFailed):
            await controller.admit(token.token, [photo_factory(f"{i}.jpg") for i in range(3)])

        assert stored_files(temp_storage) == []
        assert (await repo.get_token_by_id(token.id)).current_uploads == 0
        usage = await repo.get_usage(subscribed_user.id)
        assert usage.file_count == 0
        assert usage.storage_bytes_used == 0
        print("✓ Rollback kept going past a failed record delete")

    @pytest.mark.asyncio
    async def test_relay_never_moves_a_rolled_back_record(self, repo, controller, temp_storage, upload_locks, token_factory, photo_factory, monkeypatch):
        token = await token_factory()
        durable = FakeDurableStorage()
        worker = RelayWorker(repo, temp_storage, durable, "Guest Uploads", locks=upload_locks)

        listed = asyncio.Event()
        seen = []
        list_records = repo.list_records_by_state

        async def list_and_signal(state, limit=None):
            records = await list_records(state, limit)
            seen.extend(records)
            listed.set()
            return records

        create_record = repo.create_upload_record
        relay_task = None
        calls = 0

        async def start_relay_then_fail(record):
            nonlocal relay_task, calls
            calls += 1
            if calls == 2:
                # The first record is already committed when the relay lists
                relay_task = asyncio.create_task(worker.run_pass())
                await asyncio.wait_for(listed.wait(), timeout=5)
                raise RuntimeError("connection reset")
            return await create_record(record)

        monkeypatch.setattr(repo, "list_records_by_state", list_and_signal)
        monkeypatch.setattr(repo, "create_upload_record", start_relay_then_fail)

        with pytest.raises(UploadFailed):
            await controller.admit(token.token, [photo_factory(f"{i}.jpg") for i in range(3)])

        result = await relay_task
        assert len(seen) == 1
        assert result.processed == 0
        assert result.failed == 0
        assert durable.objects == {}
        assert await repo.list_records_by_token(token.id) == []
        assert stored_files(temp_storage) == []
        print("✓ Relay skipped a record whose batch rolled back")


class TestConcurrency:
    """Concurrent batches never cross the token ceiling"""

    @pytest.mark.asyncio
    async def test_two_batches_for_last_slots(self, repo, temp_storage, token_factory, photo_factory):
        token = await token_factory(max_uploads=3)
        controller = AdmissionController(repo, temp_storage, TOKEN_SECRET, KeyedLock())

        results = await asyncio.gather(
            controller.admit(token.token, [photo_factory("a.jpg"), photo_factory("b.jpg")]),
            controller.admit(token.token, [photo_factory("c.jpg"), photo_factory("d.jpg")]),
            return_exceptions=True,
        )

        admitted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, UploadLimitExceeded)]
        assert len(admitted) == 1
        assert len(rejected) == 1
        assert (await repo.get_token_by_id(token.id)).current_uploads == 2
        assert len(stored_files(temp_storage)) == 2


class TestTokenInfo:
    """Public capacity view"""

    @pytest.mark.asyncio
    async def test_info(self, controller, token_factory, photo_factory):
        token = await token_factory(max_uploads=5, expires_in=7)
        await controller.admit(token.token, [photo_factory()])

        info = await controller.token_info(token.token)
        assert info.name == "Wedding"
        assert info.current_uploads == 1
        assert info.remaining_uploads == 4
        assert info.can_upload is True
        assert info.expires_at is not None

    @pytest.mark.asyncio
    async def test_info_errors(self, repo, controller, token_factory):
        with pytest.raises(InvalidTokenFormat):
            await controller.token_info("bad")
        with pytest.raises(TokenNotFound):
            await controller.token_info(UNKNOWN_TOKEN)

        token = await token_factory()
        await repo.update_token(token.id, expires_at=utc_now() - timedelta(seconds=1))
        with pytest.raises(TokenExpired):
            await controller.token_info(token.token)
