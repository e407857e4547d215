"""
Tests for the relay worker
"""
import uuid
from datetime import timedelta

import pytest

from guestdrop.models.upload import UploadRecord, UploadState
from guestdrop.services.errors import ContainerResolutionError
from guestdrop.services.relay import MISSING_FILE_ERROR, RelayWorker
from guestdrop.utils.helpers import utc_now

from conftest import FakeDurableStorage


def make_worker(repo, temp_storage, durable, **kwargs):
    return RelayWorker(repo, temp_storage, durable, "Guest Uploads", **kwargs)


async def admit_batch(controller, token_factory, photo_factory, names):
    token = await token_factory(max_uploads=100)
    result = await controller.admit(token.token, [photo_factory(name) for name in names])
    return {record.original_name: record for record in result.records}


class TestRunPass:
    """Moving pending files into durable storage"""

    @pytest.mark.asyncio
    async def test_moves_pending_files(self, repo, controller, temp_storage, token_factory, photo_factory):
        records = await admit_batch(controller, token_factory, photo_factory, ["a.jpg", "b.jpg"])
        durable = FakeDurableStorage()

        result = await make_worker(repo, temp_storage, durable).run_pass()

        assert (result.processed, result.failed, result.given_up) == (2, 0, 0)
        for record in records.values():
            stored = await repo.get_upload_record(record.id)
            assert stored.state == UploadState.IN_DURABLE_STORAGE
            assert stored.durable_at is not None
            assert stored.remote_handle in durable.objects
            assert not await temp_storage.exists(record.filename)
        assert sorted(durable.uploaded) == ["a.jpg", "b.jpg"]
        print("✓ Pending files relayed")

    @pytest.mark.asyncio
    async def test_second_pass_is_a_no_op(self, repo, controller, temp_storage, token_factory, photo_factory):
        await admit_batch(controller, token_factory, photo_factory, ["a.jpg"])
        worker = make_worker(repo, temp_storage, FakeDurableStorage())

        await worker.run_pass()
        result = await worker.run_pass()

        assert (result.processed, result.failed) == (0, 0)

    @pytest.mark.asyncio
    async def test_failed_file_is_retried_next_pass(self, repo, controller, temp_storage, token_factory, photo_factory):
        records = await admit_batch(controller, token_factory, photo_factory, ["a.jpg", "b.jpg", "c.jpg"])
        durable = FakeDurableStorage(fail_on={"b.jpg"})
        worker = make_worker(repo, temp_storage, durable)

        first = await worker.run_pass()
        assert (first.processed, first.failed) == (2, 1)

        failed = await repo.get_upload_record(records["b.jpg"].id)
        assert failed.state == UploadState.PENDING_LOCAL
        assert failed.relay_attempts == 1
        assert "b.jpg" in failed.last_error
        assert await temp_storage.exists(failed.filename)

        durable.fail_on.clear()
        second = await worker.run_pass()
        assert (second.processed, second.failed) == (1, 0)

        relayed = await repo.get_upload_record(records["b.jpg"].id)
        assert relayed.state == UploadState.IN_DURABLE_STORAGE
        assert relayed.last_error is None
        assert not await temp_storage.exists(relayed.filename)

    @pytest.mark.asyncio
    async def test_missing_local_file_is_given_up(self, repo, controller, temp_storage, token_factory, photo_factory):
        records = await admit_batch(controller, token_factory, photo_factory, ["a.jpg", "gone.jpg"])
        await temp_storage.delete(records["gone.jpg"].filename)
        worker = make_worker(repo, temp_storage, FakeDurableStorage())

        result = await worker.run_pass()

        assert (result.processed, result.failed, result.given_up) == (1, 1, 1)
        gone = await repo.get_upload_record(records["gone.jpg"].id)
        assert gone.state == UploadState.IN_DURABLE_STORAGE
        assert gone.remote_handle is None
        assert gone.last_error == MISSING_FILE_ERROR

        # Not retried
        assert (await worker.run_pass()).failed == 0

    @pytest.mark.asyncio
    async def test_per_file_timeout(self, repo, controller, temp_storage, token_factory, photo_factory):
        records = await admit_batch(controller, token_factory, photo_factory, ["slow.jpg"])
        worker = make_worker(repo, temp_storage, FakeDurableStorage(delay=1.0), file_timeout=0.05)

        result = await worker.run_pass()

        assert result.failed == 1
        stored = await repo.get_upload_record(records["slow.jpg"].id)
        assert stored.state == UploadState.PENDING_LOCAL
        assert stored.last_error == "TimeoutError"

    @pytest.mark.asyncio
    async def test_oldest_records_first(self, repo, temp_storage, subscribed_user, token_factory):
        token = await token_factory()
        now = utc_now()
        for minutes, name in [(1, "newest.jpg"), (3, "oldest.jpg"), (2, "middle.jpg")]:
            stored_name = f"{uuid.uuid4().hex}.jpg"
            await temp_storage.write(stored_name, name.encode())
            await repo.create_upload_record(UploadRecord(
                id=str(uuid.uuid4()),
                token_id=token.id,
                user_id=subscribed_user.id,
                original_name=name,
                filename=stored_name,
                size=len(name),
                mime_type="image/jpeg",
                created_at=now - timedelta(minutes=minutes),
            ))
        durable = FakeDurableStorage()

        await make_worker(repo, temp_storage, durable).run_pass()

        assert durable.uploaded == ["oldest.jpg", "middle.jpg", "newest.jpg"]


class TestContainer:
    """Destination resolution"""

    @pytest.mark.asyncio
    async def test_container_failure_aborts_pass(self, repo, controller, temp_storage, token_factory, photo_factory, broken_container):
        records = await admit_batch(controller, token_factory, photo_factory, ["a.jpg"])
        worker = make_worker(repo, temp_storage, broken_container)

        with pytest.raises(ContainerResolutionError):
            await worker.run_pass()

        stored = await repo.get_upload_record(records["a.jpg"].id)
        assert stored.state == UploadState.PENDING_LOCAL
        assert stored.relay_attempts == 0

    @pytest.mark.asyncio
    async def test_unexpected_container_error_is_wrapped(self, repo, temp_storage):
        worker = make_worker(repo, temp_storage, FakeDurableStorage(container_error=ConnectionError("no route")))
        with pytest.raises(ContainerResolutionError):
            await worker.run_pass()

    @pytest.mark.asyncio
    async def test_container_resolved_once(self, repo, temp_storage):
        durable = FakeDurableStorage()
        worker = make_worker(repo, temp_storage, durable)

        await worker.run_pass()
        await worker.run_pass()

        assert durable.ensure_calls == 1


class TestFailedState:
    """Attempt ceiling and manual re-queue"""

    @pytest.mark.asyncio
    async def test_attempt_ceiling_parks_record(self, repo, controller, temp_storage, token_factory, photo_factory):
        records = await admit_batch(controller, token_factory, photo_factory, ["bad.jpg"])
        durable = FakeDurableStorage(fail_on={"bad.jpg"})
        worker = make_worker(repo, temp_storage, durable, max_attempts=2)

        await worker.run_pass()
        assert (await repo.get_upload_record(records["bad.jpg"].id)).state == UploadState.PENDING_LOCAL
        await worker.run_pass()
        parked = await repo.get_upload_record(records["bad.jpg"].id)
        assert parked.state == UploadState.FAILED
        assert parked.relay_attempts == 2

        # Parked records are skipped
        assert (await worker.run_pass()).failed == 0

        durable.fail_on.clear()
        assert await worker.retry_failed() == 1
        requeued = await repo.get_upload_record(records["bad.jpg"].id)
        assert requeued.state == UploadState.PENDING_LOCAL
        assert requeued.relay_attempts == 0

        assert (await worker.run_pass()).processed == 1

    @pytest.mark.asyncio
    async def test_unlimited_attempts_by_default(self, repo, controller, temp_storage, token_factory, photo_factory):
        records = await admit_batch(controller, token_factory, photo_factory, ["bad.jpg"])
        worker = make_worker(repo, temp_storage, FakeDurableStorage(fail_on={"bad.jpg"}), max_attempts=0)

        for _ in range(5):
            await worker.run_pass()

        stored = await repo.get_upload_record(records["bad.jpg"].id)
        assert stored.state == UploadState.PENDING_LOCAL
        assert stored.relay_attempts == 5
