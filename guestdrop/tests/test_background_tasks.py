"""
Tests for the relay scheduler
"""
import asyncio

import pytest

from guestdrop.services.relay import RelayWorker

from conftest import FakeDurableStorage


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class TestTriggerRelayPass:
    """Manual and scheduled passes"""

    @pytest.mark.asyncio
    async def test_pass_summary_is_recorded(self, repo, controller, temp_storage, token_factory, photo_factory, relay_tasks):
        token = await token_factory()
        await controller.admit(token.token, [photo_factory("a.jpg")])
        relay_tasks.init_tasks(RelayWorker(repo, temp_storage, FakeDurableStorage(), "Guest Uploads"))

        summary = await relay_tasks.trigger_relay_pass()

        assert summary.processed == 1
        assert summary.failed == 0
        assert summary.started_at <= summary.finished_at
        assert relay_tasks.get_last_pass() == summary

    @pytest.mark.asyncio
    async def test_overlapping_trigger_is_skipped(self, repo, controller, temp_storage, token_factory, photo_factory, relay_tasks):
        token = await token_factory()
        await controller.admit(token.token, [photo_factory("a.jpg")])
        gate = asyncio.Event()
        relay_tasks.init_tasks(RelayWorker(repo, temp_storage, FakeDurableStorage(gate=gate), "Guest Uploads"))

        first = asyncio.create_task(relay_tasks.trigger_relay_pass())
        await wait_until(relay_tasks.is_running)

        assert await relay_tasks.trigger_relay_pass() is None

        gate.set()
        summary = await first
        assert summary.processed == 1
        assert not relay_tasks.is_running()
        print("✓ Overlapping pass skipped")

    @pytest.mark.asyncio
    async def test_container_failure_is_reported_not_raised(self, repo, temp_storage, broken_container, relay_tasks):
        relay_tasks.init_tasks(RelayWorker(repo, temp_storage, broken_container, "Guest Uploads"))

        summary = await relay_tasks.trigger_relay_pass()

        assert summary.error is not None
        assert "folder lookup failed" in summary.error
        assert summary.processed == 0
        assert relay_tasks.get_last_pass().error == summary.error

    @pytest.mark.asyncio
    async def test_requires_worker(self, relay_tasks):
        relay_tasks.init_tasks(None)
        with pytest.raises(RuntimeError):
            await relay_tasks.trigger_relay_pass()


class TestAutoRelayLoop:
    """Interval loop"""

    @pytest.mark.asyncio
    async def test_loop_runs_until_stopped(self, repo, controller, temp_storage, token_factory, photo_factory, relay_tasks):
        token = await token_factory()
        await controller.admit(token.token, [photo_factory("a.jpg")])
        durable = FakeDurableStorage()
        relay_tasks.init_tasks(RelayWorker(repo, temp_storage, durable, "Guest Uploads"), RELAY_INTERVAL=0.01)

        task = asyncio.create_task(relay_tasks.auto_relay_uploads())
        await wait_until(lambda: relay_tasks.get_last_pass() is not None)
        relay_tasks.stop_tasks()
        await asyncio.wait_for(task, timeout=1.0)

        assert durable.uploaded == ["a.jpg"]
        assert task.done()

    @pytest.mark.asyncio
    async def test_loop_survives_container_failures(self, repo, temp_storage, broken_container, relay_tasks):
        relay_tasks.init_tasks(RelayWorker(repo, temp_storage, broken_container, "Guest Uploads"), RELAY_INTERVAL=0.01)

        task = asyncio.create_task(relay_tasks.auto_relay_uploads())
        await wait_until(lambda: broken_container.ensure_calls >= 2)
        relay_tasks.stop_tasks()
        await asyncio.wait_for(task, timeout=1.0)

        assert relay_tasks.get_last_pass().error is not None
