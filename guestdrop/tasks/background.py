"""
Background Tasks Module for GuestDrop

Runs the relay worker on a fixed interval for the lifetime of the app.
Passes never overlap: a pass triggered while another is running is skipped.

Dependencies (injected at startup):
- worker: RelayWorker bound to the repository and storage adapters
- logger: Logging instance
"""
import asyncio
import logging
from typing import Optional

from guestdrop.core.config import RELAY_INTERVAL
from guestdrop.models.schemas import RelayPassSummary
from guestdrop.services.errors import ContainerResolutionError
from guestdrop.utils.helpers import utc_now

# Module-level references to dependencies (set by init_tasks)
_worker = None
_logger = logging.getLogger(__name__)
_sync_task_running = True
_RELAY_INTERVAL = RELAY_INTERVAL

_pass_lock = asyncio.Lock()
_last_pass: Optional[RelayPassSummary] = None


def init_tasks(worker, logger=None, RELAY_INTERVAL=RELAY_INTERVAL):
    """
    Initialize the tasks module with required dependencies.
    Must be called before starting any background tasks.
    """
    global _worker, _logger, _sync_task_running, _RELAY_INTERVAL, _last_pass

    _worker = worker
    _logger = logger or _logger
    _RELAY_INTERVAL = RELAY_INTERVAL
    _sync_task_running = True
    _last_pass = None

    _logger.info("Background tasks module initialized")


def stop_tasks():
    """Signal all tasks to stop"""
    global _sync_task_running
    _sync_task_running = False


def get_worker():
    return _worker


def get_last_pass() -> Optional[RelayPassSummary]:
    return _last_pass


def is_running() -> bool:
    return _pass_lock.locked()


async def trigger_relay_pass() -> Optional[RelayPassSummary]:
    """
    Run one relay pass now. Returns None without doing anything when a pass
    is already in progress.
    """
    global _last_pass

    if _worker is None:
        raise RuntimeError("Relay worker not initialized")
    if _pass_lock.locked():
        _logger.info("Relay pass already running, skipping")
        return None

    async with _pass_lock:
        started_at = utc_now()
        try:
            result = await _worker.run_pass()
            summary = result.to_summary()
        except ContainerResolutionError as e:
            _logger.error(f"Relay pass aborted: {e}")
            summary = RelayPassSummary(started_at=started_at, finished_at=utc_now(), error=str(e))

        _last_pass = summary
        return summary


async def auto_relay_uploads():
    """Background task that relays pending uploads every RELAY_INTERVAL seconds"""
    _logger.info("Relay task started")

    while _sync_task_running:
        try:
            await trigger_relay_pass()
        except Exception as e:
            _logger.error(f"Relay task error: {e}")

        # Wait for next relay interval
        await asyncio.sleep(_RELAY_INTERVAL)

    _logger.info("Relay task stopped")
