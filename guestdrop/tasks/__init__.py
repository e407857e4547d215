"""
Tasks package for GuestDrop backend

Contains background tasks that run continuously during application lifetime.
"""
from .background import (
    init_tasks,
    stop_tasks,
    auto_relay_uploads,
    trigger_relay_pass,
    get_last_pass,
    get_worker,
    is_running,
)

__all__ = [
    'init_tasks',
    'stop_tasks',
    'auto_relay_uploads',
    'trigger_relay_pass',
    'get_last_pass',
    'get_worker',
    'is_running',
]
