"""
Utils package for the GuestDrop backend
"""
from .helpers import (
    utc_now,
    ensure_utc,
    is_past,
    get_file_extension,
    slugify,
    format_file_size,
)
from .locks import KeyedLock

__all__ = [
    'utc_now',
    'ensure_utc',
    'is_past',
    'get_file_extension',
    'slugify',
    'format_file_size',
    'KeyedLock',
]
