"""
Utility helper functions for the GuestDrop backend
"""
import re
from datetime import datetime, timezone
from typing import Optional


# ============ Time Utilities ============

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite and Mongo both hand these back)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_past(value: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when value is set and strictly before now"""
    if value is None:
        return False
    now = now or utc_now()
    return ensure_utc(now) > ensure_utc(value)


# ============ File Utilities ============

def get_file_extension(filename: str) -> str:
    """Lowercase extension without the dot, '' if none"""
    if not filename or '.' not in filename:
        return ''
    return filename.rsplit('.', 1)[-1].lower()


def slugify(value: str) -> str:
    """Filesystem/header friendly slug, used for download names"""
    value = re.sub(r'\s+', '-', value.strip().lower())
    value = re.sub(r'[^a-z0-9_-]', '', value)
    return value or 'token'


def format_file_size(size_bytes: int) -> str:
    """Format file size in human-readable format"""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"
