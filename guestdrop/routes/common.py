"""
Shared helpers for route handlers
"""
from fastapi import HTTPException

from guestdrop.services.errors import GuestDropError


def http_error(error: GuestDropError) -> HTTPException:
    """Translate a domain error into the API's {code, error} detail"""
    return HTTPException(status_code=error.status_code, detail=error.to_detail())
