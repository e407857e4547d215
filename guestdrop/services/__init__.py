# Services module exports
from .errors import GuestDropError
from .auth import hash_password, verify_password, create_access_token, decode_access_token
from .cache import TTLCache
