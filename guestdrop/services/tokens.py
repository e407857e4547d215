"""
Upload-capability token codec.

A token is `<identifier>.<signature>`: 32 random bytes as 64 hex characters,
a dot, and the first 16 hex characters of an HMAC-SHA256 over the canonical
JSON of `{id, userId, timestamp, name}`. The format is embedded in shared
URLs and QR codes and must stay parseable by old links.

`verify_shape` is a structural check only. Flipping any character while
keeping the segment lengths still passes it, so authenticity comes from the
exact-match lookup plus `verify_signature` against the stored payload.
"""
import hashlib
import hmac
import json
import secrets
import time
import uuid
from typing import Optional

IDENTIFIER_BYTES = 32
IDENTIFIER_LENGTH = IDENTIFIER_BYTES * 2
SIGNATURE_LENGTH = 16


def new_signing_payload(user_id: str, name: str, token_id: Optional[str] = None) -> dict:
    return {
        "id": token_id or str(uuid.uuid4()),
        "userId": user_id,
        "timestamp": int(time.time() * 1000),
        "name": name,
    }


def canonical_json(payload: dict) -> str:
    """Compact JSON in the fixed key order id, userId, timestamp, name"""
    ordered = {key: payload.get(key) for key in ("id", "userId", "timestamp", "name")}
    return json.dumps(ordered, separators=(',', ':'), ensure_ascii=False)


def sign(secret_key: str, payload: dict) -> str:
    digest = hmac.new(
        secret_key.encode('utf-8'),
        canonical_json(payload).encode('utf-8'),
        hashlib.sha256,
    ).hexdigest()
    return digest[:SIGNATURE_LENGTH]


def mint(secret_key: str, payload: dict) -> str:
    identifier = secrets.token_hex(IDENTIFIER_BYTES)
    return f"{identifier}.{sign(secret_key, payload)}"


def verify_shape(token) -> bool:
    if not token or not isinstance(token, str):
        return False

    parts = token.split('.')
    if len(parts) != 2:
        return False

    identifier, signature = parts
    return len(identifier) == IDENTIFIER_LENGTH and len(signature) == SIGNATURE_LENGTH


def verify_signature(secret_key: str, token: str, payload: dict) -> bool:
    """Re-derive the suffix from the persisted payload and compare in constant time"""
    if not verify_shape(token):
        return False
    signature = token.split('.')[1]
    return hmac.compare_digest(signature, sign(secret_key, payload))
