"""
Temporary and durable storage adapters
"""
from guestdrop.core import config
from guestdrop.services.errors import StorageNotConfigured
from .base import DurableStorage
from .local import LocalStorage
from .drive import DriveStorage
from .bucket import BucketStorage


def create_durable_storage(backend: str = None) -> DurableStorage:
    """Build the durable adapter selected by DURABLE_BACKEND"""
    backend = (backend or config.DURABLE_BACKEND).lower()

    if backend == "drive":
        if not config.GOOGLE_DRIVE_REFRESH_TOKEN:
            raise StorageNotConfigured("GOOGLE_DRIVE_REFRESH_TOKEN is not set")
        return DriveStorage(
            client_id=config.GOOGLE_CLIENT_ID,
            client_secret=config.GOOGLE_CLIENT_SECRET,
            refresh_token=config.GOOGLE_DRIVE_REFRESH_TOKEN,
            token_uri=config.GOOGLE_TOKEN_URI,
            scopes=config.GOOGLE_DRIVE_SCOPES,
        )

    if backend == "bucket":
        if not (config.BUCKET_ACCESS_KEY_ID and config.BUCKET_SECRET_ACCESS_KEY):
            raise StorageNotConfigured("Bucket credentials are not set")
        return BucketStorage(
            access_key_id=config.BUCKET_ACCESS_KEY_ID,
            secret_access_key=config.BUCKET_SECRET_ACCESS_KEY,
            endpoint_url=config.BUCKET_ENDPOINT_URL,
            region=config.BUCKET_REGION,
        )

    raise StorageNotConfigured(f"Unknown durable backend: {backend}")


def durable_container_name(backend: str = None) -> str:
    backend = (backend or config.DURABLE_BACKEND).lower()
    return config.BUCKET_NAME if backend == "bucket" else config.DRIVE_FOLDER_NAME


__all__ = [
    'DurableStorage',
    'LocalStorage',
    'DriveStorage',
    'BucketStorage',
    'create_durable_storage',
    'durable_container_name',
]
