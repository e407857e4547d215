"""
S3-compatible object store adapter (Google Cloud Storage interoperability,
Cloudflare R2, AWS S3).

Remote handles are `<bucket>/<key>`, keys are `yyyy/mm/dd/<uuid>_<filename>`.
"""
import logging
import uuid
from pathlib import Path
from typing import Tuple

import aioboto3
import aiofiles
from botocore.exceptions import ClientError

from guestdrop.services.errors import ContainerResolutionError, StorageError
from guestdrop.utils.helpers import utc_now
from .base import DurableStorage

logger = logging.getLogger(__name__)

MISSING_BUCKET_CODES = {'404', 'NoSuchBucket', 'NotFound'}


def split_handle(remote_handle: str) -> Tuple[str, str]:
    bucket, _, key = remote_handle.partition('/')
    if not bucket or not key:
        raise StorageError(f"Malformed object handle: {remote_handle!r}")
    return bucket, key


class BucketStorage(DurableStorage):
    name = "bucket"

    def __init__(
        self,
        access_key_id: str = '',
        secret_access_key: str = '',
        endpoint_url: str = 'https://storage.googleapis.com',
        region: str = 'auto',
        session=None,
    ):
        self.endpoint_url = endpoint_url
        self.region = region
        self.session = session or aioboto3.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )
        logger.info(f"Bucket storage initialized - Endpoint: {endpoint_url}")

    def _client(self):
        return self.session.client(
            "s3",
            endpoint_url=self.endpoint_url,
            region_name=self.region
        )

    async def ensure_container(self, name: str) -> str:
        async with self._client() as s3_client:
            try:
                await s3_client.head_bucket(Bucket=name)
                return name
            except ClientError as e:
                code = str(e.response.get('Error', {}).get('Code', ''))
                if code not in MISSING_BUCKET_CODES:
                    raise ContainerResolutionError(f"Cannot access bucket {name}: {code}") from e

            await s3_client.create_bucket(Bucket=name)
            logger.info(f"Created bucket: {name}")
            return name

    async def put(self, container: str, local_path: Path, filename: str, mime_type: str) -> str:
        key = f"{utc_now():%Y/%m/%d}/{uuid.uuid4()}_{filename}"
        async with aiofiles.open(local_path, 'rb') as f:
            content = await f.read()

        async with self._client() as s3_client:
            await s3_client.put_object(
                Bucket=container,
                Key=key,
                Body=content,
                ContentType=mime_type,
            )
        logger.info(f"Uploaded to bucket: {container}/{key}")
        return f"{container}/{key}"

    async def get(self, remote_handle: str, dest_path: Path) -> Path:
        bucket, key = split_handle(remote_handle)
        async with self._client() as s3_client:
            response = await s3_client.get_object(Bucket=bucket, Key=key)
            async with response['Body'] as stream:
                content = await stream.read()

        async with aiofiles.open(dest_path, 'wb') as f:
            await f.write(content)
        return Path(dest_path)

    async def delete(self, remote_handle: str) -> None:
        bucket, key = split_handle(remote_handle)
        async with self._client() as s3_client:
            await s3_client.delete_object(Bucket=bucket, Key=key)
        logger.info(f"Deleted from bucket: {remote_handle}")
