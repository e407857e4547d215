"""
Google Drive adapter.

Uses one OAuth refresh token for the service account owner; the Drive v3
client is synchronous, so every call runs in a worker thread.
"""
import asyncio
import io
import logging
from pathlib import Path
from typing import List, Optional

from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.http import MediaFileUpload, MediaIoBaseDownload

from guestdrop.services.errors import ContainerResolutionError, StorageError, StorageNotConfigured
from .base import DurableStorage

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'
SOURCE_PROPERTY = 'guestdrop_source'


class DriveStorage(DurableStorage):
    name = "drive"

    def __init__(
        self,
        client_id: str = '',
        client_secret: str = '',
        refresh_token: str = '',
        token_uri: str = 'https://oauth2.googleapis.com/token',
        scopes: Optional[List[str]] = None,
        service=None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.token_uri = token_uri
        self.scopes = scopes or ['https://www.googleapis.com/auth/drive.file']
        self._service = service

    def _get_service(self):
        """Build the Drive client, refreshing the access token on first use"""
        if self._service is not None:
            return self._service
        if not self.refresh_token:
            raise StorageNotConfigured("Google Drive refresh token is not configured")

        creds = Credentials(
            token=None,
            refresh_token=self.refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=self.scopes
        )
        creds.refresh(GoogleRequest())
        self._service = build('drive', 'v3', credentials=creds, cache_discovery=False)
        return self._service

    def _find_or_create_folder(self, name: str) -> str:
        service = self._get_service()
        escaped = name.replace("\\", "\\\\").replace("'", "\\'")
        results = service.files().list(
            q=f"name='{escaped}' and mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
            spaces='drive',
            fields='files(id, name)'
        ).execute()

        existing_folders = results.get('files', [])
        if existing_folders:
            folder_id = existing_folders[0]['id']
            logger.info(f"Found existing Drive folder: {folder_id}")
            return folder_id

        folder = service.files().create(
            body={'name': name, 'mimeType': FOLDER_MIME_TYPE},
            fields='id'
        ).execute()
        folder_id = folder.get('id')
        if not folder_id:
            raise ContainerResolutionError(f"Drive did not return an id for folder {name!r}")
        logger.info(f"Created new Drive folder: {folder_id}")
        return folder_id

    def _find_uploaded(self, service, folder_id: str, source: str) -> Optional[str]:
        results = service.files().list(
            q=(
                f"appProperties has {{ key='{SOURCE_PROPERTY}' and value='{source}' }} "
                f"and '{folder_id}' in parents and trashed=false"
            ),
            spaces='drive',
            fields='files(id)'
        ).execute()
        found = results.get('files', [])
        return found[0]['id'] if found else None

    def _upload(self, folder_id: str, local_path: Path, filename: str, mime_type: str) -> str:
        service = self._get_service()
        # Stored names are unique per upload, so a copy left by an abandoned attempt is reused
        source = Path(local_path).name
        existing = self._find_uploaded(service, folder_id, source)
        if existing:
            logger.info(f"{filename} is already in Drive as {existing}")
            return existing

        media = MediaFileUpload(str(local_path), mimetype=mime_type, resumable=True)
        file = service.files().create(
            body={'name': filename, 'parents': [folder_id], 'appProperties': {SOURCE_PROPERTY: source}},
            media_body=media,
            fields='id'
        ).execute()
        file_id = file.get('id')
        if not file_id:
            raise StorageError(f"Drive did not return an id for {filename}")
        return file_id

    def _download(self, file_id: str, dest_path: Path) -> Path:
        service = self._get_service()
        request = service.files().get_media(fileId=file_id)
        with io.FileIO(str(dest_path), 'wb') as fh:
            downloader = MediaIoBaseDownload(fh, request)
            done = False
            while not done:
                _, done = downloader.next_chunk()
        return dest_path

    def _delete(self, file_id: str) -> None:
        self._get_service().files().delete(fileId=file_id).execute()

    async def ensure_container(self, name: str) -> str:
        return await asyncio.to_thread(self._find_or_create_folder, name)

    async def put(self, container: str, local_path: Path, filename: str, mime_type: str) -> str:
        file_id = await asyncio.to_thread(self._upload, container, local_path, filename, mime_type)
        logger.info(f"Uploaded {filename} to Drive: {file_id}")
        return file_id

    async def get(self, remote_handle: str, dest_path: Path) -> Path:
        return await asyncio.to_thread(self._download, remote_handle, Path(dest_path))

    async def delete(self, remote_handle: str) -> None:
        await asyncio.to_thread(self._delete, remote_handle)
        logger.info(f"Deleted Drive file: {remote_handle}")
