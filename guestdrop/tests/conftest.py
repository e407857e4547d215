"""
Shared fixtures for GuestDrop tests
"""
import os
import tempfile

# Configuration is read at import time
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("TOKEN_SECRET", "test-token-secret")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="guestdrop-uploads-"))
os.environ["DB_TYPE"] = "sql"
os.environ["RELAY_ENABLED"] = "false"
os.environ.setdefault("ADMIN_USERNAME", "admin")
os.environ.setdefault("ADMIN_PASSWORD", "admin-pass-123")

import asyncio
from io import BytesIO
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from PIL import Image

from guestdrop.core import dependencies
from guestdrop.core.config import PLAN_FREE_TRIAL, PLAN_PHOTO, TOKEN_SECRET
from guestdrop.core.database import get_repository
from guestdrop.models.upload import IncomingFile
from guestdrop.repositories.sql import SqlRepository
from guestdrop.services.admission import AdmissionController
from guestdrop.services.auth import create_access_token, hash_password
from guestdrop.services.errors import ContainerResolutionError, StorageError
from guestdrop.services.subscriptions import seed_default_plans
from guestdrop.services.token_manager import TokenManager
from guestdrop.storage.base import DurableStorage
from guestdrop.storage.local import LocalStorage
from guestdrop.tasks import background
from guestdrop.utils.locks import KeyedLock


class FakeDurableStorage(DurableStorage):
    """In-memory durable store with switchable failures"""
    name = "fake"

    def __init__(self, fail_on=None, container_error=None, delay=0.0, gate: asyncio.Event = None):
        self.objects = {}
        self.uploaded = []
        self.fail_on = set(fail_on or ())
        self.container_error = container_error
        self.delay = delay
        self.gate = gate
        self.ensure_calls = 0

    async def ensure_container(self, name):
        self.ensure_calls += 1
        if self.container_error:
            raise self.container_error
        return f"container-{name}"

    async def put(self, container, local_path, filename, mime_type):
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if filename in self.fail_on:
            raise StorageError(f"upload of {filename} failed")
        handle = f"{container}/{len(self.objects)}_{filename}"
        self.objects[handle] = Path(local_path).read_bytes()
        self.uploaded.append(filename)
        return handle

    async def get(self, remote_handle, dest_path):
        Path(dest_path).write_bytes(self.objects[remote_handle])
        return Path(dest_path)

    async def delete(self, remote_handle):
        self.objects.pop(remote_handle, None)


@pytest.fixture
def fake_durable():
    return FakeDurableStorage()


@pytest.fixture
def broken_container():
    return FakeDurableStorage(container_error=ContainerResolutionError("folder lookup failed"))


@pytest_asyncio.fixture
async def repo(tmp_path):
    """Fresh SQLite repository with the default plans"""
    repository = SqlRepository(f"sqlite+aiosqlite:///{tmp_path / 'guestdrop-test.db'}")
    await repository.init()
    await seed_default_plans(repository)
    yield repository
    await repository.close()


@pytest.fixture
def temp_storage(tmp_path):
    return LocalStorage(tmp_path / "uploads")


@pytest_asyncio.fixture
async def user(repo):
    return await repo.create_user("organizer@example.com", "Test Organizer", hash_password("TestPass123!"))


@pytest_asyncio.fixture
async def subscribed_user(repo, user):
    """Organizer on the Photo Plan (5GB, unlimited files)"""
    plan = await repo.get_plan_by_name(PLAN_PHOTO)
    await repo.create_subscription(user.id, plan.id)
    return user


@pytest_asyncio.fixture
async def trial_user(repo, user):
    """Organizer on the Free Trial (10 files)"""
    plan = await repo.get_plan_by_name(PLAN_FREE_TRIAL)
    await repo.create_subscription(user.id, plan.id)
    return user


@pytest.fixture
def token_manager(repo):
    return TokenManager(repo, TOKEN_SECRET, "https://guests.example.com")


@pytest.fixture
def token_factory(token_manager, subscribed_user):
    """Mint upload tokens for the subscribed organizer"""
    async def create_token(max_uploads=10, name="Wedding", expires_in=None):
        return await token_manager.create(subscribed_user.id, name, max_uploads, expires_in)
    return create_token


@pytest.fixture
def upload_locks():
    """Per-user locks shared by admission and the relay"""
    return KeyedLock()


@pytest.fixture
def controller(repo, temp_storage, upload_locks):
    return AdmissionController(repo, temp_storage, TOKEN_SECRET, upload_locks)


@pytest.fixture
def test_image_factory():
    """Factory to create JPEG bytes"""
    def create_image(color='red', size=(100, 100)):
        img = Image.new('RGB', size, color=color)
        img_bytes = BytesIO()
        img.save(img_bytes, format='JPEG')
        return img_bytes.getvalue()
    return create_image


@pytest.fixture
def photo_factory(test_image_factory):
    """Factory to create IncomingFile photos"""
    def create_photo(filename='photo.jpg', content=None, content_type='image/jpeg', color='red'):
        if content is None:
            content = test_image_factory(color)
        return IncomingFile(filename=filename, content_type=content_type, content=content)
    return create_photo


@pytest.fixture
def relay_tasks():
    """Reset the module-level relay scheduler around a test"""
    yield background
    background.stop_tasks()
    background.init_tasks(None)


@pytest_asyncio.fixture
async def api_client(repo, temp_storage):
    """In-process client bound to the test repository and temp storage"""
    from guestdrop.server import app

    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[dependencies.get_temp_storage] = lambda: temp_storage
    dependencies.user_cache.clear()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    dependencies._durable_storage = None


@pytest.fixture
def auth_headers(subscribed_user):
    token = create_access_token({"sub": subscribed_user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    token = create_access_token({"sub": "admin", "is_admin": True})
    return {"Authorization": f"Bearer {token}"}
