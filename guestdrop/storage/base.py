"""
Durable storage contract.

A container is a folder (Drive) or a bucket (object store). Handles returned
by `put` are opaque strings that the same adapter can `get` and `delete`.
"""
from abc import ABC, abstractmethod
from pathlib import Path


class DurableStorage(ABC):
    name = "durable"

    @abstractmethod
    async def ensure_container(self, name: str) -> str:
        """Find or create the container, returning its identifier"""

    @abstractmethod
    async def put(self, container: str, local_path: Path, filename: str, mime_type: str) -> str:
        """Upload a local file and return its remote handle"""

    @abstractmethod
    async def get(self, remote_handle: str, dest_path: Path) -> Path:
        ...

    @abstractmethod
    async def delete(self, remote_handle: str) -> None:
        ...
