"""
Temporary on-disk storage for admitted uploads awaiting relay
"""
import logging
from pathlib import Path

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class LocalStorage:

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path(self, filename: str) -> Path:
        # Stored names are generated server-side; strip any directory parts anyway
        return self.root / Path(filename).name

    async def write(self, filename: str, content: bytes) -> Path:
        file_path = self.path(filename)
        async with aiofiles.open(file_path, 'wb') as f:
            await f.write(content)
        return file_path

    async def read(self, filename: str) -> bytes:
        async with aiofiles.open(self.path(filename), 'rb') as f:
            return await f.read()

    async def exists(self, filename: str) -> bool:
        return await aiofiles.os.path.exists(self.path(filename))

    async def size(self, filename: str) -> int:
        stat = await aiofiles.os.stat(self.path(filename))
        return stat.st_size

    async def delete(self, filename: str) -> bool:
        file_path = self.path(filename)
        if not await aiofiles.os.path.exists(file_path):
            return False
        await aiofiles.os.remove(file_path)
        logger.info(f"Deleted local file: {file_path.name}")
        return True
