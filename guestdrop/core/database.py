"""
Database selection and lifecycle
"""
import logging
from typing import Optional

from guestdrop.repositories.base import Repository
from .config import DB_TYPE, DATABASE_URL, MONGO_URL, DB_NAME

logger = logging.getLogger(__name__)

repository: Optional[Repository] = None


def create_repository(db_type: str = None) -> Repository:
    """Build the repository for DB_TYPE ("sql" or "mongo")"""
    db_type = (db_type or DB_TYPE).lower()
    if db_type == "mongo":
        from guestdrop.repositories.mongo import MongoRepository
        return MongoRepository(MONGO_URL, DB_NAME)
    if db_type == "sql":
        from guestdrop.repositories.sql import SqlRepository
        return SqlRepository(DATABASE_URL)
    raise ValueError(f"Unknown DB_TYPE: {db_type}")


async def connect_repository(repo: Repository = None) -> Repository:
    """Initialize and register the process-wide repository"""
    global repository
    repository = repo or create_repository()
    await repository.init()
    logger.info(f"Repository ready: {type(repository).__name__}")
    return repository


async def disconnect_repository():
    global repository
    if repository is not None:
        await repository.close()
        repository = None


def get_repository() -> Repository:
    if repository is None:
        raise RuntimeError("Repository not initialized")
    return repository
