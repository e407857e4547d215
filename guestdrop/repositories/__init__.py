# Repositories package
from .base import Repository, normalize_document
from .sql import SqlRepository
from .mongo import MongoRepository

__all__ = ['Repository', 'normalize_document', 'SqlRepository', 'MongoRepository']
