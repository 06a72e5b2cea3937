"""
Key/value storage backends for serialized collections.

Every write names the revision it was based on; a backend refuses the
write with StorageConflictError if the stored revision has moved on.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from clarifind.exceptions import StorageConflictError, StorageWriteError
from clarifind.models.storage_entry import StorageEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredValue:
    value: str
    revision: int


class StorageBackend(ABC):
    @abstractmethod
    async def read(self, key: str) -> Optional[StoredValue]:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    async def write(self, key: str, value: str, expected_revision: Optional[int]) -> int:
        """
        Replace the value under key and return the new revision.
        expected_revision is None when the caller saw no entry.
        """


class MemoryStorage(StorageBackend):
    def __init__(self, initial: dict = None):
        self._entries: dict[str, StoredValue] = {
            key: StoredValue(value, 1) for key, value in (initial or {}).items()
        }

    async def read(self, key: str) -> Optional[StoredValue]:
        return self._entries.get(key)

    async def write(self, key: str, value: str, expected_revision: Optional[int]) -> int:
        current = self._entries.get(key)
        current_revision = current.revision if current else None
        if current_revision != expected_revision:
            raise StorageConflictError(key, expected_revision)
        revision = (current_revision or 0) + 1
        self._entries[key] = StoredValue(value, revision)
        return revision


class DatabaseStorage(StorageBackend):
    """Keeps each key as one row of the storage_entries table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def read(self, key: str) -> Optional[StoredValue]:
        result = await self.db.execute(
            select(StorageEntry.value, StorageEntry.revision).where(StorageEntry.key == key)
        )
        row = result.first()
        if row is None:
            return None
        return StoredValue(row.value, row.revision)

    async def write(self, key: str, value: str, expected_revision: Optional[int]) -> int:
        try:
            if expected_revision is None:
                await self.db.execute(insert(StorageEntry).values(key=key, value=value, revision=1))
                return 1
            result = await self.db.execute(
                update(StorageEntry)
                .where(StorageEntry.key == key, StorageEntry.revision == expected_revision)
                .values(value=value, revision=expected_revision + 1)
                .execution_options(synchronize_session=False)
            )
        except IntegrityError as e:
            # Another writer created the entry first
            await self.db.rollback()
            raise StorageConflictError(key, expected_revision) from e
        except SQLAlchemyError as e:
            logger.error("Storage write for %s failed: %s", key, e)
            raise StorageWriteError(key, str(e)) from e

        if result.rowcount == 0:
            raise StorageConflictError(key, expected_revision)
        return expected_revision + 1
