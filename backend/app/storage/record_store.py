"""Record stores backing the in-memory registries.

The registries own their state and only use a store for write-through
persistence and for reloading at startup. A record is a flat dict whose
keys match the domain model fields; each kind has one primary-key field.

- MemoryRecordStore: dict per kind, used when no database is configured
  and in tests.
- SqlRecordStore: one PostgreSQL table per kind (see database.py).
"""

from __future__ import annotations

import copy
import logging
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError

from app.errors import BackendFailure
from app.storage.database import (
    Database,
    LicenseTable,
    MentorTable,
    SignalTable,
    StudentTable,
)

logger = logging.getLogger(__name__)

LICENSES = "licenses"
MENTORS = "mentors"
STUDENTS = "students"
SIGNALS = "signals"

PRIMARY_KEYS = {
    LICENSES: "key",
    MENTORS: "mentor_id",
    STUDENTS: "license_key",
    SIGNALS: "id",
}

Record = dict[str, Any]


def _primary_key(kind: str) -> str:
    try:
        return PRIMARY_KEYS[kind]
    except KeyError:
        raise ValueError(f"Unknown record kind: {kind!r}") from None


@runtime_checkable
class RecordStore(Protocol):
    """CRUD interface the registries persist through."""

    async def load(self, kind: str) -> list[Record]:
        """Return every stored record of ``kind``."""
        ...

    async def upsert(self, kind: str, record: Record) -> None:
        """Insert or replace the record with the same primary key."""
        ...

    async def delete(self, kind: str, key: str) -> None:
        """Delete a record by primary key; missing keys are ignored."""
        ...

    async def close(self) -> None:
        ...


class MemoryRecordStore:
    """Process-local store. Records are deep-copied in and out."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Record]] = {kind: {} for kind in PRIMARY_KEYS}

    async def load(self, kind: str) -> list[Record]:
        _primary_key(kind)
        return [copy.deepcopy(r) for r in self._records[kind].values()]

    async def upsert(self, kind: str, record: Record) -> None:
        pk = _primary_key(kind)
        self._records[kind][record[pk]] = copy.deepcopy(record)

    async def delete(self, kind: str, key: str) -> None:
        _primary_key(kind)
        self._records[kind].pop(key, None)

    async def close(self) -> None:
        return None

    def count(self, kind: str) -> int:
        return len(self._records[kind])


_TABLES = {
    LICENSES: LicenseTable,
    MENTORS: MentorTable,
    STUDENTS: StudentTable,
    SIGNALS: SignalTable,
}


def _to_row(record: Record) -> Record:
    """Enums are stored by value."""
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in record.items()}


class SqlRecordStore:
    """PostgreSQL-backed store (SQLAlchemy async + asyncpg)."""

    def __init__(self, database: Database):
        self._db = database

    async def open(self) -> None:
        """Create tables if needed."""
        try:
            await self._db.create_tables()
        except (SQLAlchemyError, OSError) as e:
            raise BackendFailure("storage_unavailable", str(e)) from e

    async def load(self, kind: str) -> list[Record]:
        table = _TABLES[kind]
        columns = [c.name for c in table.__table__.columns]
        try:
            async with self._db.session() as session:
                result = await session.execute(select(table))
                rows = result.scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise BackendFailure("storage_unavailable", str(e)) from e
        return [{name: getattr(row, name) for name in columns} for row in rows]

    async def upsert(self, kind: str, record: Record) -> None:
        table = _TABLES[kind]
        pk = _primary_key(kind)
        values = _to_row(record)

        stmt = insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[pk],
            set_={name: stmt.excluded[name] for name in values if name != pk},
        )
        try:
            async with self._db.session() as session:
                await session.execute(stmt)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to write {kind} record {values.get(pk)}: {e}")
            raise BackendFailure("storage_unavailable", str(e)) from e

    async def delete(self, kind: str, key: str) -> None:
        table = _TABLES[kind]
        pk_column = getattr(table, _primary_key(kind))
        try:
            async with self._db.session() as session:
                await session.execute(delete(table).where(pk_column == key))
        except (SQLAlchemyError, OSError) as e:
            raise BackendFailure("storage_unavailable", str(e)) from e

    async def close(self) -> None:
        await self._db.close()
