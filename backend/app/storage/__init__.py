"""Data storage layer."""

from app.storage.database import Database, get_database, init_database
from app.storage.record_store import (
    LICENSES,
    MENTORS,
    SIGNALS,
    STUDENTS,
    MemoryRecordStore,
    RecordStore,
    SqlRecordStore,
)

__all__ = [
    "Database",
    "get_database",
    "init_database",
    "RecordStore",
    "MemoryRecordStore",
    "SqlRecordStore",
    "LICENSES",
    "MENTORS",
    "SIGNALS",
    "STUDENTS",
]
