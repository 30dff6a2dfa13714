"""Service wiring shared by the HTTP routes and the WebSocket endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from app.api.websocket import ConnectionManager
from app.config import Settings
from app.directory_config import DirectoryConfig, load_directory_config
from app.services import (
    LicenseRegistry,
    MentorDirectory,
    MetaApiExecutionBackend,
    SignalLog,
    StudentRegistry,
    TradeCopier,
)
from app.storage import Database, MemoryRecordStore, RecordStore, SqlRecordStore
from core.clock import Clock, utc_now
from core.execution import ExecutionBackend

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every stateful component of the relay."""

    settings: Settings
    store: RecordStore
    backend: ExecutionBackend | None
    licenses: LicenseRegistry
    signals: SignalLog
    mentors: MentorDirectory
    students: StudentRegistry
    copier: TradeCopier
    subscribers: ConnectionManager

    @classmethod
    def build(
        cls,
        settings: Settings,
        store: RecordStore | None = None,
        backend: ExecutionBackend | None = None,
        clock: Clock = utc_now,
    ) -> Services:
        if store is None:
            if settings.database_url:
                store = SqlRecordStore(Database(settings.database_url))
            else:
                store = MemoryRecordStore()
        if backend is None and settings.metaapi_token:
            backend = MetaApiExecutionBackend.from_settings(settings)

        licenses = LicenseRegistry(store, clock=clock)
        signals = SignalLog(store, limit=settings.signal_history_limit, clock=clock)
        students = StudentRegistry(
            licenses,
            store,
            backend=backend,
            registration_timeout=settings.registration_timeout_seconds,
            heartbeat_timeout=timedelta(seconds=settings.heartbeat_timeout_seconds),
            clock=clock,
        )
        return cls(
            settings=settings,
            store=store,
            backend=backend,
            licenses=licenses,
            signals=signals,
            mentors=MentorDirectory(store, clock=clock),
            students=students,
            copier=TradeCopier(
                students,
                backend,
                timeout=settings.execution_timeout_seconds,
                default_size=settings.default_lot_size,
            ),
            subscribers=ConnectionManager(
                signals.recent,
                snapshot_size=settings.snapshot_size,
                send_timeout=settings.send_timeout_seconds,
            ),
        )

    async def start(self, directory: DirectoryConfig | None = None) -> None:
        """Open storage, reload state and seed pre-registered mentors."""
        if isinstance(self.store, SqlRecordStore):
            await self.store.open()

        await self.mentors.load()
        await self.licenses.load()
        await self.students.load()
        await self.signals.load()

        if directory is None:
            directory = load_directory_config(self.settings.directory_path)
        await self.seed_mentors(directory)

    async def seed_mentors(self, directory: DirectoryConfig) -> None:
        for entry in directory.mentors:
            registration = await self.mentors.register(
                entry.name, entry.email, entry.mentor_id
            )
            if entry.mentor_id and registration.mentor_id != entry.mentor_id:
                logger.warning(
                    f"Mentor {entry.email} seeded as {registration.mentor_id} "
                    f"(requested id {entry.mentor_id} is taken)"
                )
            if not entry.active:
                await self.mentors.deactivate(registration.mentor_id)

    async def stop(self) -> None:
        """Stop background work and release connections."""
        await self.copier.close()
        await self.subscribers.close_all()
        if self.backend is not None:
            try:
                await self.backend.close()
            except Exception as e:
                logger.warning(f"Error closing execution backend: {e}")
        try:
            await self.store.close()
        except Exception as e:
            logger.warning(f"Error closing record store: {e}")
