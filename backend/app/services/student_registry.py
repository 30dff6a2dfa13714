"""Student registry: enrollment, start/stop and heartbeat liveness."""

import asyncio
import logging
from datetime import timedelta

from app.errors import (
    BackendFailure,
    Conflict,
    Forbidden,
    NotFound,
    ServiceError,
    require_fields,
)
from app.services.license_registry import LicenseRegistry
from app.storage.record_store import STUDENTS, RecordStore
from core.clock import Clock, utc_now
from core.execution import AccountCredentials, ExecutionBackend
from core.keys import normalize_license_key
from core.liveness import HEARTBEAT_TIMEOUT
from core.models.student import Student, StudentStatus, StudentStatusView

logger = logging.getLogger(__name__)

DEFAULT_REGISTRATION_TIMEOUT = 60.0


class StudentRegistry:
    """Tracks one student per license and its agent's last heartbeat.

    Registration is all-or-nothing: the license key is reserved under the
    lock, the (slow, time-bounded) backend call runs outside it, and the
    record is only inserted once the backend and the store both succeeded.
    """

    def __init__(
        self,
        licenses: LicenseRegistry,
        store: RecordStore,
        backend: ExecutionBackend | None = None,
        registration_timeout: float = DEFAULT_REGISTRATION_TIMEOUT,
        heartbeat_timeout: timedelta = HEARTBEAT_TIMEOUT,
        clock: Clock = utc_now,
    ):
        self._licenses = licenses
        self._store = store
        self._backend = backend
        self._registration_timeout = registration_timeout
        self._heartbeat_timeout = heartbeat_timeout
        self._clock = clock
        self._students: dict[str, Student] = {}
        self._pending: set[str] = set()
        self._lock = asyncio.Lock()

    async def load(self) -> int:
        records = await self._store.load(STUDENTS)
        async with self._lock:
            self._students = {r["license_key"]: Student(**r) for r in records}
        logger.info(f"Loaded {len(self._students)} students")
        return len(self._students)

    async def register(
        self,
        license_key: str | None,
        account_number: str | None,
        password: str | None,
        server: str | None,
        broker: str | None = None,
    ) -> Student:
        """Enroll a license against an execution account."""
        require_fields(
            license_key=license_key,
            account_number=account_number,
            password=password,
            server=server,
        )

        validation = self._licenses.validate(license_key)
        if not validation.valid:
            raise Forbidden(
                f"license_{validation.reason.value}",
                f"License cannot be used: {validation.reason.value}",
            )
        license = validation.license
        key = license.key

        async with self._lock:
            if key in self._students or key in self._pending:
                raise Conflict("license_already_registered", "License already registered")
            self._pending.add(key)

        try:
            account_ref = None
            status = StudentStatus.PENDING
            if self._backend is not None:
                account_ref = await self._connect_account(
                    AccountCredentials(
                        login=str(account_number).strip(),
                        password=password,
                        server=server.strip(),
                        name=f"Student-{key}",
                        broker=broker or "Unknown",
                    )
                )
                status = StudentStatus.ACTIVE

            student = Student(
                license_key=key,
                mentor_id=license.mentor_id,
                ea_id=license.ea_id,
                account_number=str(account_number).strip(),
                server=server.strip(),
                broker=(broker or "").strip() or "Unknown",
                account_ref=account_ref,
                status=status,
                registered_at=self._clock(),
            )
            try:
                async with self._lock:
                    await self._store.upsert(STUDENTS, student.model_dump())
                    self._students[key] = student
            except Exception:
                if account_ref is not None:
                    await self._release_account(account_ref)
                raise
        finally:
            async with self._lock:
                self._pending.discard(key)

        logger.info(
            f"Student registered: {key} (mentor={student.mentor_id}, "
            f"status={student.status.value})"
        )
        return student

    async def _connect_account(self, credentials: AccountCredentials) -> str:
        try:
            return await asyncio.wait_for(
                self._backend.connect_account(credentials),
                timeout=self._registration_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Backend account setup timed out after {self._registration_timeout:.0f}s "
                f"for {credentials.name}"
            )
            raise BackendFailure(
                "backend_timeout", "Trading account did not connect in time"
            ) from None
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Backend account setup failed for {credentials.name}: {e}")
            raise BackendFailure("backend_failed", "Failed to connect trading account") from e

    async def _release_account(self, account_ref: str) -> None:
        try:
            await self._backend.remove_account(account_ref)
        except Exception as e:
            logger.error(f"Failed to remove orphaned account {account_ref}: {e}")

    async def start(self, license_key: str | None) -> Student:
        return await self._transition(license_key, StudentStatus.ACTIVE)

    async def stop(self, license_key: str | None) -> Student:
        return await self._transition(license_key, StudentStatus.STOPPED)

    async def _transition(self, license_key: str | None, status: StudentStatus) -> Student:
        require_fields(license_key=license_key)
        key = normalize_license_key(license_key)
        async with self._lock:
            student = self._require(key)
            if student.status is status:
                return student
            updated = student.model_copy(update={"status": status})
            await self._store.upsert(STUDENTS, updated.model_dump())
            self._students[key] = updated

        logger.info(f"Student {key}: {student.status.value} -> {status.value}")
        return updated

    async def report_heartbeat(self, license_key: str | None, connected: bool) -> StudentStatusView:
        """Record an agent heartbeat for a student."""
        require_fields(license_key=license_key)
        key = normalize_license_key(license_key)
        async with self._lock:
            student = self._require(key)
            updated = student.model_copy(
                update={
                    "last_heartbeat": self._clock(),
                    "last_reported_connected": bool(connected),
                }
            )
            await self._store.upsert(STUDENTS, updated.model_dump())
            self._students[key] = updated

        logger.debug(f"Heartbeat from {key} (connected={connected})")
        return self._view(updated)

    def status(self, license_key: str | None) -> StudentStatusView:
        key = normalize_license_key(license_key)
        return self._view(self._require(key))

    def get(self, license_key: str | None) -> Student | None:
        return self._students.get(normalize_license_key(license_key))

    def active_students(self, mentor_id: str | None = None) -> list[Student]:
        """Active students whose license is still valid."""
        return [
            s
            for s in self._students.values()
            if s.status is StudentStatus.ACTIVE
            and (mentor_id is None or s.mentor_id == mentor_id)
            and self._licenses.validate(s.license_key).valid
        ]

    def is_connected(self, student: Student) -> bool:
        return student.is_connected(self._clock(), self._heartbeat_timeout)

    def _require(self, key: str) -> Student:
        student = self._students.get(key)
        if student is None:
            raise NotFound("student_not_found", "No student registered for this license")
        return student

    def _view(self, student: Student) -> StudentStatusView:
        return StudentStatusView.from_student(student, self._clock(), self._heartbeat_timeout)

    @property
    def count(self) -> int:
        return len(self._students)
