"""Tests for student registration, status transitions and heartbeats."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from app.errors import BackendFailure, Conflict, Forbidden, NotFound, ValidationError
from app.services.license_registry import LicenseRegistry
from app.services.student_registry import StudentRegistry
from app.storage.record_store import STUDENTS, MemoryRecordStore
from core.models.student import StudentStatus

from fakes import FakeBackend, FakeClock


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def licenses(store, clock):
    return LicenseRegistry(store, clock=clock)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def registry(licenses, store, backend, clock):
    return StudentRegistry(licenses, store, backend=backend, clock=clock)


async def _register(registry, key, account="5012345"):
    return await registry.register(key, account, "s3cret", "Broker-Live", broker="Broker")


class TestStudentRegistration:
    @pytest.mark.asyncio
    async def test_register_with_backend_is_active(self, registry, licenses, backend, store):
        license = await licenses.issue("48213", "EA1")
        student = await _register(registry, license.key)

        assert student.status is StudentStatus.ACTIVE
        assert student.account_ref == "acct-1"
        assert student.mentor_id == "48213"
        assert student.ea_id == "EA1"
        assert student.broker == "Broker"
        assert backend.connected[0].login == "5012345"
        assert backend.connected[0].name == f"Student-{license.key}"
        assert store.count(STUDENTS) == 1

    @pytest.mark.asyncio
    async def test_password_is_not_stored(self, registry, licenses, store):
        license = await licenses.issue("48213", "EA1")
        await _register(registry, license.key)
        records = await store.load(STUDENTS)
        assert "password" not in records[0]
        assert "s3cret" not in str(records[0])

    @pytest.mark.asyncio
    async def test_register_without_backend_is_pending(self, licenses, store, clock):
        registry = StudentRegistry(licenses, store, backend=None, clock=clock)
        license = await licenses.issue("48213", "EA1")
        student = await _register(registry, license.key)

        assert student.status is StudentStatus.PENDING
        assert student.account_ref is None

    @pytest.mark.asyncio
    async def test_second_registration_conflicts(self, registry, licenses):
        license = await licenses.issue("48213", "EA1")
        await _register(registry, license.key)

        with pytest.raises(Conflict):
            await _register(registry, license.key, account="999")

    @pytest.mark.asyncio
    async def test_concurrent_registrations_only_one_wins(self, licenses, store, clock):
        backend = FakeBackend(connect_delay=0.01)
        registry = StudentRegistry(licenses, store, backend=backend, clock=clock)
        license = await licenses.issue("48213", "EA1")

        results = await asyncio.gather(
            _register(registry, license.key, "1"),
            _register(registry, license.key, "2"),
            return_exceptions=True,
        )
        assert sum(1 for r in results if isinstance(r, Conflict)) == 1
        assert len(backend.connected) == 1
        assert registry.count == 1

    @pytest.mark.asyncio
    async def test_missing_fields(self, registry):
        with pytest.raises(ValidationError) as exc_info:
            await registry.register(None, "", "pw", None)
        assert exc_info.value.fields == ["license_key", "account_number", "server"]

    @pytest.mark.asyncio
    async def test_malformed_license_is_refused(self, registry):
        with pytest.raises(Forbidden) as exc_info:
            await _register(registry, "nope")
        assert exc_info.value.reason == "license_malformed"

    @pytest.mark.asyncio
    async def test_unknown_license_is_refused(self, registry):
        with pytest.raises(Forbidden) as exc_info:
            await _register(registry, "48213-AAAA-BBBB")
        assert exc_info.value.reason == "license_not_found"

    @pytest.mark.asyncio
    async def test_inactive_license_is_refused(self, registry, licenses):
        license = await licenses.issue("48213", "EA1")
        await licenses.deactivate("48213", license.key)
        with pytest.raises(Forbidden) as exc_info:
            await _register(registry, license.key)
        assert exc_info.value.reason == "license_inactive"

    @pytest.mark.asyncio
    async def test_backend_failure_persists_nothing(self, licenses, store, clock):
        registry = StudentRegistry(
            licenses, store, backend=FakeBackend(connect_error=RuntimeError("bad password")), clock=clock
        )
        license = await licenses.issue("48213", "EA1")

        with pytest.raises(BackendFailure) as exc_info:
            await _register(registry, license.key)
        assert exc_info.value.reason == "backend_failed"
        assert registry.count == 0
        assert store.count(STUDENTS) == 0

        # The key is free again for a retry
        registry._backend = FakeBackend()
        student = await _register(registry, license.key)
        assert student.status is StudentStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_backend_timeout(self, licenses, store, clock):
        registry = StudentRegistry(
            licenses, store, backend=FakeBackend(connect_delay=5), registration_timeout=0.01, clock=clock
        )
        license = await licenses.issue("48213", "EA1")

        with pytest.raises(BackendFailure) as exc_info:
            await _register(registry, license.key)
        assert exc_info.value.reason == "backend_timeout"
        assert registry.count == 0

    @pytest.mark.asyncio
    async def test_store_failure_releases_backend_account(self, registry, licenses, backend, store):
        license = await licenses.issue("48213", "EA1")

        with patch.object(store, "upsert", new_callable=AsyncMock, side_effect=BackendFailure("storage_unavailable")):
            with pytest.raises(BackendFailure):
                await _register(registry, license.key)

        assert registry.count == 0
        assert backend.removed == ["acct-1"]

    @pytest.mark.asyncio
    async def test_unexpected_store_error_releases_backend_account(self, registry, licenses, backend, store):
        license = await licenses.issue("48213", "EA1")

        with patch.object(store, "upsert", new_callable=AsyncMock, side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                await _register(registry, license.key)

        assert registry.count == 0
        assert backend.removed == ["acct-1"]

        student = await _register(registry, license.key)
        assert student.status is StudentStatus.ACTIVE


class TestStudentTransitions:
    @pytest.mark.asyncio
    async def test_stop_and_start(self, registry, licenses):
        license = await licenses.issue("48213", "EA1")
        await _register(registry, license.key)

        stopped = await registry.stop(license.key)
        assert stopped.status is StudentStatus.STOPPED
        assert registry.active_students() == []

        started = await registry.start(license.key)
        assert started.status is StudentStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_transitions_are_idempotent(self, registry, licenses):
        license = await licenses.issue("48213", "EA1")
        await _register(registry, license.key)

        await registry.stop(license.key)
        again = await registry.stop(license.key)
        assert again.status is StudentStatus.STOPPED

        await registry.start(license.key)
        again = await registry.start(license.key)
        assert again.status is StudentStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_student(self, registry):
        with pytest.raises(NotFound):
            await registry.start("48213-AAAA-BBBB")
        with pytest.raises(NotFound):
            await registry.stop("48213-AAAA-BBBB")
        with pytest.raises(NotFound):
            registry.status("48213-AAAA-BBBB")

    @pytest.mark.asyncio
    async def test_active_students_scoped_by_mentor(self, registry, licenses):
        for mentor_id in ("11111", "11111", "22222"):
            license = await licenses.issue(mentor_id, "EA1")
            await _register(registry, license.key)

        assert len(registry.active_students()) == 3
        assert len(registry.active_students("11111")) == 2
        assert {s.mentor_id for s in registry.active_students("22222")} == {"22222"}

    @pytest.mark.asyncio
    async def test_revoked_license_leaves_active_list(self, registry, licenses):
        license = await licenses.issue("48213", "EA1")
        await _register(registry, license.key)
        await licenses.deactivate("48213", license.key)

        assert registry.active_students() == []
        assert registry.status(license.key).status is StudentStatus.ACTIVE


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_connected_right_after_heartbeat(self, registry, licenses):
        license = await licenses.issue("48213", "EA1")
        await _register(registry, license.key)

        assert registry.status(license.key).connected is False
        view = await registry.report_heartbeat(license.key, True)
        assert view.connected is True
        assert registry.status(license.key).connected is True

    @pytest.mark.asyncio
    async def test_goes_stale_without_new_heartbeat(self, registry, licenses, clock):
        license = await licenses.issue("48213", "EA1")
        await _register(registry, license.key)
        await registry.report_heartbeat(license.key, True)

        clock.advance(59)
        assert registry.status(license.key).connected is True
        clock.advance(1)
        assert registry.status(license.key).connected is False

        await registry.report_heartbeat(license.key, True)
        assert registry.status(license.key).connected is True

    @pytest.mark.asyncio
    async def test_reported_disconnected(self, registry, licenses):
        license = await licenses.issue("48213", "EA1")
        await _register(registry, license.key)
        view = await registry.report_heartbeat(license.key, False)
        assert view.connected is False
        assert view.last_reported_connected is False
        assert view.last_heartbeat is not None

    @pytest.mark.asyncio
    async def test_heartbeat_unknown_student(self, registry):
        with pytest.raises(NotFound):
            await registry.report_heartbeat("48213-AAAA-BBBB", True)

    @pytest.mark.asyncio
    async def test_custom_timeout(self, licenses, store, clock):
        registry = StudentRegistry(
            licenses, store, backend=FakeBackend(), heartbeat_timeout=timedelta(seconds=10), clock=clock
        )
        license = await licenses.issue("48213", "EA1")
        await _register(registry, license.key)
        await registry.report_heartbeat(license.key, True)

        clock.advance(10)
        assert registry.is_connected(registry.get(license.key)) is False

    @pytest.mark.asyncio
    async def test_heartbeat_survives_reload(self, registry, licenses, store, clock):
        license = await licenses.issue("48213", "EA1")
        await _register(registry, license.key)
        await registry.report_heartbeat(license.key, True)

        reloaded = StudentRegistry(licenses, store, clock=clock)
        await reloaded.load()
        assert reloaded.status(license.key).connected is True
