"""Student (enrolled execution account) models."""

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict

from core.liveness import HEARTBEAT_TIMEOUT, is_connected


class StudentStatus(str, Enum):
    """Operational status of a student's copy session."""

    PENDING = "pending"
    ACTIVE = "active"
    STOPPED = "stopped"


class Student(BaseModel):
    """A license bound to an execution account."""

    model_config = ConfigDict(frozen=True)

    license_key: str
    mentor_id: str
    ea_id: str
    account_number: str
    server: str
    broker: str = "Unknown"
    account_ref: str | None = None  # Opaque handle from the execution backend
    status: StudentStatus = StudentStatus.PENDING
    registered_at: datetime
    last_heartbeat: datetime | None = None
    last_reported_connected: bool | None = None

    def is_connected(
        self, now: datetime, timeout: timedelta = HEARTBEAT_TIMEOUT
    ) -> bool:
        """Derived connectivity at ``now``."""
        return is_connected(
            self.last_heartbeat, self.last_reported_connected, now, timeout
        )


class StudentStatusView(BaseModel):
    """Student projection returned to clients, including derived connectivity."""

    license_key: str
    mentor_id: str
    ea_id: str
    account_number: str
    server: str
    broker: str
    status: StudentStatus
    registered_at: datetime
    last_heartbeat: datetime | None = None
    last_reported_connected: bool | None = None
    connected: bool

    @classmethod
    def from_student(
        cls,
        student: Student,
        now: datetime,
        timeout: timedelta = HEARTBEAT_TIMEOUT,
    ) -> "StudentStatusView":
        return cls(
            license_key=student.license_key,
            mentor_id=student.mentor_id,
            ea_id=student.ea_id,
            account_number=student.account_number,
            server=student.server,
            broker=student.broker,
            status=student.status,
            registered_at=student.registered_at,
            last_heartbeat=student.last_heartbeat,
            last_reported_connected=student.last_reported_connected,
            connected=student.is_connected(now, timeout),
        )
