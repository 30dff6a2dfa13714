"""Business services."""

from app.services.license_registry import LicenseRegistry
from app.services.signal_log import SignalLog
from app.services.mentor_directory import MentorDirectory
from app.services.student_registry import StudentRegistry
from app.services.trade_copier import CopyResult, TradeCopier
from app.services.execution import MetaApiExecutionBackend

__all__ = [
    "LicenseRegistry",
    "SignalLog",
    "MentorDirectory",
    "StudentRegistry",
    "TradeCopier",
    "CopyResult",
    "MetaApiExecutionBackend",
]
