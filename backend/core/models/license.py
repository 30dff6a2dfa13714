"""License key models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class LicenseKey(BaseModel):
    """A license issued by a mentor.

    Only ``active`` ever changes, and only from True to False.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    mentor_id: str
    ea_id: str
    user_id: str | None = None
    active: bool = True
    created_at: datetime


class ValidationReason(str, Enum):
    """Outcome of a license lookup."""

    VALID = "valid"
    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"


class LicenseValidation(BaseModel):
    """Result of validating a license key. Never raised, always returned."""

    valid: bool
    reason: ValidationReason
    license: LicenseKey | None = None
