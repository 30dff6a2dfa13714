"""License registry: issue, validate, deactivate and list license keys."""

import asyncio
import logging

from app.errors import Forbidden, NotFound
from app.storage.record_store import LICENSES, RecordStore
from core.clock import Clock, utc_now
from core.keys import generate_license_key, is_valid_license_format, normalize_license_key
from core.models.license import LicenseKey, LicenseValidation, ValidationReason

logger = logging.getLogger(__name__)


class LicenseRegistry:
    """Owns every issued license key.

    Mutations run under a single lock covering collision check, store
    write and insertion, so two concurrent issuances can never end up with
    the same key. Reads don't await and therefore see a consistent dict.
    """

    def __init__(self, store: RecordStore, clock: Clock = utc_now):
        self._store = store
        self._clock = clock
        self._licenses: dict[str, LicenseKey] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> int:
        """Load licenses from the store, replacing in-memory state."""
        records = await self._store.load(LICENSES)
        async with self._lock:
            self._licenses = {r["key"]: LicenseKey(**r) for r in records}
        logger.info(f"Loaded {len(self._licenses)} licenses")
        return len(self._licenses)

    async def issue(
        self, mentor_id: str, ea_id: str, user_id: str | None = None
    ) -> LicenseKey:
        """Issue a new active license owned by ``mentor_id``."""
        async with self._lock:
            key = generate_license_key(mentor_id)
            while key in self._licenses:
                logger.debug(f"License key collision on {key}, regenerating")
                key = generate_license_key(mentor_id)

            license = LicenseKey(
                key=key,
                mentor_id=mentor_id,
                ea_id=ea_id,
                user_id=user_id,
                active=True,
                created_at=self._clock(),
            )
            await self._store.upsert(LICENSES, license.model_dump())
            self._licenses[key] = license

        logger.info(f"License issued: {key} (mentor={mentor_id}, ea={ea_id})")
        return license

    def validate(self, key: str | None) -> LicenseValidation:
        """Check a key. Fails closed and never raises."""
        candidate = normalize_license_key(key)
        if not is_valid_license_format(candidate):
            return LicenseValidation(valid=False, reason=ValidationReason.MALFORMED)

        license = self._licenses.get(candidate)
        if license is None:
            return LicenseValidation(valid=False, reason=ValidationReason.NOT_FOUND)
        if not license.active:
            return LicenseValidation(
                valid=False, reason=ValidationReason.INACTIVE, license=license
            )
        return LicenseValidation(valid=True, reason=ValidationReason.VALID, license=license)

    async def deactivate(self, mentor_id: str, key: str | None) -> LicenseKey:
        """Revoke a license. Only its issuing mentor may do so; repeat calls succeed."""
        candidate = normalize_license_key(key)
        async with self._lock:
            license = self._licenses.get(candidate)
            if license is None:
                raise NotFound("license_not_found", f"License {candidate or key!r} does not exist")
            if license.mentor_id != mentor_id:
                logger.warning(
                    f"Mentor {mentor_id} tried to deactivate license {candidate} "
                    f"owned by {license.mentor_id}"
                )
                raise Forbidden("not_license_owner", "License belongs to another mentor")
            if not license.active:
                return license

            updated = license.model_copy(update={"active": False})
            await self._store.upsert(LICENSES, updated.model_dump())
            self._licenses[candidate] = updated

        logger.info(f"License deactivated: {candidate} (mentor={mentor_id})")
        return updated

    def list_for_mentor(self, mentor_id: str) -> list[LicenseKey]:
        """Licenses owned by ``mentor_id``, newest first."""
        owned = [lic for lic in self._licenses.values() if lic.mentor_id == mentor_id]
        return sorted(owned, key=lambda lic: lic.created_at, reverse=True)

    @property
    def count(self) -> int:
        return len(self._licenses)
