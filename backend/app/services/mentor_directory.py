"""Mentor directory: registration and identity lookup."""

import asyncio
import logging

from app.errors import NotFound, require_fields
from app.storage.record_store import MENTORS, RecordStore
from core.clock import Clock, utc_now
from core.keys import generate_mentor_id
from core.models.mentor import Mentor, MentorRegistration

logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class MentorDirectory:
    """Maps mentor ids to mentors. Registration is idempotent by email."""

    def __init__(self, store: RecordStore, clock: Clock = utc_now):
        self._store = store
        self._clock = clock
        self._mentors: dict[str, Mentor] = {}
        self._by_email: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> int:
        records = await self._store.load(MENTORS)
        async with self._lock:
            self._mentors = {r["mentor_id"]: Mentor(**r) for r in records}
            self._by_email = {
                _normalize_email(m.email): m.mentor_id for m in self._mentors.values()
            }
        logger.info(f"Loaded {len(self._mentors)} mentors")
        return len(self._mentors)

    async def register(
        self, name: str | None, email: str | None, mentor_id: str | None = None
    ) -> MentorRegistration:
        """Register a mentor, or return the existing id for a known email.

        A requested ``mentor_id`` is honoured only when free; otherwise a
        fresh 5-digit id is generated. Nothing is kept if the store write fails.
        """
        require_fields(name=name, email=email)
        normalized_email = _normalize_email(email)

        async with self._lock:
            existing_id = self._by_email.get(normalized_email)
            if existing_id is not None:
                return MentorRegistration(mentor_id=existing_id, already_registered=True)

            candidate = (mentor_id or "").strip() or generate_mentor_id()
            while candidate in self._mentors:
                candidate = generate_mentor_id()

            mentor = Mentor(
                mentor_id=candidate,
                name=name.strip(),
                email=normalized_email,
                active=True,
                created_at=self._clock(),
            )
            await self._store.upsert(MENTORS, mentor.model_dump())
            self._mentors[candidate] = mentor
            self._by_email[normalized_email] = candidate

        logger.info(f"Mentor registered: {mentor.name} ({candidate})")
        return MentorRegistration(mentor_id=candidate, already_registered=False)

    def validate(self, mentor_id: str | None) -> Mentor | None:
        """Return the mentor if it exists and is active."""
        if not mentor_id:
            return None
        mentor = self._mentors.get(mentor_id.strip())
        if mentor is None or not mentor.active:
            return None
        return mentor

    def get(self, mentor_id: str) -> Mentor | None:
        return self._mentors.get(mentor_id)

    async def deactivate(self, mentor_id: str) -> Mentor:
        async with self._lock:
            mentor = self._mentors.get(mentor_id)
            if mentor is None:
                raise NotFound("mentor_not_found", f"Mentor {mentor_id!r} does not exist")
            if not mentor.active:
                return mentor
            updated = mentor.model_copy(update={"active": False})
            await self._store.upsert(MENTORS, updated.model_dump())
            self._mentors[mentor_id] = updated

        logger.info(f"Mentor deactivated: {mentor_id}")
        return updated

    @property
    def count(self) -> int:
        return len(self._mentors)
