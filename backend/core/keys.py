"""License key, mentor id and signal id generation.

License keys look like ``PREFIX-XXXX-XXXX``: the prefix is derived from
the issuing mentor's id, the two segments are random upper-case
alphanumerics. The format is checked on every lookup, independent of
whether the key exists.
"""

from __future__ import annotations

import re
import secrets
import string
import time
from typing import Callable

LICENSE_SEGMENT_LENGTH = 4
LICENSE_PREFIX_MAX = 16
FALLBACK_PREFIX = "EF"

LICENSE_KEY_PATTERN = re.compile(
    rf"^[A-Z0-9]{{2,{LICENSE_PREFIX_MAX}}}"
    rf"-[A-Z0-9]{{{LICENSE_SEGMENT_LENGTH}}}"
    rf"-[A-Z0-9]{{{LICENSE_SEGMENT_LENGTH}}}$"
)

_ALPHABET = string.ascii_uppercase + string.digits

# Mentor ids are 5-digit numbers: 10000..99999
MENTOR_ID_MIN = 10000
MENTOR_ID_MAX = 99999


def normalize_license_key(key: str | None) -> str:
    """Canonical form used for storage and lookup."""
    return (key or "").strip().upper()


def license_prefix(mentor_id: str) -> str:
    """Reduce a mentor id to a key prefix."""
    prefix = re.sub(r"[^A-Z0-9]", "", mentor_id.upper())[:LICENSE_PREFIX_MAX]
    if len(prefix) < 2:
        return FALLBACK_PREFIX
    return prefix


def _segment() -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(LICENSE_SEGMENT_LENGTH))


def generate_license_key(mentor_id: str) -> str:
    """Generate a candidate key. Uniqueness is the caller's job."""
    return f"{license_prefix(mentor_id)}-{_segment()}-{_segment()}"


def is_valid_license_format(key: str) -> bool:
    return bool(LICENSE_KEY_PATTERN.match(key))


def generate_mentor_id() -> str:
    """Generate a candidate 5-digit mentor id."""
    return str(MENTOR_ID_MIN + secrets.randbelow(MENTOR_ID_MAX - MENTOR_ID_MIN + 1))


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


class MonotonicIdGenerator:
    """Issue strictly increasing ids derived from wall-clock milliseconds.

    Two ids requested within the same millisecond (or after the clock
    steps backwards) still come out ordered: the next id is
    ``max(now_ms, last + 1)``. Not safe for concurrent use on its own;
    callers serialize access.
    """

    def __init__(self, clock_ms: Callable[[], int] = _epoch_ms, last: int = 0):
        self._clock_ms = clock_ms
        self._last = last

    @property
    def last(self) -> int:
        return self._last

    def next_id(self) -> str:
        value = max(self._clock_ms(), self._last + 1)
        self._last = value
        return str(value)

    def observe(self, issued_id: str) -> None:
        """Make sure future ids sort after an id issued earlier (e.g. loaded from storage)."""
        self._last = max(self._last, int(issued_id))
