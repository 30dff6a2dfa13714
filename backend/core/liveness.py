"""Liveness rule for remote execution agents.

A student's agent counts as connected only while its heartbeats are fresh
and the last one reported a live terminal connection. Staleness is
evaluated lazily whenever state is read; there is no background timer.
"""

from datetime import datetime, timedelta

HEARTBEAT_TIMEOUT = timedelta(seconds=60)


def is_connected(
    last_heartbeat: datetime | None,
    last_reported_connected: bool | None,
    now: datetime,
    timeout: timedelta = HEARTBEAT_TIMEOUT,
) -> bool:
    """Return True iff a heartbeat exists, is younger than ``timeout``
    and reported the terminal as connected."""
    if last_heartbeat is None or last_reported_connected is not True:
        return False
    return now - last_heartbeat < timeout
