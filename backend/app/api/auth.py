"""Caller identity: one abstraction over the three credential schemes.

- ``Authorization: Bearer <MENTOR_TOKEN>``: legacy single-mentor token,
  resolves to ``mentor:{legacy_mentor_id}``
- ``X-Mentor-Id: <id>``: resolved through the mentor directory
- ``X-Agent-Key: <AGENT_KEY>``: the remote VPS agent

Routes declare the capability they need with ``require_mentor`` or
``require_agent``; everything else is ``anonymous``.
"""

import hmac
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, Request

from app.errors import Unauthorized


class Capability(str, Enum):
    MENTOR = "mentor"
    AGENT = "agent"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Caller:
    capability: Capability
    mentor_id: str | None = None


ANONYMOUS = Caller(Capability.ANONYMOUS)


def _secret_matches(presented: str | None, configured: str) -> bool:
    if not configured or not presented:
        return False
    return hmac.compare_digest(presented.encode(), configured.encode())


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def resolve_caller(request: Request) -> Caller:
    """Work out who is calling from the request headers."""
    services = request.app.state.services
    settings = services.settings

    if _secret_matches(_bearer_token(request), settings.mentor_token):
        return Caller(Capability.MENTOR, mentor_id=settings.legacy_mentor_id)

    mentor_header = request.headers.get("x-mentor-id")
    if mentor_header:
        mentor = services.mentors.validate(mentor_header)
        if mentor is not None:
            return Caller(Capability.MENTOR, mentor_id=mentor.mentor_id)

    if _secret_matches(request.headers.get("x-agent-key"), settings.agent_key):
        return Caller(Capability.AGENT)

    return ANONYMOUS


def require_mentor(caller: Caller = Depends(resolve_caller)) -> Caller:
    if caller.capability is not Capability.MENTOR:
        raise Unauthorized("invalid_mentor_credential", "Invalid or missing mentor credential")
    return caller


def require_agent(caller: Caller = Depends(resolve_caller)) -> Caller:
    if caller.capability is not Capability.AGENT:
        raise Unauthorized("invalid_agent_key", "Invalid or missing agent key")
    return caller
