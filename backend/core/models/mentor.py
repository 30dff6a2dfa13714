"""Mentor models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Mentor(BaseModel):
    """A signal originator and license issuer."""

    model_config = ConfigDict(frozen=True)

    mentor_id: str
    name: str
    email: str
    active: bool = True
    created_at: datetime


class MentorRegistration(BaseModel):
    """Result of a (possibly repeated) mentor registration."""

    mentor_id: str
    already_registered: bool = False
