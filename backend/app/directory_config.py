"""Pre-registered mentors loaded from directory.yaml.

Example::

    mentors:
      - name: Jorge
        email: ${JORGE_EMAIL}
        mentor_id: "48213"
      - name: Retired Mentor
        email: old@example.com
        active: false

``${VAR}`` references are expanded from the environment (after loading
``.env`` next to the file). No file means no seeded mentors.
"""

import logging
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, model_validator

logger = logging.getLogger(__name__)


class MentorEntry(BaseModel):
    """One mentor to make sure exists at startup."""

    name: str
    email: str
    mentor_id: str | None = None
    active: bool = True


class DirectoryConfig(BaseModel):
    """Top-level directory.yaml configuration."""

    mentors: list[MentorEntry] = []

    @model_validator(mode="after")
    def _validate(self):
        emails = [m.email.strip().lower() for m in self.mentors]
        duplicates = sorted({e for e in emails if emails.count(e) > 1})
        if duplicates:
            raise ValueError(f"duplicate mentor emails: {', '.join(duplicates)}")
        return self


_DEFAULT_PATH = Path(__file__).parent.parent / "directory.yaml"


def load_directory_config(path: Path | None = None) -> DirectoryConfig:
    """Load the mentor directory seed file.

    Falls back to an empty directory if the file doesn't exist.
    """
    config_path = path or _DEFAULT_PATH

    env_path = config_path.parent / ".env"
    load_dotenv(env_path, override=False)

    if not config_path.exists():
        logger.info(f"No directory.yaml found at {config_path}, no mentors seeded")
        return DirectoryConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(os.path.expandvars(f.read())) or {}

    config = DirectoryConfig(**raw)
    inactive = sum(1 for m in config.mentors if not m.active)
    logger.info(f"Loaded directory config: {len(config.mentors)} mentors ({inactive} inactive)")
    return config
