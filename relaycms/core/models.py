"""Pydantic models for Relay CMS."""

import re
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr, field_validator

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    """Generate an opaque, unguessable session identifier."""
    return secrets.token_urlsafe(32)


class Role(str, Enum):
    """User roles.

    - ADMIN: full access, shown with an admin badge
    - EDITOR: can manage menus and their own password
    """

    ADMIN = "admin"
    EDITOR = "editor"


class User(BaseModel):
    """User account as stored in ``users.json``."""

    username: str = Field(..., min_length=1)
    password_hash: str
    role: Role = Role.EDITOR

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Ensure username is alphanumeric with underscores."""
        if not USERNAME_RE.fullmatch(v):
            raise ValueError("Username must be alphanumeric with underscores only")
        return v

    def to_record(self) -> dict[str, str]:
        """Serialize to the on-disk record (username is the mapping key)."""
        return {"password_hash": self.password_hash, "role": self.role.value}


class Session(BaseModel):
    """Server-side session state.

    One object per browser session, loaded by the session middleware and
    passed explicitly to every component that needs it. Timestamps are epoch
    seconds.
    """

    session_id: str = Field(default_factory=new_session_id)
    authenticated: bool = False
    username: str | None = None
    role: Role | None = None
    login_time: float | None = None
    last_activity: float | None = None
    login_attempts: list[float] = Field(default_factory=list)
    locked_until: float = 0.0
    csrf_token: str | None = None
    csrf_token_time: float | None = None
    pending_redirect: str | None = None
    updated_at: float = Field(default_factory=time.time)

    _retired_ids: list[str] = PrivateAttr(default_factory=list)

    @property
    def retired_ids(self) -> list[str]:
        """Identifiers this session was known by before rotation."""
        return list(self._retired_ids)

    def regenerate_id(self) -> str:
        """Rotate the session identifier, keeping the state.

        Returns:
            The new session id.
        """
        self._retired_ids.append(self.session_id)
        self.session_id = new_session_id()
        return self.session_id

    def clear(self) -> None:
        """Drop all state and rotate the identifier."""
        fresh = Session()
        for name in type(self).model_fields:
            if name not in ("session_id", "updated_at"):
                setattr(self, name, getattr(fresh, name))
        self.regenerate_id()

    @property
    def is_blank(self) -> bool:
        """True when the session carries no state worth persisting."""
        return (
            not self.authenticated
            and not self.login_attempts
            and not self.locked_until
            and self.csrf_token is None
            and self.pending_redirect is None
        )

    def to_record(self) -> dict[str, Any]:
        """Serialize for a session store."""
        return self.model_dump(mode="json")


class AuditEvent(BaseModel):
    """Audit log event model."""

    timestamp: datetime = Field(default_factory=utc_now)
    event: str
    actor: str
    ip: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
