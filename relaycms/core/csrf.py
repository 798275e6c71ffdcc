"""CSRF protection bound to the server-side session."""

import secrets
import time
from enum import Enum
from typing import Callable, Optional

from fastapi import Request
from markupsafe import Markup, escape

from .errors import SecurityRejection
from .models import Session


class CSRFFailure(str, Enum):
    """Why a CSRF check failed. Values double as client-facing error types."""

    MISSING = "csrf_missing"
    EXPIRED = "csrf_expired"
    MISMATCH = "csrf_mismatch"


class CSRFError(SecurityRejection):
    """CSRF validation failed."""

    MESSAGES = {
        CSRFFailure.MISSING: "Security token missing. Please reload the page and try again.",
        CSRFFailure.EXPIRED: "Security token expired. Please reload the page and try again.",
        CSRFFailure.MISMATCH: "Invalid security token. Please reload the page and try again.",
    }

    def __init__(self, reason: CSRFFailure):
        super().__init__(self.MESSAGES[reason])
        self.reason = reason


class CSRFProtection:
    """Synchronizer-token CSRF protection.

    One token per session, stored server-side together with its issue time.
    A token stays valid (and is reused) until it is older than ``ttl``
    seconds; it is not single-use.
    """

    HEADER_NAME = "X-CSRF-Token"
    FORM_FIELD = "csrf_token"
    TOKEN_BYTES = 32  # 256 bits
    TOKEN_TTL = 7200

    def __init__(self, ttl: int = TOKEN_TTL, clock: Callable[[], float] = time.time):
        """Initialize CSRF protection.

        Args:
            ttl: Token lifetime in seconds, independent of the session timeout.
            clock: Source of the current epoch time.
        """
        self.ttl = ttl
        self.clock = clock

    def generate_token(self) -> str:
        """Generate a new random token.

        Returns:
            64 hex characters.
        """
        return secrets.token_hex(self.TOKEN_BYTES)

    def issue(self, session: Session) -> str:
        """Issue a fresh token and store it in the session.

        Args:
            session: Current session.

        Returns:
            The new token.
        """
        token = self.generate_token()
        session.csrf_token = token
        session.csrf_token_time = self.clock()
        return token

    def is_expired(self, session: Session) -> bool:
        """Check whether the session's token is past its lifetime."""
        if session.csrf_token_time is None:
            return False
        return self.clock() - session.csrf_token_time > self.ttl

    def get_token(self, session: Session) -> str:
        """Get the session's token, issuing one if missing or expired.

        Args:
            session: Current session.

        Returns:
            Token to embed in forms and meta tags.
        """
        if session.csrf_token is None or self.is_expired(session):
            return self.issue(session)
        return session.csrf_token

    def check(self, session: Session, candidate: Optional[str]) -> Optional[CSRFFailure]:
        """Validate a submitted token.

        Args:
            session: Current session.
            candidate: Token submitted with the request.

        Returns:
            None if valid, otherwise the reason for the failure.
        """
        if not session.csrf_token or not candidate:
            return CSRFFailure.MISSING
        if self.is_expired(session):
            return CSRFFailure.EXPIRED
        # Constant-time comparison
        if not secrets.compare_digest(session.csrf_token.encode(), candidate.encode()):
            return CSRFFailure.MISMATCH
        return None

    def validate(self, session: Session, candidate: Optional[str]) -> bool:
        """Validate a submitted token.

        Returns:
            True if the token is valid.
        """
        return self.check(session, candidate) is None

    def require_valid(self, session: Session, candidate: Optional[str]) -> None:
        """Validate a submitted token or raise.

        Raises:
            CSRFError: With the failure reason.
        """
        failure = self.check(session, candidate)
        if failure is not None:
            raise CSRFError(failure)

    def reset(self, session: Session) -> None:
        """Forget the session's token."""
        session.csrf_token = None
        session.csrf_token_time = None

    def get_token_from_request(self, request: Request, form: Optional[dict] = None) -> Optional[str]:
        """Extract the submitted token.

        Checks the header first, then the already-parsed form data.

        Args:
            request: FastAPI request object.
            form: Parsed form data, if the request has a form body.

        Returns:
            Token if found, None otherwise.
        """
        token = request.headers.get(self.HEADER_NAME)
        if token:
            return token
        if form is not None:
            value = form.get(self.FORM_FIELD)
            if isinstance(value, str) and value:
                return value
        return None

    def token_field(self, session: Session) -> Markup:
        """Hidden form input carrying the token."""
        token = escape(self.get_token(session))
        return Markup(f'<input type="hidden" name="{self.FORM_FIELD}" value="{token}">')

    def token_meta(self, session: Session) -> Markup:
        """``<meta>`` tag carrying the token for scripts."""
        token = escape(self.get_token(session))
        return Markup(f'<meta name="csrf-token" content="{token}">')
