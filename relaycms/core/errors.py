"""Exception hierarchy shared by the Relay core modules.

Callers in the web layer translate these into responses. Messages carried by
the exceptions are safe to show to end users; filesystem paths and other
internal detail only ever go to the log.
"""


class RelayError(Exception):
    """Base class for all Relay errors."""

    pass


class ValidationError(RelayError):
    """Malformed input: bad username, weak password, malformed menu data."""

    pass


class AuthFailure(RelayError):
    """Authentication failed. The message is deliberately generic."""

    def __init__(self, message: str = "Invalid username or password."):
        super().__init__(message)


class RateLimitExceeded(AuthFailure):
    """Too many failed login attempts for this session."""

    def __init__(self, retry_after: int):
        minutes = max(1, -(-retry_after // 60))
        super().__init__(
            f"Too many failed attempts. Please try again in {minutes} minutes."
        )
        self.retry_after = retry_after


class LoginRequired(RelayError):
    """The session is anonymous or has timed out."""

    def __init__(self, redirect_to: str | None = None):
        super().__init__("Your session has expired. Please log in again.")
        self.redirect_to = redirect_to


class NotFound(RelayError):
    """Missing (or rejected) content, template, theme or menu."""

    pass


class PersistenceFailure(RelayError):
    """A file could not be written."""

    pass


class SecurityRejection(RelayError):
    """A request was rejected by a security check (CSRF, traversal)."""

    pass
