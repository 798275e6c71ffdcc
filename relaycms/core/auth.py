"""Authentication and session authorization."""

import secrets
import time
from typing import Callable, Optional

from .errors import (
    AuthFailure,
    LoginRequired,
    NotFound,
    PersistenceFailure,
    RateLimitExceeded,
    ValidationError,
)
from .logging import auth_logger
from .models import USERNAME_RE, Role, Session, User
from .passwords import PasswordHasher
from .users import UserStore


def is_local_redirect(target: Optional[str]) -> bool:
    """Check that a post-login redirect target stays on this site."""
    return (
        isinstance(target, str)
        and target.startswith("/")
        and not target.startswith("//")
        and "\\" not in target
    )


class AuthManager:
    """Manages authentication against the user store.

    Features:
    - Argon2id (or bcrypt) password hashing
    - Per-session rate limiting with lockout
    - Sliding-window idle timeout
    - Session id rotation on login and logout

    All state lives on the explicit ``Session`` passed in by the caller.
    """

    def __init__(
        self,
        users: UserStore,
        hasher: PasswordHasher | None = None,
        session_timeout: int = 1800,
        max_attempts: int = 5,
        lockout_window: int = 900,
        password_min_length: int = 8,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize auth manager.

        Args:
            users: User store.
            hasher: Password hasher, Argon2id by default.
            session_timeout: Idle timeout in seconds.
            max_attempts: Failed attempts allowed within the lockout window.
            lockout_window: Window (and lockout duration) in seconds.
            password_min_length: Minimum length for new passwords.
            clock: Source of the current epoch time.
        """
        self.users = users
        self.hasher = hasher or PasswordHasher()
        self.session_timeout = session_timeout
        self.max_attempts = max_attempts
        self.lockout_window = lockout_window
        self.password_min_length = password_min_length
        self.clock = clock
        self._dummy_hash: str | None = None

    def hash_password(self, password: str) -> str:
        """Hash a password with the configured scheme."""
        return self.hasher.hash(password)

    def verify_password(self, password: str, hash_str: str) -> bool:
        """Verify a password against a stored hash."""
        return self.hasher.verify(password, hash_str)

    @staticmethod
    def validate_username(username: str) -> bool:
        """Check a username against ``[A-Za-z0-9_]+``."""
        return isinstance(username, str) and bool(USERNAME_RE.fullmatch(username))

    def _require_valid_password(self, password: str) -> None:
        if not isinstance(password, str) or len(password) < self.password_min_length:
            raise ValidationError(
                f"Password must be at least {self.password_min_length} characters."
            )

    def _dummy(self) -> str:
        # Verified when the user is unknown so the response time does not
        # reveal which usernames exist.
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash(secrets.token_hex(16))
        return self._dummy_hash

    # Rate limiting

    def check_rate_limit(self, session: Session) -> bool:
        """Check whether the session may attempt a login.

        Prunes attempts older than the lockout window. Reaching the maximum
        number of attempts starts a lockout.

        Returns:
            True if allowed, False if locked out.
        """
        now = self.clock()
        if session.locked_until > now:
            return False

        cutoff = now - self.lockout_window
        session.login_attempts = [t for t in session.login_attempts if t > cutoff]

        if len(session.login_attempts) >= self.max_attempts:
            session.locked_until = now + self.lockout_window
            auth_logger.warning("Login locked out after %d failed attempts", len(session.login_attempts))
            return False
        return True

    def record_failed_attempt(self, session: Session) -> None:
        """Record a failed login attempt."""
        session.login_attempts.append(self.clock())

    def lockout_remaining(self, session: Session) -> int:
        """Seconds until the lockout ends, 0 if not locked out."""
        remaining = session.locked_until - self.clock()
        return max(0, int(remaining + 0.999))

    # Login / logout

    def login(self, session: Session, username: str, password: str) -> User:
        """Authenticate and bind the user to the session.

        Args:
            session: Current session.
            username: Submitted username.
            password: Submitted password.

        Returns:
            The authenticated user.

        Raises:
            RateLimitExceeded: The session is locked out.
            AuthFailure: Unknown user or wrong password.
        """
        if not self.check_rate_limit(session):
            raise RateLimitExceeded(self.lockout_remaining(session))

        if not self.validate_username(username):
            self.record_failed_attempt(session)
            raise AuthFailure()

        user = self.users.get(username)
        password = password or ""
        valid = self.verify_password(password, user.password_hash if user else self._dummy())
        if user is None or not valid:
            self.record_failed_attempt(session)
            auth_logger.info("Failed login for %s", username)
            raise AuthFailure()

        if self.hasher.needs_rehash(user.password_hash):
            self._rehash(user, password)

        now = self.clock()
        session.regenerate_id()
        session.login_attempts = []
        session.locked_until = 0.0
        session.authenticated = True
        session.username = user.username
        session.role = user.role
        session.login_time = now
        session.last_activity = now
        auth_logger.info("User %s logged in", user.username)
        return user

    def _rehash(self, user: User, password: str) -> None:
        users = self.users.load()
        stored = users.get(user.username)
        if stored is None:
            return
        stored.password_hash = self.hash_password(password)
        try:
            self.users.save(users)
        except PersistenceFailure:
            auth_logger.warning("Could not upgrade password hash for %s", user.username)
            return
        auth_logger.info("Upgraded password hash for %s", user.username)

    def logout(self, session: Session) -> None:
        """Clear all session state and rotate the session id."""
        session.clear()

    # Session checks

    def check(self, session: Session) -> bool:
        """Check that the session is authenticated and not idle.

        Timed-out sessions are destroyed. Otherwise the activity timestamp is
        refreshed.
        """
        if not session.authenticated:
            return False

        if self.is_idle(session):
            auth_logger.info("Session for %s timed out", session.username)
            session.clear()
            return False

        session.last_activity = self.clock()
        return True

    def is_idle(self, session: Session) -> bool:
        """Whether the session outlived the idle timeout. Read-only."""
        if session.last_activity is None:
            return True
        return self.clock() - session.last_activity > self.session_timeout

    def require_authenticated(self, session: Session, destination: Optional[str] = None) -> None:
        """Require an authenticated session.

        Args:
            session: Current session.
            destination: Path to return to after logging in.

        Raises:
            LoginRequired: If not authenticated.
        """
        if self.check(session):
            return
        if is_local_redirect(destination):
            session.pending_redirect = destination
        raise LoginRequired(destination)

    def pop_redirect(self, session: Session, default: str = "/admin/") -> str:
        """Take the pending post-login redirect off the session."""
        target = session.pending_redirect
        session.pending_redirect = None
        return target if is_local_redirect(target) else default

    def current_user(self, session: Session) -> Optional[str]:
        """Username bound to the session, if authenticated and not idle.

        Unlike ``check`` this leaves the session untouched.
        """
        if not session.authenticated or self.is_idle(session):
            return None
        return session.username

    def is_admin(self, session: Session) -> bool:
        """Check whether the session belongs to an admin."""
        return session.authenticated and session.role == Role.ADMIN

    # User management

    def list_users(self) -> list[User]:
        """All users in store order."""
        return list(self.users.load().values())

    def change_password(self, username: str, old_password: str, new_password: str) -> None:
        """Change a user's password after verifying the current one.

        Raises:
            ValidationError: Invalid username or too-short new password.
            AuthFailure: Current password is incorrect.
            PersistenceFailure: The user store could not be written.
        """
        if not self.validate_username(username):
            raise ValidationError("Invalid username.")
        self._require_valid_password(new_password)

        users = self.users.load()
        user = users.get(username)
        if user is None or not self.verify_password(old_password or "", user.password_hash):
            raise AuthFailure("Current password is incorrect.")

        user.password_hash = self.hash_password(new_password)
        self.users.save(users)
        auth_logger.info("Password changed for %s", username)

    def create_user(self, username: str, password: str, role: str | Role = Role.EDITOR) -> User:
        """Create a new user.

        Raises:
            ValidationError: Invalid username, role or password, or the user
                already exists.
            PersistenceFailure: The user store could not be written.
        """
        if not self.validate_username(username):
            raise ValidationError("Username must be alphanumeric with underscores only.")
        try:
            role = Role(role)
        except ValueError:
            raise ValidationError("Role must be 'admin' or 'editor'.")
        self._require_valid_password(password)

        users = self.users.load()
        if username in users:
            raise ValidationError(f"User '{username}' already exists.")

        user = User(username=username, password_hash=self.hash_password(password), role=role)
        users[username] = user
        self.users.save(users)
        auth_logger.info("Created user %s (%s)", username, role.value)
        return user

    def reset_password(self, username: str, new_password: str) -> None:
        """Set a new password without knowing the old one.

        Raises:
            ValidationError: Invalid username or password.
            NotFound: No such user.
            PersistenceFailure: The user store could not be written.
        """
        if not self.validate_username(username):
            raise ValidationError("Invalid username.")
        self._require_valid_password(new_password)

        users = self.users.load()
        user = users.get(username)
        if user is None:
            raise NotFound(f"User '{username}' not found.")

        user.password_hash = self.hash_password(new_password)
        self.users.save(users)
        auth_logger.info("Password reset for %s", username)
