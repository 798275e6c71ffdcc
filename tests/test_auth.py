"""Tests for password hashing and authentication."""

import json

import pytest

from relaycms.core.auth import AuthManager, is_local_redirect
from relaycms.core.errors import (
    AuthFailure,
    LoginRequired,
    NotFound,
    RateLimitExceeded,
    ValidationError,
)
from relaycms.core.models import Role, Session
from relaycms.core.passwords import PasswordHasher
from relaycms.core.users import UserStore


class CountingUserStore(UserStore):
    """User store that counts lookups made during login."""

    def __init__(self, users_file):
        super().__init__(users_file)
        self.lookups = 0

    def get(self, username):
        self.lookups += 1
        return super().get(username)


@pytest.fixture
def users(tmp_path):
    return CountingUserStore(tmp_path / "users.json")


@pytest.fixture
def auth(users, fast_hasher, clock):
    manager = AuthManager(users, hasher=fast_hasher, clock=clock)
    manager.create_user("alice", "wonderland", "admin")
    manager.create_user("bob", "builder123", "editor")
    users.lookups = 0
    return manager


class TestPasswordHasher:
    """Tests for password hashing schemes."""

    def test_argon2id_default(self):
        """Test the default scheme produces Argon2id hashes."""
        hasher = PasswordHasher()
        hashed = hasher.hash("secret-password")
        assert hashed.startswith("$argon2id$")
        assert hasher.verify("secret-password", hashed)
        assert not hasher.verify("wrong-password", hashed)

    def test_bcrypt_scheme(self, fast_hasher):
        """Test bcrypt hashes verify."""
        hashed = fast_hasher.hash("secret-password")
        assert hashed.startswith("$2b$")
        assert fast_hasher.verify("secret-password", hashed)
        assert not fast_hasher.verify("wrong-password", hashed)

    def test_salted(self, fast_hasher):
        """Test the same password hashes differently each time."""
        assert fast_hasher.hash("same") != fast_hasher.hash("same")

    def test_cross_scheme_verify(self, fast_hasher):
        """Test an Argon2 hasher still verifies stored bcrypt hashes."""
        legacy = fast_hasher.hash("secret-password")
        assert PasswordHasher().verify("secret-password", legacy)

    @pytest.mark.parametrize("stored", ["", "plaintext", "$2b$garbage", "$argon2id$bad"])
    def test_malformed_hash(self, stored):
        """Test malformed stored hashes never verify."""
        assert not PasswordHasher().verify("anything", stored)

    def test_needs_rehash(self, fast_hasher):
        """Test hashes from another scheme need rehashing."""
        argon2 = PasswordHasher()
        assert argon2.needs_rehash(fast_hasher.hash("pw"))
        assert not argon2.needs_rehash(argon2.hash("pw"))
        assert not fast_hasher.needs_rehash(fast_hasher.hash("pw"))

    def test_unknown_scheme(self):
        """Test an unknown scheme is rejected."""
        with pytest.raises(ValueError):
            PasswordHasher(scheme="md5")


class TestLogin:
    """Tests for the login flow."""

    def test_login_success(self, auth, clock):
        """Test a correct login binds the user to the session."""
        session = Session()
        user = auth.login(session, "alice", "wonderland")

        assert user.username == "alice"
        assert session.authenticated
        assert session.username == "alice"
        assert session.role is Role.ADMIN
        assert session.login_time == clock.now
        assert session.last_activity == clock.now

    def test_login_rotates_session_id(self, auth):
        """Test logging in issues a new session id."""
        session = Session()
        old_id = session.session_id
        auth.login(session, "alice", "wonderland")

        assert session.session_id != old_id
        assert old_id in session.retired_ids

    def test_wrong_password(self, auth):
        """Test a wrong password fails with the generic message."""
        session = Session()
        with pytest.raises(AuthFailure) as excinfo:
            auth.login(session, "alice", "nope")
        assert str(excinfo.value) == "Invalid username or password."
        assert not session.authenticated
        assert len(session.login_attempts) == 1

    def test_unknown_user_same_message(self, auth):
        """Test unknown users get the same message as wrong passwords."""
        with pytest.raises(AuthFailure) as excinfo:
            auth.login(Session(), "mallory", "wonderland")
        assert str(excinfo.value) == "Invalid username or password."

    def test_invalid_username_counts_as_attempt(self, auth, users):
        """Test malformed usernames fail without a store lookup."""
        session = Session()
        with pytest.raises(AuthFailure):
            auth.login(session, "../alice", "wonderland")
        assert users.lookups == 0
        assert len(session.login_attempts) == 1

    def test_success_clears_attempts(self, auth):
        """Test a successful login resets the failure counter."""
        session = Session()
        for _ in range(3):
            with pytest.raises(AuthFailure):
                auth.login(session, "alice", "nope")
        auth.login(session, "alice", "wonderland")
        assert session.login_attempts == []
        assert session.locked_until == 0.0

    def test_login_rehashes_legacy_hash(self, tmp_path, fast_hasher, clock):
        """Test logging in upgrades a hash from another scheme."""
        store = UserStore(tmp_path / "users.json")
        AuthManager(store, hasher=fast_hasher).create_user("carol", "legacy-pass", "editor")

        auth = AuthManager(store, hasher=PasswordHasher(), clock=clock)
        auth.login(Session(), "carol", "legacy-pass")

        upgraded = store.get("carol").password_hash
        assert upgraded.startswith("$argon2id$")
        auth.login(Session(), "carol", "legacy-pass")


class TestRateLimiting:
    """Tests for per-session lockout."""

    def test_lockout_after_max_attempts(self, auth, users):
        """Test the attempt after the limit is refused without checking credentials."""
        session = Session()
        for _ in range(5):
            with pytest.raises(AuthFailure):
                auth.login(session, "alice", "nope")
        lookups = users.lookups

        with pytest.raises(RateLimitExceeded) as excinfo:
            auth.login(session, "alice", "wonderland")

        assert users.lookups == lookups
        assert not session.authenticated
        assert excinfo.value.retry_after == 900
        assert "15 minutes" in str(excinfo.value)

    def test_locked_out_even_with_correct_password(self, auth):
        """Test a correct password does not bypass an active lockout."""
        session = Session()
        for _ in range(5):
            with pytest.raises(AuthFailure):
                auth.login(session, "alice", "nope")
        for _ in range(3):
            with pytest.raises(RateLimitExceeded):
                auth.login(session, "alice", "wonderland")

    def test_lockout_expires(self, auth, clock):
        """Test logins work again after the lockout window."""
        session = Session()
        for _ in range(5):
            with pytest.raises(AuthFailure):
                auth.login(session, "alice", "nope")
        with pytest.raises(RateLimitExceeded):
            auth.login(session, "alice", "wonderland")

        clock.advance(901)
        auth.login(session, "alice", "wonderland")
        assert session.authenticated

    def test_old_attempts_are_pruned(self, auth, clock):
        """Test failures outside the window do not count."""
        session = Session()
        for _ in range(4):
            with pytest.raises(AuthFailure):
                auth.login(session, "alice", "nope")
        clock.advance(901)
        for _ in range(4):
            with pytest.raises(AuthFailure):
                auth.login(session, "alice", "nope")
        auth.login(session, "alice", "wonderland")

    def test_lockout_is_per_session(self, auth):
        """Test one session's lockout does not affect another."""
        locked = Session()
        for _ in range(5):
            with pytest.raises(AuthFailure):
                auth.login(locked, "alice", "nope")
        with pytest.raises(RateLimitExceeded):
            auth.login(locked, "alice", "wonderland")

        fresh = Session()
        auth.login(fresh, "alice", "wonderland")
        assert fresh.authenticated

    def test_lockout_remaining_rounds_up(self, auth, clock):
        """Test the remaining time is reported in whole seconds."""
        session = Session(locked_until=clock.now + 10.2)
        assert auth.lockout_remaining(session) == 11
        clock.advance(20)
        assert auth.lockout_remaining(session) == 0


class TestSessionChecks:
    """Tests for idle timeout and login-required handling."""

    def test_anonymous_session(self, auth):
        """Test an anonymous session is not authenticated."""
        assert not auth.check(Session())

    def test_activity_refreshes(self, auth, clock):
        """Test each check slides the idle window."""
        session = Session()
        auth.login(session, "alice", "wonderland")
        for _ in range(3):
            clock.advance(1700)
            assert auth.check(session)
        assert session.last_activity == clock.now

    def test_idle_timeout_clears_session(self, auth, clock):
        """Test an idle session is destroyed."""
        session = Session()
        auth.login(session, "alice", "wonderland")
        old_id = session.session_id
        clock.advance(1801)

        assert not auth.check(session)
        assert not session.authenticated
        assert session.username is None
        assert session.session_id != old_id

    def test_current_user_ignores_idle_session(self, auth, clock):
        """Test an idle session has no current user and is left untouched."""
        session = Session()
        auth.login(session, "alice", "wonderland")
        assert auth.current_user(session) == "alice"
        clock.advance(1801)

        assert auth.is_idle(session)
        assert auth.current_user(session) is None
        assert session.authenticated
        assert session.username == "alice"

    def test_require_authenticated_stores_destination(self, auth):
        """Test the requested path is remembered for after login."""
        session = Session()
        with pytest.raises(LoginRequired):
            auth.require_authenticated(session, "/admin/menus/header-menu")
        assert session.pending_redirect == "/admin/menus/header-menu"

    @pytest.mark.parametrize("target", ["//evil.example", "https://evil.example", "\\\\evil", "admin"])
    def test_require_authenticated_ignores_foreign_destination(self, auth, target):
        """Test only local paths are remembered."""
        session = Session()
        with pytest.raises(LoginRequired):
            auth.require_authenticated(session, target)
        assert session.pending_redirect is None

    def test_pop_redirect(self, auth):
        """Test the pending redirect is returned once."""
        session = Session(pending_redirect="/admin/menus/left-menu")
        assert auth.pop_redirect(session) == "/admin/menus/left-menu"
        assert auth.pop_redirect(session) == "/admin/"

    def test_logout(self, auth):
        """Test logout clears state and rotates the id."""
        session = Session()
        auth.login(session, "alice", "wonderland")
        old_id = session.session_id
        auth.logout(session)

        assert not session.authenticated
        assert auth.current_user(session) is None
        assert session.session_id != old_id

    def test_is_admin(self, auth):
        """Test role checks."""
        admin, editor = Session(), Session()
        auth.login(admin, "alice", "wonderland")
        auth.login(editor, "bob", "builder123")
        assert auth.is_admin(admin)
        assert not auth.is_admin(editor)
        assert not auth.is_admin(Session())

    @pytest.mark.parametrize(
        "target,expected",
        [("/admin/", True), ("//evil", False), ("http://x", False), ("/a\\b", False), (None, False)],
    )
    def test_is_local_redirect(self, target, expected):
        """Test redirect target classification."""
        assert is_local_redirect(target) is expected


class TestUserManagement:
    """Tests for creating users and changing passwords."""

    def test_users_file_format(self, auth, users):
        """Test the store maps usernames to hash and role."""
        data = json.loads(users.path.read_text())
        assert set(data) == {"alice", "bob"}
        assert data["alice"]["role"] == "admin"
        assert data["bob"]["role"] == "editor"
        assert "builder123" not in users.path.read_text()

    def test_list_users(self, auth):
        """Test users are listed in store order."""
        assert [u.username for u in auth.list_users()] == ["alice", "bob"]

    def test_duplicate_user(self, auth):
        """Test existing usernames are rejected."""
        with pytest.raises(ValidationError, match="already exists"):
            auth.create_user("alice", "another-pass", "editor")

    @pytest.mark.parametrize("username", ["", "bad name", "../x", "é"])
    def test_invalid_username(self, auth, username):
        """Test usernames outside [A-Za-z0-9_] are rejected."""
        with pytest.raises(ValidationError):
            auth.create_user(username, "long-enough", "editor")

    def test_invalid_role(self, auth):
        """Test roles other than admin and editor are rejected."""
        with pytest.raises(ValidationError, match="Role"):
            auth.create_user("carol", "long-enough", "owner")

    def test_short_password(self, auth):
        """Test passwords under the minimum length are rejected."""
        with pytest.raises(ValidationError, match="at least 8"):
            auth.create_user("carol", "short", "editor")

    def test_change_password(self, auth):
        """Test a password change takes effect."""
        auth.change_password("alice", "wonderland", "looking-glass")
        with pytest.raises(AuthFailure):
            auth.login(Session(), "alice", "wonderland")
        auth.login(Session(), "alice", "looking-glass")

    def test_change_password_wrong_current(self, auth):
        """Test the current password must match."""
        with pytest.raises(AuthFailure, match="Current password is incorrect"):
            auth.change_password("alice", "nope", "looking-glass")

    def test_change_password_too_short(self, auth):
        """Test the new password must meet the minimum length."""
        with pytest.raises(ValidationError):
            auth.change_password("alice", "wonderland", "short")

    def test_reset_password(self, auth):
        """Test resetting without the old password."""
        auth.reset_password("bob", "new-password")
        auth.login(Session(), "bob", "new-password")

    def test_reset_password_unknown_user(self, auth):
        """Test resetting an unknown user fails."""
        with pytest.raises(NotFound):
            auth.reset_password("nobody", "new-password")

    def test_malformed_record_skipped(self, users, fast_hasher):
        """Test a malformed record does not break the whole store."""
        users.path.write_text(
            json.dumps(
                {
                    "good": {"password_hash": fast_hasher.hash("password1"), "role": "editor"},
                    "bad": "not-a-record",
                    "worse": {"role": "editor"},
                }
            )
        )
        assert list(users.load()) == ["good"]
