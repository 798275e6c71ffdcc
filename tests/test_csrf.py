"""Tests for CSRF protection."""

import pytest

from relaycms.core.csrf import CSRFError, CSRFFailure, CSRFProtection
from relaycms.core.models import Session


@pytest.fixture
def csrf(clock):
    return CSRFProtection(ttl=7200, clock=clock)


class TestCSRFTokens:
    """Tests for token issuing."""

    def test_generate_token_is_hex(self, csrf):
        """Test tokens are 64 hex characters."""
        token = csrf.generate_token()
        assert len(token) == 64
        int(token, 16)

    def test_tokens_are_unique(self, csrf):
        """Test every generated token differs."""
        assert len({csrf.generate_token() for _ in range(50)}) == 50

    def test_get_token_reuses_until_expiry(self, csrf, clock):
        """Test the same token is returned while it is fresh."""
        session = Session()
        first = csrf.get_token(session)
        clock.advance(100)
        assert csrf.get_token(session) == first

    def test_get_token_reissues_after_expiry(self, csrf, clock):
        """Test an expired token is replaced."""
        session = Session()
        first = csrf.get_token(session)
        clock.advance(7201)
        assert csrf.get_token(session) != first

    def test_token_field_markup(self, csrf):
        """Test the hidden input embeds the session token."""
        session = Session()
        field = str(csrf.token_field(session))
        assert 'name="csrf_token"' in field
        assert session.csrf_token in field

    def test_token_meta_markup(self, csrf):
        """Test the meta tag embeds the session token."""
        session = Session()
        assert session.csrf_token is None
        meta = str(csrf.token_meta(session))
        assert meta == f'<meta name="csrf-token" content="{session.csrf_token}">'


class TestCSRFValidation:
    """Tests for token validation."""

    def test_valid_token(self, csrf):
        """Test the issued token validates."""
        session = Session()
        token = csrf.issue(session)
        assert csrf.check(session, token) is None
        assert csrf.validate(session, token)

    def test_token_is_reusable(self, csrf):
        """Test a token is not consumed by validation."""
        session = Session()
        token = csrf.issue(session)
        assert csrf.validate(session, token)
        assert csrf.validate(session, token)

    def test_missing_candidate(self, csrf):
        """Test an absent submitted token is reported as missing."""
        session = Session()
        csrf.issue(session)
        assert csrf.check(session, None) is CSRFFailure.MISSING
        assert csrf.check(session, "") is CSRFFailure.MISSING

    def test_missing_session_token(self, csrf):
        """Test a session without a token rejects any submission."""
        assert csrf.check(Session(), "a" * 64) is CSRFFailure.MISSING

    def test_mismatch(self, csrf):
        """Test a wrong token is reported as mismatch."""
        session = Session()
        csrf.issue(session)
        assert csrf.check(session, "0" * 64) is CSRFFailure.MISMATCH

    def test_expired(self, csrf, clock):
        """Test an old token is reported as expired."""
        session = Session()
        token = csrf.issue(session)
        clock.advance(7201)
        assert csrf.check(session, token) is CSRFFailure.EXPIRED

    def test_at_ttl_boundary_still_valid(self, csrf, clock):
        """Test a token exactly ttl seconds old is accepted."""
        session = Session()
        token = csrf.issue(session)
        clock.advance(7200)
        assert csrf.validate(session, token)

    def test_require_valid_raises_with_reason(self, csrf):
        """Test require_valid raises a CSRFError carrying the reason."""
        session = Session()
        csrf.issue(session)
        with pytest.raises(CSRFError) as excinfo:
            csrf.require_valid(session, "bad")
        assert excinfo.value.reason is CSRFFailure.MISMATCH
        assert "Invalid security token" in str(excinfo.value)

    def test_failure_values_are_error_types(self):
        """Test failure reasons serialize to client error types."""
        assert CSRFFailure.MISSING.value == "csrf_missing"
        assert CSRFFailure.EXPIRED.value == "csrf_expired"
        assert CSRFFailure.MISMATCH.value == "csrf_mismatch"

    def test_reset(self, csrf):
        """Test reset drops the token."""
        session = Session()
        token = csrf.issue(session)
        csrf.reset(session)
        assert csrf.check(session, token) is CSRFFailure.MISSING

    def test_sessions_do_not_share_tokens(self, csrf):
        """Test a token from one session is rejected by another."""
        first, second = Session(), Session()
        token = csrf.issue(first)
        csrf.issue(second)
        assert csrf.check(second, token) is CSRFFailure.MISMATCH
