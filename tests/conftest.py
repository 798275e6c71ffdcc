"""Shared fixtures for Relay CMS tests."""

import re
import shutil

import pytest
from fastapi.testclient import TestClient

from relaycms.cli import BUNDLED_THEMES_DIR
from relaycms.core.auth import AuthManager
from relaycms.core.config import AppConfig
from relaycms.core.passwords import PasswordHasher
from relaycms.core.users import UserStore
from relaycms.main import create_app

ADMIN_PASSWORD = "correct-horse"
EDITOR_PASSWORD = "battery-staple"

CSRF_FIELD_RE = re.compile(r'name="csrf_token" value="([0-9a-f]{64})"')
CSRF_META_RE = re.compile(r'<meta name="csrf-token" content="([0-9a-f]{64})">')


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def extract_csrf(html: str) -> str:
    match = CSRF_FIELD_RE.search(html) or CSRF_META_RE.search(html)
    assert match, "no CSRF token in page"
    return match.group(1)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_hasher():
    return PasswordHasher(scheme="bcrypt", bcrypt_rounds=4)


@pytest.fixture
def site(tmp_path):
    """An initialized site with both bundled themes and two users."""
    config = AppConfig(
        base_dir=tmp_path,
        session_backend="memory",
        password_scheme="bcrypt",
        bcrypt_rounds=4,
        log_level="WARNING",
    )
    config.ensure_directories()
    for theme in ("default", "uswds"):
        shutil.copytree(BUNDLED_THEMES_DIR / theme, config.themes_dir / theme)

    (config.content_dir / "index.md").write_text(
        "---\ntitle: Home\n---\n# Welcome home\n", encoding="utf-8"
    )
    (config.content_dir / "docs").mkdir()
    (config.content_dir / "docs" / "intro.md").write_text(
        "---\ntitle: Intro\ntemplate: simple\n---\nIntro body\n", encoding="utf-8"
    )

    auth = AuthManager(
        UserStore(config.users_file),
        hasher=PasswordHasher(scheme="bcrypt", bcrypt_rounds=4),
    )
    auth.create_user("admin", ADMIN_PASSWORD, "admin")
    auth.create_user("editor", EDITOR_PASSWORD, "editor")
    return config


@pytest.fixture
def app(site):
    return create_app(site)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def login(client):
    """Log in through the form; returns the response of the POST."""

    def do_login(username: str = "admin", password: str = ADMIN_PASSWORD):
        page = client.get("/admin/login")
        token = extract_csrf(page.text)
        return client.post(
            "/admin/login",
            data={"csrf_token": token, "username": username, "password": password},
            follow_redirects=False,
        )

    return do_login
