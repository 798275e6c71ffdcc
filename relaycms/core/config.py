"""Application configuration management."""

import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field


class AppConfig(BaseModel):
    """Installation-wide configuration.

    Everything has a default; environment variables are optional overrides.
    Site settings editable from the admin UI (theme, site name) live in
    ``config/settings.json`` and are handled by ``SettingsStore``.
    """

    # Paths
    base_dir: Path = Field(default_factory=lambda: Path.cwd())
    content_dir: Path = Field(default=None)
    config_dir: Path = Field(default=None)
    themes_dir: Path = Field(default=None)
    data_dir: Path = Field(default=None)

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    # Security
    session_timeout_seconds: int = 1800
    max_login_attempts: int = 5
    lockout_seconds: int = 900
    csrf_token_ttl_seconds: int = 7200
    password_min_length: int = 8
    password_scheme: Literal["argon2id", "bcrypt"] = "argon2id"
    bcrypt_rounds: int = 12
    session_backend: Literal["file", "memory"] = "file"
    session_cleanup_seconds: int = 3600
    cookie_secure: bool | None = None  # None: follow the request scheme

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def __init__(self, **data):
        super().__init__(**data)
        # Set derived paths if not provided
        if self.content_dir is None:
            self.content_dir = self.base_dir / "content"
        if self.config_dir is None:
            self.config_dir = self.base_dir / "config"
        if self.themes_dir is None:
            self.themes_dir = self.base_dir / "themes"
        if self.data_dir is None:
            self.data_dir = self.base_dir / "data"

    @property
    def users_file(self) -> Path:
        """Path to the user store."""
        return self.config_dir / "users.json"

    @property
    def settings_file(self) -> Path:
        """Path to the site settings file."""
        return self.config_dir / "settings.json"

    @property
    def menu_dir(self) -> Path:
        """Directory holding one ``<menu-name>.json`` per menu."""
        return self.config_dir

    @property
    def sessions_file(self) -> Path:
        """Path to sessions storage file."""
        return self.data_dir / "sessions.json"

    @property
    def audit_log_path(self) -> Path:
        """Path to audit log file."""
        return self.data_dir / "audit.log"

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.content_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.themes_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls, base_dir: Path | None = None) -> "AppConfig":
        """Create configuration from environment variables.

        Args:
            base_dir: Installation root. Defaults to ``RELAY_BASE_DIR`` or cwd.

        Returns:
            AppConfig instance.

        Raises:
            ValueError: If environment variable values are invalid.
        """
        if base_dir is None:
            base_dir = Path(os.getenv("RELAY_BASE_DIR", Path.cwd()))

        def get_int_env(name: str, default: int, min_val: int, max_val: int) -> int:
            """Parse and validate integer environment variable."""
            value_str = os.getenv(name, str(default))
            try:
                value = int(value_str)
            except ValueError:
                raise ValueError(f"{name} must be an integer, got: {value_str}")
            if value < min_val or value > max_val:
                raise ValueError(f"{name} must be between {min_val} and {max_val}, got: {value}")
            return value

        return cls(
            base_dir=base_dir,
            host=os.getenv("RELAY_HOST", "127.0.0.1"),
            port=get_int_env("RELAY_PORT", 8080, 1, 65535),
            debug=os.getenv("RELAY_DEBUG", "false").lower() == "true",
            session_timeout_seconds=get_int_env("RELAY_SESSION_TIMEOUT", 1800, 60, 86400),
            max_login_attempts=get_int_env("RELAY_MAX_LOGIN_ATTEMPTS", 5, 1, 100),
            lockout_seconds=get_int_env("RELAY_LOCKOUT_SECONDS", 900, 60, 86400),
            password_scheme=os.getenv("RELAY_PASSWORD_SCHEME", "argon2id"),
            session_backend=os.getenv("RELAY_SESSION_BACKEND", "file"),
            session_cleanup_seconds=get_int_env("RELAY_SESSION_CLEANUP_SECONDS", 3600, 60, 86400),
            log_level=os.getenv("RELAY_LOG_LEVEL", "INFO"),
            log_file=Path(os.environ["RELAY_LOG_FILE"]) if os.getenv("RELAY_LOG_FILE") else None,
        )
