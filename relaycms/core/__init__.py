"""Core modules for Relay CMS."""

from .audit_log import AuditLogger
from .auth import AuthManager
from .config import AppConfig
from .content import ContentStore
from .csrf import CSRFProtection
from .menus import MenuStore
from .settings import SettingsStore
from .themes import ThemeManager
from .users import UserStore

__all__ = [
    "AuditLogger",
    "AuthManager",
    "AppConfig",
    "ContentStore",
    "CSRFProtection",
    "MenuStore",
    "SettingsStore",
    "ThemeManager",
    "UserStore",
]
