"""Site settings stored in ``config/settings.json``."""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from .errors import ValidationError
from .logging import storage_logger
from .paths import is_identifier
from .storage import JsonFile, StorageError

DEFAULT_SETTINGS: dict[str, str] = {
    "active_theme": "default",
    "site_name": "Relay CMS",
    "timezone": "America/New_York",
}

REQUIRED_FIELDS = tuple(DEFAULT_SETTINGS)


class SiteSettings(BaseModel):
    """Site-wide settings editable from the admin UI.

    Unknown keys are kept and written back unchanged.
    """

    model_config = ConfigDict(extra="allow")

    active_theme: str = DEFAULT_SETTINGS["active_theme"]
    site_name: str = DEFAULT_SETTINGS["site_name"]
    timezone: str = DEFAULT_SETTINGS["timezone"]

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


def validate_settings(data: dict[str, Any]) -> None:
    """Check required fields and the theme name.

    Raises:
        ValidationError: A required field is missing or not a string, or
            ``active_theme`` is not a valid name.
    """
    for key in REQUIRED_FIELDS:
        if not isinstance(data.get(key), str):
            raise ValidationError(f"Setting '{key}' must be a string.")
    if not is_identifier(data["active_theme"]):
        raise ValidationError("Invalid theme name.")


class SettingsStore:
    """Settings file merged over ``DEFAULT_SETTINGS``."""

    def __init__(self, settings_file: Path):
        """Initialize settings store.

        Args:
            settings_file: Path to ``settings.json``.
        """
        self._file = JsonFile(settings_file)

    @property
    def path(self) -> Path:
        return self._file.path

    def load(self) -> SiteSettings:
        """Load settings.

        Missing or malformed files load as the defaults; required keys with
        non-string values fall back to their default.
        """
        try:
            data = self._file.read(default={})
        except StorageError:
            data = {}
        if not isinstance(data, dict):
            storage_logger.warning("Settings file %s is not a JSON object", self.path)
            data = {}

        merged: dict[str, Any] = {**DEFAULT_SETTINGS, **data}
        for key, default in DEFAULT_SETTINGS.items():
            if not isinstance(merged[key], str):
                merged[key] = default
        return SiteSettings(**merged)

    def save(self, settings: SiteSettings | dict[str, Any]) -> None:
        """Write all settings.

        Raises:
            ValidationError: See ``validate_settings``. Nothing is written.
            PersistenceFailure: The file could not be written.
        """
        data = settings.to_dict() if isinstance(settings, SiteSettings) else dict(settings)
        validate_settings(data)
        self._file.write(data)

    def get(self, key: str, default: Any = None) -> Any:
        return self.load().to_dict().get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Change a single setting.

        Load, change and save are separate steps; concurrent writers may
        overwrite each other's change.
        """
        data = self.load().to_dict()
        data[key] = value
        self.save(data)
