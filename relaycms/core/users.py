"""User store backed by a single JSON file."""

from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from .logging import storage_logger
from .models import User
from .storage import JsonFile


class UserStore:
    """Mapping ``username -> {password_hash, role}`` in ``users.json``.

    The whole file is rewritten on every change; there are no partial
    updates.
    """

    def __init__(self, users_file: Path):
        """Initialize user store.

        Args:
            users_file: Path to ``users.json``.
        """
        self._file = JsonFile(users_file)

    @property
    def path(self) -> Path:
        """Location of the user store."""
        return self._file.path

    @property
    def exists(self) -> bool:
        """Check if the user store has been created."""
        return self._file.exists

    def load(self) -> dict[str, User]:
        """Load all users.

        Malformed records are skipped (and logged) rather than failing the
        whole store.

        Returns:
            Users keyed by username, in file order.
        """
        raw = self._file.read(default={})
        if not isinstance(raw, dict):
            storage_logger.error("User store %s is not a JSON object", self.path)
            return {}

        users: dict[str, User] = {}
        for username, record in raw.items():
            if not isinstance(record, dict):
                storage_logger.warning("Skipping malformed user record: %s", username)
                continue
            try:
                users[username] = User(username=username, **record)
            except (PydanticValidationError, TypeError):
                storage_logger.warning("Skipping malformed user record: %s", username)
        return users

    def save(self, users: dict[str, User]) -> None:
        """Rewrite the entire user store.

        Args:
            users: Users keyed by username.

        Raises:
            PersistenceFailure: If the file cannot be written.
        """
        self._file.write({name: user.to_record() for name, user in users.items()})

    def get(self, username: str) -> User | None:
        """Look up a single user."""
        return self.load().get(username)
