"""JSON flat-file storage with atomic writes and locking."""

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from .errors import PersistenceFailure
from .logging import storage_logger


class StorageError(PersistenceFailure):
    """A JSON file exists but cannot be read or parsed."""

    pass


class JsonFile:
    """One JSON document on disk, always rewritten as a whole.

    Writers hold an exclusive lock on a sidecar ``<name>.lock`` file and
    replace the document via a temp file + rename, so readers (which never
    lock) only ever observe a complete old or complete new version.
    """

    def __init__(self, path: Path):
        """Initialize with the document path.

        Args:
            path: Path to the JSON file.
        """
        self.path = path
        self._lock_path = path.with_name(path.name + ".lock")

    @property
    def exists(self) -> bool:
        """Check if the file exists."""
        return self.path.exists()

    def read(self, default: Any = None) -> Any:
        """Load the document.

        Args:
            default: Returned when the file does not exist.

        Returns:
            Parsed JSON value.

        Raises:
            StorageError: If the file cannot be read or parsed.
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return default
        except json.JSONDecodeError as e:
            storage_logger.error("Invalid JSON in %s: %s", self.path, e)
            raise StorageError("Stored data is corrupted")
        except OSError as e:
            storage_logger.error("Cannot read %s: %s", self.path, e)
            raise StorageError("Stored data could not be read")

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the exclusive write lock for this document."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            lock_file = open(self._lock_path, "a")
        except OSError as e:
            storage_logger.error("Cannot open lock file %s: %s", self._lock_path, e)
            raise PersistenceFailure("Could not save data")
        with lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def write(self, data: Any) -> None:
        """Replace the document atomically under the exclusive lock.

        Args:
            data: JSON-serializable value.

        Raises:
            PersistenceFailure: If the write fails.
        """
        with self.locked():
            self._write_unlocked(data)

    def update(self, mutate: Callable[[Any], Any], default: Any = None) -> Any:
        """Read-modify-write under a single lock hold.

        Args:
            mutate: Receives the current value and returns the new one.
            default: Current value used when the file does not exist.

        Returns:
            The value that was written.
        """
        with self.locked():
            try:
                current = self.read(default)
            except StorageError:
                current = default
            new_value = mutate(current)
            self._write_unlocked(new_value)
            return new_value

    def _write_unlocked(self, data: Any) -> None:
        temp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
            )
            with open(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=4, ensure_ascii=False)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            if temp_path is not None:
                Path(temp_path).unlink(missing_ok=True)
            storage_logger.error("Cannot write %s: %s", self.path, e)
            raise PersistenceFailure("Could not save data")
