"""Password hashing.

Argon2id is the default scheme; bcrypt can be selected where Argon2 is not
wanted. Verification looks at the stored hash, so accounts created under
either scheme keep working after the configured scheme changes.
"""

import bcrypt as _bcrypt
from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from .logging import auth_logger

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")
ARGON2ID_PREFIX = "$argon2id$"


class PasswordHasher:
    """Hash and verify passwords with a vetted memory-hard algorithm."""

    SCHEMES = ("argon2id", "bcrypt")

    def __init__(self, scheme: str = "argon2id", bcrypt_rounds: int = 12):
        """Initialize the hasher.

        Args:
            scheme: "argon2id" (default) or "bcrypt".
            bcrypt_rounds: Cost factor used when hashing with bcrypt.
        """
        if scheme not in self.SCHEMES:
            raise ValueError(f"Unknown password scheme: {scheme}")
        self.scheme = scheme
        self.bcrypt_rounds = bcrypt_rounds
        self._argon2 = _Argon2Hasher(type=Type.ID)

    def hash(self, password: str) -> str:
        """Hash a password with the configured scheme.

        Args:
            password: Plain text password.

        Returns:
            Encoded hash string (salt included).
        """
        if self.scheme == "bcrypt":
            salt = _bcrypt.gensalt(rounds=self.bcrypt_rounds)
            return _bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")
        return self._argon2.hash(password)

    def verify(self, password: str, hash_str: str) -> bool:
        """Verify a password against a stored hash.

        Both libraries compare in constant time.

        Args:
            password: Plain text password.
            hash_str: Stored hash (Argon2 or bcrypt).

        Returns:
            True if the password matches.
        """
        if not hash_str:
            return False

        if hash_str.startswith(BCRYPT_PREFIXES):
            try:
                return _bcrypt.checkpw(password.encode("utf-8"), hash_str.encode("utf-8"))
            except ValueError:
                auth_logger.warning("Malformed bcrypt hash in user store")
                return False

        try:
            return self._argon2.verify(hash_str, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            auth_logger.warning("Unrecognized password hash in user store")
            return False

    def needs_rehash(self, hash_str: str) -> bool:
        """Check whether a stored hash should be upgraded.

        Args:
            hash_str: Stored hash.

        Returns:
            True if the hash uses another scheme or outdated parameters.
        """
        if self.scheme == "bcrypt":
            return not hash_str.startswith(BCRYPT_PREFIXES)
        if not hash_str.startswith(ARGON2ID_PREFIX):
            return True
        try:
            return self._argon2.check_needs_rehash(hash_str)
        except (InvalidHashError, ValueError):
            return True
