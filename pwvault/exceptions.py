"""
Error types raised by the vault.

Each error carries a process exit code so the CLI can map a failure
to a distinct nonzero status without inspecting messages.
"""
from typing import Optional


class VaultError(Exception):
    """Base class for all vault failures."""

    exit_code: int = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class UsageError(VaultError):
    """Malformed invocation or invalid configuration."""

    exit_code = 2


class NotFoundError(VaultError):
    """No credential (or site) matches the lookup."""

    exit_code = 3


class ConflictError(VaultError):
    """A credential already exists for the site/user pair."""

    exit_code = 4


class AuthError(VaultError):
    """Master password mismatch, or ciphertext fails under this key."""

    exit_code = 5


class CorruptDataError(VaultError):
    """Persisted data cannot be decoded or fails authentication."""

    exit_code = 6


class ParseError(VaultError):
    """Malformed line in a raw import file."""

    exit_code = 7

    def __init__(self, message: str, lineno: Optional[int] = None) -> None:
        if lineno is not None:
            message = f"line {lineno}: {message}"
        super().__init__(message)
        self.lineno = lineno


class VaultIOError(VaultError):
    """Filesystem failure while reading or writing vault files."""

    exit_code = 8
