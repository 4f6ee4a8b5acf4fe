"""pwvault — Encrypted per-site, per-user credential storage.

Security Note (Threat Model):
    Passwords are decrypted in process memory only for ``get`` and for
    re-encryption during rotation. A memory dump taken at that moment
    could expose them; scrubbing of revealed passwords is best effort.
    Concurrent invocations against one store file are not locked and the
    last writer wins.
"""

from .conf import VaultConfig
from .crypto import decrypt, derive_key, encrypt, verifier_hash
from .exceptions import (
    AuthError,
    ConflictError,
    CorruptDataError,
    NotFoundError,
    ParseError,
    UsageError,
    VaultError,
    VaultIOError,
)
from .master import MasterPasswordManager, MasterRecord
from .reveal import TimedReveal
from .store import Credential, CredentialStore
from .version import __version__

__all__ = [
    "VaultConfig",
    "derive_key",
    "verifier_hash",
    "encrypt",
    "decrypt",
    "MasterPasswordManager",
    "MasterRecord",
    "Credential",
    "CredentialStore",
    "TimedReveal",
    "VaultError",
    "UsageError",
    "NotFoundError",
    "ConflictError",
    "AuthError",
    "CorruptDataError",
    "ParseError",
    "VaultIOError",
    "__version__",
]
