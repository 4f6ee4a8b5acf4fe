"""
Vault Crypto Core — Key derivation, encryption/decryption and encoding.

- Key derivation: Scrypt(master_password, salt) → root secret, then
  HKDF(root, "pwvault-encryption-key") → 32-byte AEAD key and
  HKDF(root, "pwvault-master-verifier") → stored verifier.
  The two HKDF contexts keep the verifier and the key independent:
  knowing one never yields the other.
- Field encryption: AES-256-GCM (or ChaCha20-Poly1305) with a random
  96-bit nonce per call and no associated data. The backend name is
  stored in the master record, so a vault always reopens with the cipher
  it was written with.

Security Note:
    Never log plaintext, ciphertext, keys or passwords.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import base64
import binascii
import logging
import secrets
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .exceptions import AuthError, CorruptDataError, UsageError

logger = logging.getLogger("pwvault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256
SALT_SIZE = 16

SCRYPT_N = 2 ** 15
SCRYPT_R = 8
SCRYPT_P = 1

_KEY_CONTEXT = "pwvault-encryption-key"
_VERIFIER_CONTEXT = "pwvault-master-verifier"

CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}
DEFAULT_CIPHER = "aesgcm"


def cipher_class(name: str) -> type:
    """Return the AEAD class for a cipher backend name."""
    try:
        return CIPHERS[name]
    except KeyError:
        raise UsageError(f"Unsupported cipher backend: {name}") from None


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def generate_salt() -> bytes:
    """Return a fresh random salt for a master record."""
    return secrets.token_bytes(SALT_SIZE)


def _root_secret(
    master_password: str,
    salt: bytes,
    n: int = SCRYPT_N,
    r: int = SCRYPT_R,
    p: int = SCRYPT_P,
) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=n, r=r, p=p)
    return kdf.derive(master_password.encode("utf-8"))


def _expand(root: bytes, context: str) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,  # the scrypt stage is already salted
        info=context.encode("utf-8"),
    )
    return hkdf.derive(root)


def derive_key(
    master_password: str,
    salt: bytes,
    n: int = SCRYPT_N,
    r: int = SCRYPT_R,
    p: int = SCRYPT_P,
) -> bytes:
    """Derive the 32-byte encryption key from the master password.

    Args:
        master_password: The user-supplied master password.
        salt: Per-store random salt from the master record.
        n, r, p: Scrypt cost parameters.

    Returns:
        32-byte AEAD key.
    """
    return _expand(_root_secret(master_password, salt, n, r, p), _KEY_CONTEXT)


def verifier_hash(
    master_password: str,
    salt: bytes,
    n: int = SCRYPT_N,
    r: int = SCRYPT_R,
    p: int = SCRYPT_P,
) -> bytes:
    """Derive the stored verifier for a master password.

    Only useful for equality checks against a candidate password; it is
    computed under a different HKDF context than ``derive_key`` and cannot
    be turned into the encryption key.
    """
    return _expand(
        _root_secret(master_password, salt, n, r, p), _VERIFIER_CONTEXT
    )


# ---------------------------------------------------------------------------
# Field encryption
# ---------------------------------------------------------------------------

def encrypt(
    plaintext: Union[str, bytes],
    key: bytes,
    cipher: str = DEFAULT_CIPHER,
) -> tuple[bytes, bytes]:
    """Encrypt one credential field.

    Args:
        plaintext: Secret to encrypt; str values are UTF-8 encoded.
        key: 32-byte key from ``derive_key``.
        cipher: Backend name recorded in the master record.

    Returns:
        Tuple of (ciphertext + 16-byte tag, 12-byte nonce).
    """
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    aead = cipher_class(cipher)(key)
    nonce = os.urandom(NONCE_SIZE)
    ct = aead.encrypt(nonce, bytes(plaintext), None)
    return ct, nonce


def decrypt(
    ciphertext: bytes,
    nonce: bytes,
    key: bytes,
    cipher: str = DEFAULT_CIPHER,
) -> bytes:
    """Decrypt one credential field.

    Args:
        ciphertext: Ciphertext including the authentication tag.
        nonce: The 12-byte nonce used at encryption.
        key: 32-byte key from ``derive_key``.
        cipher: Backend name the field was encrypted with.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        AuthError: If the tag does not verify (wrong key, or any change to
            the ciphertext or nonce).
    """
    if len(nonce) != NONCE_SIZE:
        raise AuthError(
            f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}"
        )
    if len(ciphertext) < TAG_SIZE:
        raise AuthError(
            f"Ciphertext too short: {len(ciphertext)} bytes "
            f"(minimum {TAG_SIZE})"
        )
    aead = cipher_class(cipher)(key)
    try:
        return aead.decrypt(nonce, ciphertext, None)
    except InvalidTag as err:
        raise AuthError(
            "Decryption failed: wrong key or tampered data"
        ) from err


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------

def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    """Decode strict base64, reporting malformed input as corruption."""
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError, TypeError) as err:
        raise CorruptDataError(f"Malformed base64 value: {err}") from err


def scrub(buffer: bytearray) -> None:
    """Overwrite a plaintext buffer in place.

    Best effort only: copies made by the interpreter or the terminal
    layer are out of reach.
    """
    for i in range(len(buffer)):
        buffer[i] = 0
