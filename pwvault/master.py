"""
Master Password — Verifier record, unlocking and key rotation.

The master record holds a salted one-way verifier of the master password
plus the KDF parameters it was created with. The encryption key is never
stored; it is re-derived from the password on every run.

Rotation re-encrypts every credential under a key derived from the new
password. It is all-or-nothing: every entry is decrypted and re-encrypted
into a scratch mapping first, and the store contents and the master
record are swapped together only after all entries succeeded.

Security Note:
    Plaintext exists in memory only during re-encryption of each entry.
    Never log plaintext, ciphertext or passwords.
"""
import hmac
import logging
from typing import Any, Optional

import orjson
from pydantic import BaseModel, Field, ValidationError, field_validator

from .conf import VaultConfig
from .crypto import (
    CIPHERS,
    DEFAULT_CIPHER,
    SCRYPT_N,
    SCRYPT_P,
    SCRYPT_R,
    b64decode,
    b64encode,
    decrypt,
    derive_key,
    encrypt,
    generate_salt,
    verifier_hash,
)
from .exceptions import AuthError, CorruptDataError, UsageError
from .store import Credential, CredentialStore

logger = logging.getLogger("pwvault")

RECORD_VERSION = 1


class MasterRecord(BaseModel):
    """Salted verifier for the master password, its KDF cost and cipher."""

    verifier: bytes
    salt: bytes
    n: int = Field(default=SCRYPT_N, ge=2)
    r: int = Field(default=SCRYPT_R, ge=1)
    p: int = Field(default=SCRYPT_P, ge=1)
    cipher: str = Field(default=DEFAULT_CIPHER)

    model_config = {"frozen": True}

    @field_validator("n")
    @classmethod
    def validate_n(cls, v: int) -> int:
        if v & (v - 1):
            raise ValueError(f"scrypt n must be a power of two, got {v}")
        return v

    @field_validator("cipher")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        if v not in CIPHERS:
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @classmethod
    def create(
        cls,
        password: str,
        n: int = SCRYPT_N,
        r: int = SCRYPT_R,
        p: int = SCRYPT_P,
        cipher: str = DEFAULT_CIPHER,
    ) -> "MasterRecord":
        """Build a record for ``password`` with a fresh salt."""
        if not password:
            raise UsageError("Master password cannot be empty")
        salt = generate_salt()
        return cls(
            verifier=verifier_hash(password, salt, n, r, p),
            salt=salt, n=n, r=r, p=p, cipher=cipher,
        )

    def to_token(self) -> str:
        """Encode the record as a single base64 token."""
        doc = {
            "version": RECORD_VERSION,
            "salt": b64encode(self.salt),
            "verifier": b64encode(self.verifier),
            "kdf": {"n": self.n, "r": self.r, "p": self.p},
            "cipher": self.cipher,
        }
        return b64encode(orjson.dumps(doc))

    @classmethod
    def from_token(cls, token: str) -> "MasterRecord":
        """Decode a token produced by ``to_token``.

        Raises:
            CorruptDataError: If the token is malformed.
        """
        raw = b64decode(token.strip())
        try:
            doc = orjson.loads(raw)
            if doc.get("version") != RECORD_VERSION:
                raise CorruptDataError(
                    f"Unsupported master record version: {doc.get('version')}"
                )
            kdf = doc.get("kdf", {})
            return cls(
                salt=b64decode(doc["salt"]),
                verifier=b64decode(doc["verifier"]),
                cipher=doc.get("cipher", DEFAULT_CIPHER),
                **kdf,
            )
        except (orjson.JSONDecodeError, KeyError, TypeError,
                AttributeError, ValidationError) as err:
            raise CorruptDataError(f"Malformed master record: {err}") from err


class MasterPasswordManager:
    """Checks master passwords and derives the active key.

    Holds the current MasterRecord as an explicit value; a successful
    ``rotate`` replaces it.
    """

    def __init__(self, record: MasterRecord):
        self._record = record

    @property
    def record(self) -> MasterRecord:
        return self._record

    @classmethod
    def create(
        cls, password: str, config: Optional[VaultConfig] = None
    ) -> "MasterPasswordManager":
        """Create a manager with a brand-new master record."""
        config = config or VaultConfig()
        record = MasterRecord.create(
            password, config.scrypt_n, config.scrypt_r, config.scrypt_p,
            cipher=config.cipher_backend,
        )
        logger.info("Created new master record (cipher=%s)", record.cipher)
        return cls(record)

    def _kdf_args(self, record: Optional[MasterRecord] = None) -> dict[str, Any]:
        record = record or self._record
        return {"n": record.n, "r": record.r, "p": record.p}

    def verify(self, candidate: str) -> bool:
        """Check a candidate master password.

        Uses a constant-time comparison so timing does not leak how much
        of the verifier matched.
        """
        computed = verifier_hash(
            candidate, self._record.salt, **self._kdf_args()
        )
        return hmac.compare_digest(computed, self._record.verifier)

    def derive_key(self, password: str) -> bytes:
        return derive_key(password, self._record.salt, **self._kdf_args())

    def unlock(self, candidate: str) -> bytes:
        """Verify ``candidate`` and return the encryption key.

        Raises:
            AuthError: If the password does not match the record.
        """
        if not self.verify(candidate):
            logger.warning("Master password verification failed")
            raise AuthError("Invalid Master Password")
        return self.derive_key(candidate)

    def rotate(
        self,
        store: CredentialStore,
        old_password: str,
        new_password: str,
        config: Optional[VaultConfig] = None,
    ) -> MasterRecord:
        """Replace the master password and re-encrypt every credential.

        Args:
            store: The loaded credential store; mutated only on success.
            old_password: Current master password.
            new_password: Replacement master password.
            config: Supplies KDF cost for the new record. The cipher
                backend is carried over from the current record.

        Returns:
            The new MasterRecord (also installed on this manager).

        Raises:
            AuthError: If ``old_password`` does not verify.
            CorruptDataError: If any stored credential fails to decrypt.
        """
        if not self.verify(old_password):
            logger.warning("Rotation refused: old master password invalid")
            raise AuthError("Invalid Master Password")
        config = config or VaultConfig()
        old_key = self.derive_key(old_password)
        new_record = MasterRecord.create(
            new_password, config.scrypt_n, config.scrypt_r, config.scrypt_p,
            cipher=self._record.cipher,
        )
        new_key = derive_key(
            new_password, new_record.salt, **self._kdf_args(new_record)
        )

        rotated: dict[str, dict[str, Credential]] = {}
        total = 0
        for site, user, cred in store.items():
            try:
                plaintext = decrypt(
                    cred.ciphertext, cred.nonce, old_key, store.cipher,
                )
            except AuthError as err:
                logger.error(
                    "Rotation aborted: site=%s user=%s failed to decrypt",
                    site, user,
                )
                raise CorruptDataError(
                    f"Credential for Site: {site} User: {user} failed "
                    f"authentication; rotation aborted"
                ) from err
            ciphertext, nonce = encrypt(plaintext, new_key, new_record.cipher)
            rotated.setdefault(site, {})[user] = cred.model_copy(
                update={"ciphertext": ciphertext, "nonce": nonce}
            )
            total += 1

        store.replace_contents(rotated, new_key)
        self._record = new_record
        logger.info("Master password rotated: %d credential(s) re-encrypted", total)
        return new_record
