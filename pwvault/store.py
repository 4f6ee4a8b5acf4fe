"""
Credential storage: nested site → user → Credential mapping with CRUD.

Passwords are encrypted under the active key the moment they enter the
store and decrypted only on an explicit ``get``.
"""
from __future__ import annotations
import logging
from collections.abc import Iterator, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from .crypto import DEFAULT_CIPHER, b64decode, b64encode, decrypt, encrypt
from .exceptions import (
    AuthError,
    ConflictError,
    CorruptDataError,
    NotFoundError,
    UsageError,
)

logger = logging.getLogger("pwvault")

STORE_VERSION = 1


class Credential(BaseModel):
    """One stored credential: clear username, encrypted password."""

    username: str
    ciphertext: bytes
    nonce: bytes

    model_config = {"frozen": True}

    def to_document(self) -> dict[str, str]:
        return {
            "username": self.username,
            "ciphertext": b64encode(self.ciphertext),
            "nonce": b64encode(self.nonce),
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Credential":
        try:
            return cls(
                username=doc["username"],
                ciphertext=b64decode(doc["ciphertext"]),
                nonce=b64decode(doc["nonce"]),
            )
        except (KeyError, TypeError, ValidationError) as err:
            raise CorruptDataError(f"Malformed credential entry: {err}") from err


class CredentialStore:
    """
    Credentials grouped by site, then by user of that site.

    The ``(site, user)`` pair is the only lookup key. Listings are sorted
    by site, then by user, independent of insertion order. Every entry is
    sealed with the ``cipher`` backend named by the master record.
    """

    def __init__(self, key: bytes, cipher: str = DEFAULT_CIPHER):
        self._key = key
        self._cipher = cipher
        self._sites: dict[str, dict[str, Credential]] = {}

    def __len__(self) -> int:
        return sum(len(users) for users in self._sites.values())

    def __contains__(self, item: object) -> bool:
        if not isinstance(item, tuple) or len(item) != 2:
            return False
        site, user = item
        return user in self._sites.get(site, {})

    def __repr__(self) -> str:
        return f"<CredentialStore sites={len(self._sites)} credentials={len(self)}>"

    @property
    def key(self) -> bytes:
        return self._key

    @property
    def cipher(self) -> str:
        return self._cipher

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(site: str, user: str) -> None:
        if not site:
            raise UsageError("Site name cannot be empty")
        if not user:
            raise UsageError("User name cannot be empty")

    def _lookup(self, site: str, user: str) -> Credential:
        self._validate(site, user)
        try:
            return self._sites[site][user]
        except KeyError:
            raise NotFoundError(
                f"No Credentials exist for Site: {site} User: {user}"
            ) from None

    def _seal(self, username: str, password: str) -> Credential:
        ciphertext, nonce = encrypt(password, self._key, self._cipher)
        return Credential(username=username, ciphertext=ciphertext, nonce=nonce)

    def _put(self, site: str, user: str, credential: Credential) -> None:
        self._sites.setdefault(site, {})[user] = credential

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add(self, site: str, user: str, username: str, password: str) -> None:
        """Encrypt and insert a new credential.

        Raises:
            ConflictError: If the site/user pair already exists.
        """
        self._validate(site, user)
        if (site, user) in self:
            raise ConflictError(
                f"Credentials exist for Site: {site} User: {user} "
                f"- use Update instead"
            )
        if site not in self._sites:
            logger.debug("Adding new site: %s", site)
        self._put(site, user, self._seal(username, password))
        logger.debug("Added credential: site=%s user=%s", site, user)

    def entry(self, site: str, user: str) -> Credential:
        """Return the stored (still encrypted) credential."""
        return self._lookup(site, user)

    def get_bytes(self, site: str, user: str) -> bytearray:
        """Decrypt a password into a mutable buffer the caller can scrub."""
        cred = self._lookup(site, user)
        try:
            return bytearray(decrypt(
                cred.ciphertext, cred.nonce, self._key, self._cipher,
            ))
        except AuthError as err:
            raise CorruptDataError(
                f"Credential for Site: {site} User: {user} failed authentication"
            ) from err

    def get(self, site: str, user: str) -> str:
        """Decrypt and return the password for a site/user pair.

        Raises:
            NotFoundError: If no such credential exists.
            CorruptDataError: If the stored ciphertext fails authentication.
        """
        return self.get_bytes(site, user).decode("utf-8")

    def update(self, site: str, user: str, username: str, password: str) -> None:
        """Replace the username and re-encrypt the password of an entry."""
        self._lookup(site, user)
        self._put(site, user, self._seal(username, password))
        logger.debug("Updated credential: site=%s user=%s", site, user)

    def delete(self, site: str, user: str) -> None:
        """Remove an entry; drops the site once it has no users left."""
        self._lookup(site, user)
        users = self._sites[site]
        del users[user]
        if not users:
            del self._sites[site]
        logger.debug("Deleted credential: site=%s user=%s", site, user)

    def list(self) -> list[tuple[str, str, str]]:
        """Return ``(site, user, username)`` triples, sorted by site then user."""
        return [
            (site, user, cred.username)
            for site, user, cred in self.items()
        ]

    def show(self, site: str) -> list[tuple[str, str]]:
        """Return ``(user, username)`` pairs for one site, sorted by user.

        Raises:
            NotFoundError: If the site has no entries.
        """
        users = self._sites.get(site)
        if not users:
            raise NotFoundError(f"No Credentials exist for Site: {site}")
        return [(user, users[user].username) for user in sorted(users)]

    def sites(self) -> list[str]:
        return sorted(self._sites)

    def items(self) -> Iterator[tuple[str, str, Credential]]:
        """Iterate ``(site, user, credential)`` in listing order."""
        for site in sorted(self._sites):
            users = self._sites[site]
            for user in sorted(users):
                yield site, user, users[user]

    def replace_contents(
        self, sites: dict[str, dict[str, Credential]], key: bytes
    ) -> None:
        """Swap in fully re-encrypted contents together with their key."""
        self._sites = {site: dict(users) for site, users in sites.items() if users}
        self._key = key

    # ------------------------------------------------------------------
    # Persistence format
    # ------------------------------------------------------------------

    def to_document(self) -> dict[str, Any]:
        return {
            "version": STORE_VERSION,
            "cipher": self._cipher,
            "sites": {
                site: {user: cred.to_document() for user, cred in users.items()}
                for site, users in self._sites.items()
            },
        }

    @classmethod
    def from_document(
        cls,
        doc: Mapping[str, Any],
        key: bytes,
        cipher: str = DEFAULT_CIPHER,
    ) -> "CredentialStore":
        """Rebuild a store from its persisted document.

        Ciphertexts are not decrypted here; a wrong key shows up on ``get``.

        Raises:
            CorruptDataError: If the document does not have the expected shape,
                or names a different cipher than ``cipher``.
        """
        if not isinstance(doc, Mapping) or doc.get("version") != STORE_VERSION:
            raise CorruptDataError("Unsupported or malformed credential store")
        sites = doc.get("sites")
        if not isinstance(sites, Mapping):
            raise CorruptDataError("Credential store is missing its sites")
        written_with = doc.get("cipher", DEFAULT_CIPHER)
        if written_with != cipher:
            raise CorruptDataError(
                f"Credential store was written with cipher {written_with!r}, "
                f"but the master record names {cipher!r}"
            )
        store = cls(key, cipher)
        for site, users in sites.items():
            if not isinstance(users, Mapping):
                raise CorruptDataError(f"Malformed entry for Site: {site}")
            for user, entry in users.items():
                if not site or not user:
                    raise CorruptDataError("Credential store has an empty site or user name")
                store._put(site, user, Credential.from_document(entry))
        return store
