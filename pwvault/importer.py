"""
Raw credential import into a fresh store.

Each non-empty line reads ``<site> <user> <username> <password>``,
separated by whitespace. Any malformed line aborts the whole import.
The resulting store replaces the persisted one; nothing is merged.
"""
import logging
from pathlib import Path
from typing import Union

from .crypto import DEFAULT_CIPHER
from .exceptions import ParseError, VaultIOError
from .store import CredentialStore

logger = logging.getLogger("pwvault")

FIELD_COUNT = 4

Row = tuple[str, str, str, str]


def parse(raw_text: str) -> list[Row]:
    """Split raw text into credential rows.

    Raises:
        ParseError: On the first line without exactly four fields.
    """
    rows: list[Row] = []
    for lineno, line in enumerate(raw_text.splitlines(), start=1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) != FIELD_COUNT:
            raise ParseError(
                f"expected {FIELD_COUNT} fields "
                f"(site user username password), got {len(fields)}",
                lineno=lineno,
            )
        rows.append(tuple(fields))
    return rows


def build(
    rows: list[Row], key: bytes, cipher: str = DEFAULT_CIPHER,
) -> CredentialStore:
    """Encrypt every row into a new store.

    A repeated site/user pair keeps the last row.
    """
    store = CredentialStore(key, cipher)
    for site, user, username, password in rows:
        if (site, user) in store:
            logger.warning(
                "Duplicate import row for site=%s user=%s; keeping the last one",
                site, user,
            )
            store.update(site, user, username, password)
        else:
            store.add(site, user, username, password)
    return store


def import_file(
    path: Union[str, Path], key: bytes, cipher: str = DEFAULT_CIPHER,
) -> CredentialStore:
    """Read, parse and encrypt a raw credentials file."""
    path = Path(path)
    try:
        raw_text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        raise VaultIOError(f"Cannot read raw credentials file {path}: {err}") from err
    rows = parse(raw_text)
    store = build(rows, key, cipher)
    logger.info(
        "Imported %d credential(s) for %d site(s) from %s",
        len(store), len(store.sites()), path,
    )
    return store
