"""
Vault persistence — crash-safe files for the store and the master record.

Every write goes to a temporary file in the target directory, is flushed
and fsynced, then renamed over the target, so a crash never leaves a
truncated file behind.

Rotation rewrites two files that must change together. It uses a small
write-ahead journal:

1. write ``<store>.rotate-new`` and ``<master>.rotate-new`` in full;
2. write ``<store>.rotate-journal`` naming both targets;
3. rename each ``.rotate-new`` file over its target;
4. remove the journal.

On startup ``recover_rotation`` finishes the renames onto the targets the
journal names if a journal exists (roll forward), or deletes stray
``.rotate-new`` files if it does not (roll back).

Known limitation: no locking between processes; the last writer wins.
"""
import os
import logging
import tempfile
from pathlib import Path
from typing import Optional, Union

import orjson

from .crypto import DEFAULT_CIPHER
from .exceptions import CorruptDataError, VaultIOError
from .master import MasterRecord
from .store import CredentialStore

logger = logging.getLogger("pwvault")

PathLike = Union[str, Path]

NEW_SUFFIX = ".rotate-new"
JOURNAL_SUFFIX = ".rotate-journal"


def _sibling(path: Path, suffix: str) -> Path:
    return path.with_name(path.name + suffix)


def atomic_write(path: PathLike, data: bytes) -> None:
    """Write ``data`` to ``path`` via temp file, fsync and rename.

    Raises:
        VaultIOError: On any filesystem failure; the target is untouched.
    """
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp",
        )
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as err:
        raise VaultIOError(f"Cannot write {path}: {err}") from err
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)


def _read(path: Path) -> Optional[bytes]:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as err:
        raise VaultIOError(f"Cannot read {path}: {err}") from err


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------

def dump_store(store: CredentialStore) -> bytes:
    return orjson.dumps(
        store.to_document(),
        option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS,
    )


def load_store(
    path: PathLike, key: bytes, cipher: str = DEFAULT_CIPHER,
) -> CredentialStore:
    """Load the store document, or start an empty store if none exists."""
    path = Path(path)
    raw = _read(path)
    if raw is None:
        logger.info("No credential store at %s, starting a new one", path)
        return CredentialStore(key, cipher)
    try:
        doc = orjson.loads(raw)
    except orjson.JSONDecodeError as err:
        raise CorruptDataError(f"Credential store {path} is not valid JSON: {err}") from err
    store = CredentialStore.from_document(doc, key, cipher)
    logger.debug("Loaded %d credential(s) from %s", len(store), path)
    return store


def save_store(path: PathLike, store: CredentialStore) -> None:
    atomic_write(path, dump_store(store))
    logger.debug("Saved %d credential(s) to %s", len(store), path)


# ---------------------------------------------------------------------------
# Master record
# ---------------------------------------------------------------------------

def load_master(path: PathLike) -> Optional[MasterRecord]:
    """Load the master record; ``None`` if it has never been created."""
    raw = _read(Path(path))
    if raw is None:
        return None
    try:
        token = raw.decode("ascii")
    except UnicodeDecodeError as err:
        raise CorruptDataError(f"Master record {path} is not a valid token") from err
    return MasterRecord.from_token(token)


def save_master(path: PathLike, record: MasterRecord) -> None:
    atomic_write(path, (record.to_token() + "\n").encode("ascii"))


# ---------------------------------------------------------------------------
# Rotation journal
# ---------------------------------------------------------------------------

def commit_rotation(
    store_path: PathLike,
    master_path: PathLike,
    store: CredentialStore,
    record: MasterRecord,
) -> None:
    """Persist a rotated store and its new master record together."""
    store_path, master_path = Path(store_path), Path(master_path)
    store_new = _sibling(store_path, NEW_SUFFIX)
    master_new = _sibling(master_path, NEW_SUFFIX)
    journal = _sibling(store_path, JOURNAL_SUFFIX)

    atomic_write(store_new, dump_store(store))
    atomic_write(master_new, (record.to_token() + "\n").encode("ascii"))
    atomic_write(
        journal,
        orjson.dumps({
            "store": str(store_path.resolve()),
            "master": str(master_path.resolve()),
        }),
    )
    _roll_forward(journal, store_path, master_path)
    logger.info("Rotation committed for %s", store_path)


def _read_journal(journal: Path) -> tuple[Path, Path]:
    """Return the ``(store, master)`` targets a journal was written for."""
    raw = _read(journal)
    try:
        doc = orjson.loads(raw)
        return Path(doc["store"]), Path(doc["master"])
    except (orjson.JSONDecodeError, KeyError, TypeError) as err:
        raise CorruptDataError(
            f"Rotation journal {journal} is unreadable: {err}"
        ) from err


def _roll_forward(journal: Path, store_path: Path, master_path: Path) -> None:
    try:
        for target in (store_path, master_path):
            pending = _sibling(target, NEW_SUFFIX)
            if pending.exists():
                os.replace(pending, target)
        journal.unlink()
    except OSError as err:
        raise VaultIOError(
            f"Rotation journal {journal} could not be completed: {err}"
        ) from err


def recover_rotation(store_path: PathLike, master_path: PathLike) -> Optional[str]:
    """Finish or discard a rotation interrupted by a crash.

    Returns:
        ``"rolled-forward"``, ``"rolled-back"`` or ``None`` when there was
        nothing to recover.
    """
    store_path, master_path = Path(store_path), Path(master_path)
    journal = _sibling(store_path, JOURNAL_SUFFIX)
    if journal.exists():
        logger.warning("Completing interrupted rotation from %s", journal)
        store_target, master_target = _read_journal(journal)
        if master_target != master_path.resolve():
            logger.warning(
                "Journal %s targets master record %s, not %s",
                journal, master_target, master_path,
            )
        _roll_forward(journal, store_target, master_target)
        return "rolled-forward"
    stray = [
        p for p in (_sibling(store_path, NEW_SUFFIX), _sibling(master_path, NEW_SUFFIX))
        if p.exists()
    ]
    if not stray:
        return None
    logger.warning("Discarding incomplete rotation files: %s", [str(p) for p in stray])
    try:
        for p in stray:
            p.unlink()
    except OSError as err:
        raise VaultIOError(f"Cannot remove stale rotation file: {err}") from err
    return "rolled-back"
