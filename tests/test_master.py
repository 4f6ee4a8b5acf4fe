"""
Tests for the master record and MasterPasswordManager.

Tests cover:
- Verifier creation and constant-time verification
- Unlocking (key derivation after verification)
- Token encoding of the master record
- All-or-nothing rotation
"""
import orjson
import pytest

from pwvault.crypto import b64decode, b64encode, encrypt
from pwvault.exceptions import AuthError, CorruptDataError, UsageError
from pwvault.master import MasterPasswordManager, MasterRecord
from pwvault.store import Credential, CredentialStore


@pytest.fixture
def manager(fast_config):
    return MasterPasswordManager.create("old-master", fast_config)


@pytest.fixture
def unlocked_store(manager):
    store = CredentialStore(manager.unlock("old-master"))
    store.add("gmail", "self", "me@gmail", "mypassword@gmail")
    store.add("gmail", "mom", "mom@gmail", "mompassword@gmail")
    store.add("hdfcbank", "self", "myusername", "mypassword")
    return store


def _snapshot(store):
    return [(s, u, c.model_dump()) for s, u, c in store.items()]


# --- Master Record ---

class TestMasterRecord:
    """Tests for MasterRecord creation and encoding."""

    def test_record_has_salt_and_verifier(self, manager):
        record = manager.record
        assert len(record.salt) == 16
        assert len(record.verifier) == 32

    def test_verifier_is_not_key(self, manager):
        """The stored verifier never equals the encryption key."""
        assert manager.record.verifier != manager.unlock("old-master")

    def test_empty_password_rejected(self):
        with pytest.raises(UsageError):
            MasterRecord.create("", n=16)

    def test_token_round_trip(self, manager):
        """A record survives token encoding, KDF parameters included."""
        restored = MasterRecord.from_token(manager.record.to_token())
        assert restored == manager.record
        assert restored.n == 16

    def test_token_is_single_line(self, manager):
        token = manager.record.to_token()
        assert "\n" not in token and " " not in token

    @pytest.mark.parametrize("token", ["", "!!!", "bm90IGpzb24=", "e30="])
    def test_malformed_token(self, token):
        """Garbage, non-JSON and incomplete tokens are corrupt data."""
        with pytest.raises(CorruptDataError):
            MasterRecord.from_token(token)

    @pytest.mark.parametrize("change", [
        {"kdf": {"n": 3, "r": 8, "p": 1}},
        {"kdf": {"n": 1000, "r": 8, "p": 1}},
        {"cipher": "aes"},
        {"cipher": None},
    ])
    def test_tampered_parameters(self, manager, change):
        """Unusable KDF cost or cipher names are rejected as corrupt data."""
        doc = orjson.loads(b64decode(manager.record.to_token()))
        doc.update(change)
        with pytest.raises(CorruptDataError):
            MasterRecord.from_token(b64encode(orjson.dumps(doc)))

    def test_token_without_cipher_defaults_to_aesgcm(self, manager):
        doc = orjson.loads(b64decode(manager.record.to_token()))
        del doc["cipher"]
        record = MasterRecord.from_token(b64encode(orjson.dumps(doc)))
        assert record.cipher == "aesgcm"

    def test_cipher_from_config(self, fast_config):
        config = fast_config.model_copy(update={"cipher_backend": "chacha20"})
        manager = MasterPasswordManager.create("pw", config)
        restored = MasterRecord.from_token(manager.record.to_token())
        assert restored.cipher == "chacha20"


# --- Verification ---

class TestVerification:
    """Tests for verify and unlock."""

    def test_verify_correct(self, manager):
        assert manager.verify("old-master") is True

    def test_verify_wrong(self, manager):
        assert manager.verify("old-mastex") is False
        assert manager.verify("") is False

    def test_unlock_returns_stable_key(self, manager):
        assert manager.unlock("old-master") == manager.unlock("old-master")

    def test_unlock_wrong_password(self, manager):
        with pytest.raises(AuthError):
            manager.unlock("nope")

    def test_restored_manager_unlocks(self, manager):
        """A manager rebuilt from the persisted record derives the same key."""
        restored = MasterPasswordManager(MasterRecord.from_token(manager.record.to_token()))
        assert restored.unlock("old-master") == manager.unlock("old-master")


# --- Rotation ---

class TestRotation:
    """Tests for rotate."""

    def test_rotation_preserves_passwords(self, manager, unlocked_store, fast_config):
        """Everything decryptable before rotation decrypts identically after."""
        before = {(s, u): unlocked_store.get(s, u) for s, u, _ in unlocked_store.list()}
        manager.rotate(unlocked_store, "old-master", "new-master", fast_config)
        after = {(s, u): unlocked_store.get(s, u) for s, u, _ in unlocked_store.list()}
        assert after == before

    def test_rotation_installs_new_record(self, manager, unlocked_store, fast_config):
        old_record = manager.record
        new_record = manager.rotate(unlocked_store, "old-master", "new-master", fast_config)
        assert manager.record is new_record
        assert new_record.salt != old_record.salt
        assert manager.verify("new-master")
        assert not manager.verify("old-master")
        assert unlocked_store.key == manager.unlock("new-master")

    def test_rotation_changes_ciphertexts_only(self, manager, unlocked_store, fast_config):
        """Usernames are untouched; every ciphertext and nonce is fresh."""
        before = {(s, u): c for s, u, c in unlocked_store.items()}
        manager.rotate(unlocked_store, "old-master", "new-master", fast_config)
        for site, user, cred in unlocked_store.items():
            old = before[(site, user)]
            assert cred.username == old.username
            assert cred.nonce != old.nonce
            assert cred.ciphertext != old.ciphertext

    def test_old_key_cannot_decrypt(self, manager, unlocked_store, fast_config):
        """A pre-rotation key never decrypts post-rotation ciphertexts."""
        old_key = unlocked_store.key
        manager.rotate(unlocked_store, "old-master", "new-master", fast_config)
        stale = CredentialStore(old_key)
        stale.replace_contents(
            {s: {u: c} for s, u, c in unlocked_store.items()}, old_key,
        )
        with pytest.raises(CorruptDataError):
            stale.get("hdfcbank", "self")

    def test_wrong_old_password(self, manager, unlocked_store, fast_config):
        """Wrong old password: AuthError, store and record unchanged."""
        record = manager.record
        snapshot = _snapshot(unlocked_store)
        key = unlocked_store.key
        with pytest.raises(AuthError):
            manager.rotate(unlocked_store, "wrong", "new-master", fast_config)
        assert manager.record is record
        assert _snapshot(unlocked_store) == snapshot
        assert unlocked_store.key == key

    def test_corrupt_entry_aborts_everything(self, manager, unlocked_store, fast_config):
        """One undecryptable credential aborts the whole rotation."""
        foreign_ct, foreign_nonce = encrypt("x", b"\x01" * 32)
        unlocked_store.replace_contents(
            {
                **{s: {u: c for s2, u, c in unlocked_store.items() if s2 == s}
                   for s in unlocked_store.sites()},
                "zzz": {"broken": Credential(
                    username="b", ciphertext=foreign_ct, nonce=foreign_nonce,
                )},
            },
            unlocked_store.key,
        )
        record = manager.record
        snapshot = _snapshot(unlocked_store)
        with pytest.raises(CorruptDataError):
            manager.rotate(unlocked_store, "old-master", "new-master", fast_config)
        assert manager.record is record
        assert _snapshot(unlocked_store) == snapshot
        assert unlocked_store.get("gmail", "self") == "mypassword@gmail"

    def test_rotate_empty_store(self, manager, fast_config):
        manager.rotate(CredentialStore(manager.unlock("old-master")), "old-master", "new", fast_config)
        assert manager.verify("new")

    def test_rotation_keeps_cipher(self, fast_config):
        """A chacha20 vault stays chacha20 and stays readable after rotation."""
        config = fast_config.model_copy(update={"cipher_backend": "chacha20"})
        manager = MasterPasswordManager.create("old-master", config)
        store = CredentialStore(manager.unlock("old-master"), manager.record.cipher)
        store.add("gmail", "self", "me@gmail", "mypassword@gmail")
        record = manager.rotate(store, "old-master", "new-master", fast_config)
        assert record.cipher == "chacha20"
        assert store.get("gmail", "self") == "mypassword@gmail"
