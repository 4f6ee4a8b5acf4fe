import pytest

from pwvault.conf import VaultConfig
from pwvault.crypto import derive_key, generate_salt
from pwvault.store import CredentialStore

# Cheap scrypt cost so key derivation does not dominate the test run.
FAST_KDF = {"n": 2 ** 4, "r": 8, "p": 1}

SCENARIO_RAW = """\
test-site test-user test-username test-password
hdfcbank self myusername mypassword
hdfcbank mom mom-username mom-password
gmail self me@gmail mypassword@gmail
gmail mom mom@gmail mompassword@gmail
"""


@pytest.fixture
def fast_config(tmp_path):
    """VaultConfig pointing at temp files with a low scrypt cost."""
    return VaultConfig(
        store_file=tmp_path / "credentials.json",
        master_file=tmp_path / "master.key",
        reveal_timeout=0.05,
        scrypt_n=FAST_KDF["n"],
        scrypt_r=FAST_KDF["r"],
        scrypt_p=FAST_KDF["p"],
    )


@pytest.fixture
def key():
    """A derived 32-byte key."""
    return derive_key("master-secret", generate_salt(), **FAST_KDF)


@pytest.fixture
def store(key):
    """Empty credential store under ``key``."""
    return CredentialStore(key)


@pytest.fixture
def populated_store(store):
    """Store with a few credentials over two sites."""
    store.add("gmail", "self", "me@gmail", "mypassword@gmail")
    store.add("gmail", "mom", "mom@gmail", "mompassword@gmail")
    store.add("hdfcbank", "self", "myusername", "mypassword")
    return store


@pytest.fixture
def scenario_raw():
    return SCENARIO_RAW


@pytest.fixture
def clean_env(monkeypatch):
    """Remove PWVAULT_* settings and use a cheap scrypt cost."""
    for name in (
        "PWVAULT_DB_FILE",
        "PWVAULT_MASTER_FILE",
        "PWVAULT_REVEAL_TIMEOUT",
        "PWVAULT_MASTER_PASSWORD",
        "PWVAULT_SCRYPT_R",
        "PWVAULT_SCRYPT_P",
        "PWVAULT_CIPHER_BACKEND",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PWVAULT_SCRYPT_N", str(FAST_KDF["n"]))
    return monkeypatch


@pytest.fixture
def fast_kdf():
    return dict(FAST_KDF)
