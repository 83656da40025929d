# tests/conftest.py
import pytest

from e2echat.common.config import Settings
from e2echat.crypto import aes, rsa
from e2echat.exchange import Identity
from e2echat.storage.directory import InMemoryDirectory
from e2echat.storage.keystore import MemoryKeyStore


def make_identity(username: str) -> Identity:
    public_key, private_key = rsa.generate_keypair()
    return Identity(username=username, public_key=public_key, private_key=private_key)


async def online_directory(*identities: Identity) -> InMemoryDirectory:
    """Directory with every identity registered and its public key published."""
    directory = InMemoryDirectory()
    for ident in identities:
        await directory.register_user(ident.username, f"{ident.username}-password")
        await directory.put_public_key(ident.username, ident.public_key)
    return directory


@pytest.fixture(scope="session")
def keypair():
    return rsa.generate_keypair()


@pytest.fixture(scope="session")
def other_keypair():
    return rsa.generate_keypair()


@pytest.fixture
def key():
    return aes.generate_key()


@pytest.fixture
def settings():
    return Settings(keystore_dir="unused", rsa_key_size=2048, poll_interval=0.01)


@pytest.fixture
def keystores():
    """Factory handing every owner its own persistent in-memory keystore."""
    stores = {}
    return lambda owner: stores.setdefault(owner, MemoryKeyStore())
