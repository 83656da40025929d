# e2echat/storage/directory.py
"""
Directory Service: the store/relay for public keys, directed session-key
records and encrypted messages.

The core only talks to the abstract ``DirectoryService``. Every method may
raise ``DirectoryUnavailable``; lookups raise ``NotFound`` for absent records
and writes raise it for unknown identities.
"""

import abc
import itertools
from typing import Dict, List, Optional, Tuple

from e2echat.common.errors import DirectoryUnavailable, NotFound, RegistrationError
from e2echat.common.protocol import StoredMessage
from e2echat.common.utils import utc_now
from e2echat.crypto.digest import digest, digests_match

MIN_USERNAME_LEN = 3
MIN_PASSWORD_LEN = 6


def validate_registration(username: str, password: str) -> None:
    if not username or not password:
        raise RegistrationError("username and password are required", username)
    if len(username) < MIN_USERNAME_LEN:
        raise RegistrationError(
            f"username must be at least {MIN_USERNAME_LEN} characters long", username
        )
    if len(password) < MIN_PASSWORD_LEN:
        raise RegistrationError(
            f"password must be at least {MIN_PASSWORD_LEN} characters long", username
        )


def hash_password(password: str) -> str:
    return digest(password)


class DirectoryService(abc.ABC):

    # ---- users (password auth is a plain hash compare) ----

    @abc.abstractmethod
    async def register_user(self, username: str, password: str) -> None: ...

    @abc.abstractmethod
    async def authenticate(self, username: str, password: str) -> bool: ...

    # ---- public keys ----

    @abc.abstractmethod
    async def put_public_key(self, identity: str, public_key: str) -> None: ...

    @abc.abstractmethod
    async def get_public_key(self, identity: str) -> str: ...

    @abc.abstractmethod
    async def delete_public_key(self, identity: str) -> None: ...

    # ---- directed session-key records ----

    @abc.abstractmethod
    async def put_directed_key(self, sender: str, receiver: str, encrypted_key: str) -> None: ...

    @abc.abstractmethod
    async def get_directed_key(self, sender: str, receiver: str) -> str: ...

    # ---- messages ----

    @abc.abstractmethod
    async def put_message(self, sender: str, receiver: str, envelope: str, digest: str) -> str: ...

    @abc.abstractmethod
    async def get_messages(self, user_a: str, user_b: str) -> List[StoredMessage]: ...

    @abc.abstractmethod
    async def list_reachable_identities(self, excluding: Optional[str] = None) -> List[str]: ...


class InMemoryDirectory(DirectoryService):
    """
    Process-local directory used by tests and the demo script.

    Set ``available = False`` to simulate an outage: every call then raises
    DirectoryUnavailable.
    """

    def __init__(self):
        self.available = True
        self._users: Dict[str, str] = {}             # username -> pwd hash
        self._public_keys: Dict[str, str] = {}
        self._directed: Dict[Tuple[str, str], str] = {}
        self._messages: List[StoredMessage] = []
        self._ids = itertools.count(1)

    def _check(self) -> None:
        if not self.available:
            raise DirectoryUnavailable("directory is offline")

    def _require_user(self, username: str) -> None:
        if username not in self._users:
            raise NotFound(username)

    async def register_user(self, username: str, password: str) -> None:
        self._check()
        validate_registration(username, password)
        if username in self._users:
            raise RegistrationError("username already exists", username)
        self._users[username] = hash_password(password)

    async def authenticate(self, username: str, password: str) -> bool:
        self._check()
        stored = self._users.get(username)
        if stored is None:
            return False
        return digests_match(stored, hash_password(password))

    async def put_public_key(self, identity: str, public_key: str) -> None:
        self._check()
        self._require_user(identity)
        self._public_keys[identity] = public_key

    async def get_public_key(self, identity: str) -> str:
        self._check()
        try:
            return self._public_keys[identity]
        except KeyError:
            raise NotFound(identity, "public key") from None

    async def delete_public_key(self, identity: str) -> None:
        self._check()
        self._public_keys.pop(identity, None)

    async def put_directed_key(self, sender: str, receiver: str, encrypted_key: str) -> None:
        self._check()
        self._require_user(sender)
        self._require_user(receiver)
        self._directed[(sender, receiver)] = encrypted_key

    async def get_directed_key(self, sender: str, receiver: str) -> str:
        self._check()
        try:
            return self._directed[(sender, receiver)]
        except KeyError:
            raise NotFound(f"{sender}->{receiver}", "session key") from None

    async def put_message(self, sender: str, receiver: str, envelope: str, digest: str) -> str:
        self._check()
        self._require_user(sender)
        self._require_user(receiver)
        message = StoredMessage(
            id=str(next(self._ids)),
            sender=sender,
            receiver=receiver,
            envelope=envelope,
            digest=digest,
            timestamp=utc_now(),
        )
        self._messages.append(message)
        return message.id

    async def get_messages(self, user_a: str, user_b: str) -> List[StoredMessage]:
        self._check()
        pair = {user_a, user_b}
        found = [m for m in self._messages if {m.sender, m.receiver} == pair]
        # sorted() is stable: insertion order breaks timestamp ties
        return sorted(found, key=lambda m: m.timestamp)

    async def list_reachable_identities(self, excluding: Optional[str] = None) -> List[str]:
        self._check()
        return sorted(u for u in self._public_keys if u != excluding)
