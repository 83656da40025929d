# e2echat/exchange.py
"""
Session-key establishment between two identities that only share the
directory.

For a peer, ``KeyExchangeCoordinator.obtain_session_key`` walks:

  1. in-memory cache
  2. local keystore (canonical pair id)
  3. directed record on the directory, addressed to us -> unwrap with our
     private key. A record we sent ourselves is unrecoverable (it is wrapped
     for the peer) and counts as "no key".
  4. generate, store locally, wrap with the peer's public key, publish.

There is no acknowledgement; a key is considered established as soon as it
is available locally.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from e2echat.common.errors import DecryptionError, NotFound, PeerUnreachable
from e2echat.common.protocol import (
    DirectedKeyAbsent,
    DirectedKeyFound,
    DirectedKeyLookup,
    KeyRole,
)
from e2echat.common.utils import canonical_pair_id
from e2echat.crypto import aes, rsa
from e2echat.storage.directory import DirectoryService
from e2echat.storage.keystore import KeyStore

logger = logging.getLogger(__name__)


class KeyState(str, Enum):
    NO_KEY = "no_key"
    LOCAL_KEY = "local_key"
    PENDING_FETCH = "pending_fetch"
    ESTABLISHED = "established"


@dataclass
class Identity:
    """A logged-in user. The private key stays in this object only."""

    username: str
    public_key: str
    private_key: RSAPrivateKey = field(repr=False)


class KeyCache:
    """In-memory session keys of one coordinator, keyed by peer."""

    def __init__(self):
        self._keys: Dict[str, bytes] = {}

    def get(self, peer: str) -> Optional[bytes]:
        return self._keys.get(peer)

    def put(self, peer: str, key: bytes) -> None:
        self._keys[peer] = key

    def discard(self, peer: str) -> None:
        self._keys.pop(peer, None)

    def clear(self) -> None:
        self._keys.clear()

    def __contains__(self, peer: str) -> bool:
        return peer in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class KeyExchangeCoordinator:
    def __init__(
        self,
        identity: Identity,
        directory: DirectoryService,
        keystore: KeyStore,
        cache: Optional[KeyCache] = None,
        tie_break: bool = False,
    ):
        self.identity = identity
        self.directory = directory
        self.keystore = keystore
        self.cache = cache if cache is not None else KeyCache()
        self.tie_break = tie_break
        self._states: Dict[str, KeyState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def username(self) -> str:
        return self.identity.username

    def pair_id(self, peer: str) -> str:
        return canonical_pair_id(self.username, peer)

    def state(self, peer: str) -> KeyState:
        return self._states.get(peer, KeyState.NO_KEY)

    def _lock_for(self, peer: str) -> asyncio.Lock:
        lock = self._locks.get(peer)
        if lock is None:
            lock = self._locks[peer] = asyncio.Lock()
        return lock

    def _establish(self, peer: str, key: bytes) -> bytes:
        self.cache.put(peer, key)
        self._states[peer] = KeyState.ESTABLISHED
        return key

    # ============ Lookup ============

    async def lookup_directed_key(self, peer: str) -> DirectedKeyLookup:
        """Records addressed to us win over records we sent."""
        for sender, receiver, role in (
            (peer, self.username, KeyRole.RECEIVER),
            (self.username, peer, KeyRole.SENDER),
        ):
            try:
                payload = await self.directory.get_directed_key(sender, receiver)
            except NotFound:
                continue
            return DirectedKeyFound(role=role, sender=sender, receiver=receiver, payload=payload)
        return DirectedKeyAbsent()

    def _unwrap(self, record: DirectedKeyFound) -> Optional[bytes]:
        try:
            raw = rsa.decrypt_with_private_key(self.identity.private_key, record.payload)
            if len(raw) != aes.KEY_SIZE:
                raise ValueError(f"unwrapped {len(raw)} bytes, expected {aes.KEY_SIZE}")
            return raw
        except (DecryptionError, ValueError) as e:
            # wrapped for a key pair from an earlier login
            logger.warning(
                "session key from %s to %s cannot be unwrapped: %s",
                record.sender, record.receiver, e,
            )
            return None

    # ============ State machine ============

    async def obtain_session_key(self, peer: str) -> bytes:
        """
        Return the session key shared with ``peer``, creating and sending one
        if none can be found.

        Raises PeerUnreachable when a new key is needed and the peer has no
        published public key. Directory failures propagate unchanged.
        """
        async with self._lock_for(peer):
            key = self.cache.get(peer)
            if key is not None:
                self._states[peer] = KeyState.ESTABLISHED
                return key

            pair_id = self.pair_id(peer)
            stored = self.keystore.get(pair_id)
            if stored is not None:
                try:
                    key = aes.import_key(stored)
                except ValueError as e:
                    logger.warning("discarding unreadable local key for %s: %s", pair_id, e)
                    self.keystore.delete(pair_id)
                else:
                    self._states[peer] = KeyState.LOCAL_KEY
                    return self._establish(peer, key)

            self._states[peer] = KeyState.PENDING_FETCH
            try:
                lookup = await self.lookup_directed_key(peer)
            except BaseException:
                self._states[peer] = KeyState.NO_KEY
                raise

            if isinstance(lookup, DirectedKeyFound):
                if lookup.role is KeyRole.RECEIVER:
                    key = self._unwrap(lookup)
                    if key is not None:
                        self.keystore.put(pair_id, aes.export_key(key))
                        logger.info("imported session key sent by %s", peer)
                        return self._establish(peer, key)
                else:
                    logger.info(
                        "found our own earlier key record for %s; it is not recoverable here", peer
                    )

            return await self._generate_and_send(peer, pair_id)

    async def _generate_and_send(self, peer: str, pair_id: str) -> bytes:
        key = aes.generate_key()
        self.keystore.put(pair_id, aes.export_key(key))
        self.cache.put(peer, key)
        try:
            try:
                peer_public_key = await self.directory.get_public_key(peer)
            except NotFound:
                raise PeerUnreachable(peer) from None
            wrapped = rsa.encrypt_with_public_key(peer_public_key, key)
            await self.directory.put_directed_key(self.username, peer, wrapped)
        except BaseException:
            # never keep a key the peer was not sent
            self.keystore.delete(pair_id)
            self.cache.discard(peer)
            self._states[peer] = KeyState.NO_KEY
            raise
        logger.info("generated and sent new session key to %s", peer)
        return self._establish(peer, key)

    # ============ Race resolution ============

    async def reconcile(self, peer: str) -> bool:
        """
        Settle divergent keys after both sides generated one concurrently.

        The key generated by the lexicographically lower username wins, so
        only the higher side ever switches. Returns True when the local key
        was replaced. No-op unless ``tie_break`` is enabled.
        """
        if not self.tie_break or self.username < peer:
            return False
        async with self._lock_for(peer):
            try:
                payload = await self.directory.get_directed_key(peer, self.username)
            except NotFound:
                return False
            record = DirectedKeyFound(
                role=KeyRole.RECEIVER, sender=peer, receiver=self.username, payload=payload
            )
            theirs = self._unwrap(record)
            if theirs is None:
                return False
            pair_id = self.pair_id(peer)
            ours = self.cache.get(peer)
            if ours is None:
                stored = self.keystore.get(pair_id)
                ours = aes.import_key(stored) if stored is not None else None
            if ours == theirs:
                return False
            self.keystore.put(pair_id, aes.export_key(theirs))
            self._establish(peer, theirs)
            logger.warning("adopted session key from %s after concurrent generation", peer)
            return True

    # ============ Lifetime ============

    def forget(self, peer: str) -> None:
        """Drop the cached key for one peer; the keystore copy stays."""
        self.cache.discard(peer)
        self._states.pop(peer, None)

    def clear_cache(self) -> None:
        self.cache.clear()
        self._states.clear()

    def clear_local_keys(self) -> None:
        self.keystore.clear()
        self.clear_cache()
