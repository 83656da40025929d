# e2echat/crypto/envelope.py
"""
Message envelope codec.

An envelope is ``base64(ciphertext||tag) + ":" + base64(nonce)``. Base64
never emits ``:``, so the split is unambiguous. The digest travels next to
the envelope and is computed over the plaintext.
"""

import logging
from typing import Callable, Iterable, List, Tuple

from e2echat.common.errors import CryptoError, MalformedEnvelope
from e2echat.common.protocol import OpenedMessage, StoredMessage
from e2echat.common.utils import b64decode, b64encode
from e2echat.crypto import aes
from e2echat.crypto.digest import digest as compute_digest
from e2echat.crypto.digest import digests_match

logger = logging.getLogger(__name__)

SEPARATOR = ":"


def encode_envelope(ciphertext: bytes, nonce: bytes) -> str:
    return f"{b64encode(ciphertext)}{SEPARATOR}{b64encode(nonce)}"


def decode_envelope(envelope: str) -> Tuple[bytes, bytes]:
    parts = envelope.split(SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise MalformedEnvelope(f"expected 2 parts, got {len(parts)}")
    try:
        return b64decode(parts[0]), b64decode(parts[1])
    except ValueError as e:
        raise MalformedEnvelope(str(e)) from e


def seal(plaintext: str, key: bytes) -> Tuple[str, str]:
    """Returns (envelope, digest)."""
    ciphertext, nonce = aes.encrypt_aes(key, plaintext.encode("utf-8"))
    return encode_envelope(ciphertext, nonce), compute_digest(plaintext)


def open_envelope(envelope: str, digest: str, key: bytes) -> Tuple[str, bool]:
    """
    Returns (plaintext, verified).

    Raises MalformedEnvelope or DecryptionError. A digest mismatch is not an
    error; it only clears ``verified``.
    """
    ciphertext, nonce = decode_envelope(envelope)
    raw = aes.decrypt_aes(key, ciphertext, nonce)
    try:
        plaintext = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedEnvelope("plaintext is not valid UTF-8") from e
    verified = digests_match(compute_digest(plaintext), digest)
    return plaintext, verified


def _undecryptable(record: StoredMessage, reason: str) -> OpenedMessage:
    return OpenedMessage(
        id=record.id,
        sender=record.sender,
        receiver=record.receiver,
        timestamp=record.timestamp,
        status="undecryptable",
        error=reason,
    )


def open_message(record: StoredMessage, key: bytes) -> OpenedMessage:
    """Never raises for crypto failures; they become an undecryptable result."""
    try:
        plaintext, verified = open_envelope(record.envelope, record.digest, key)
    except CryptoError as e:
        logger.warning("message %s could not be decrypted: %s", record.id, e)
        return _undecryptable(record, f"{type(e).__name__}: {e}")
    if not verified:
        logger.info("message %s decrypted but digest does not match", record.id)
    return OpenedMessage(
        id=record.id,
        sender=record.sender,
        receiver=record.receiver,
        timestamp=record.timestamp,
        status="ok",
        content=plaintext,
        verified=verified,
    )


def open_messages(
    records: Iterable[StoredMessage],
    key_for: Callable[[StoredMessage], bytes],
) -> List[OpenedMessage]:
    """Open a batch; one bad envelope never stops the rest."""
    return [open_message(r, key_for(r)) for r in records]
