# e2echat/crypto/aes.py
import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from e2echat.common.errors import DecryptionError
from e2echat.common.utils import b64decode, b64encode

KEY_SIZE = 32    # AES-256
NONCE_SIZE = 12  # 96-bit GCM nonce


def generate_key() -> bytes:
    return AESGCM.generate_key(bit_length=KEY_SIZE * 8)


def export_key(key: bytes) -> str:
    return b64encode(key)


def import_key(exported: str) -> bytes:
    key = b64decode(exported)
    if len(key) != KEY_SIZE:
        raise ValueError(f"session key must be {KEY_SIZE} bytes, got {len(key)}")
    return key


def encrypt_aes(key: bytes, plaintext: bytes) -> Tuple[bytes, bytes]:
    """
    AES-256-GCM.
    Returns (ciphertext||tag, nonce). The nonce is drawn here on every call
    and cannot be supplied by the caller.
    """
    nonce = os.urandom(NONCE_SIZE)
    return AESGCM(key).encrypt(nonce, plaintext, None), nonce


def decrypt_aes(key: bytes, ciphertext: bytes, nonce: bytes) -> bytes:
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise DecryptionError("authentication tag mismatch") from e
    except ValueError as e:
        # wrong key length or empty nonce
        raise DecryptionError(str(e)) from e
