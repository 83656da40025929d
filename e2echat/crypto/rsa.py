# e2echat/crypto/rsa.py
from typing import Tuple

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from e2echat.common.errors import DecryptionError
from e2echat.common.utils import b64decode, b64encode

PUBLIC_EXPONENT = 65537
_HASH_LEN = 32  # SHA-256


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def generate_keypair(key_size: int = 2048) -> Tuple[str, rsa.RSAPrivateKey]:
    """
    RSA-OAEP key pair.
    Returns (public key as base64 DER SubjectPublicKeyInfo, private key object).
    The private key is never serialized by this module.
    """
    key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)
    return export_public_key(key.public_key()), key


def export_public_key(public_key: rsa.RSAPublicKey) -> str:
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return b64encode(der)


def load_public_key(public_key_b64: str) -> rsa.RSAPublicKey:
    try:
        key = serialization.load_der_public_key(b64decode(public_key_b64))
    except (ValueError, UnsupportedAlgorithm) as e:
        raise ValueError(f"invalid public key: {e}") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("public key is not an RSA key")
    return key


def max_payload_size(public_key: rsa.RSAPublicKey) -> int:
    """OAEP ceiling: k - 2*hLen - 2 bytes."""
    return public_key.key_size // 8 - 2 * _HASH_LEN - 2


def encrypt_with_public_key(public_key_b64: str, plaintext: bytes) -> str:
    """
    Wrap a short payload (a session key) for the holder of the private key.
    Bulk content must go through AES, never through here.
    """
    public_key = load_public_key(public_key_b64)
    limit = max_payload_size(public_key)
    if len(plaintext) > limit:
        raise ValueError(f"payload of {len(plaintext)} bytes exceeds RSA-OAEP limit of {limit}")
    return b64encode(public_key.encrypt(plaintext, _oaep()))


def decrypt_with_private_key(private_key: rsa.RSAPrivateKey, ciphertext_b64: str) -> bytes:
    try:
        ciphertext = b64decode(ciphertext_b64)
        return private_key.decrypt(ciphertext, _oaep())
    except ValueError as e:
        raise DecryptionError(f"RSA unwrap failed: {e}") from e
