# tests/test_crypto.py
import pytest

from e2echat.common.errors import DecryptionError
from e2echat.crypto import aes, rsa
from e2echat.crypto.digest import digest, digests_match


# ============ digest ============

def test_digest_is_sha256_hex():
    assert digest("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert digest(b"abc") == digest("abc")
    assert len(digest("")) == 64


def test_digest_hashes_text_as_utf8():
    assert digest("héllo") == digest("héllo".encode("utf-8"))
    assert digest("hello") != digest("hello ")


def test_digests_match():
    h = digest("hello")
    assert digests_match(h, digest("hello"))
    assert not digests_match(h, h.upper())
    assert not digests_match(h, digest("hellO"))
    assert not digests_match(h, "é" * 64)


# ============ RSA ============

def test_rsa_wrap_unwrap(keypair):
    public_key, private_key = keypair
    payload = aes.generate_key()
    wrapped = rsa.encrypt_with_public_key(public_key, payload)
    assert rsa.decrypt_with_private_key(private_key, wrapped) == payload


def test_rsa_keypairs_are_fresh(keypair, other_keypair):
    assert keypair[0] != other_keypair[0]


def test_rsa_public_key_is_portable_string(keypair):
    public_key, _ = keypair
    assert isinstance(public_key, str)
    assert rsa.load_public_key(public_key).key_size == 2048


def test_rsa_rejects_oversized_payload(keypair):
    public_key, _ = keypair
    limit = rsa.max_payload_size(rsa.load_public_key(public_key))
    assert limit == 190
    rsa.encrypt_with_public_key(public_key, b"x" * limit)
    with pytest.raises(ValueError):
        rsa.encrypt_with_public_key(public_key, b"x" * (limit + 1))


def test_rsa_wrong_private_key(keypair, other_keypair):
    wrapped = rsa.encrypt_with_public_key(keypair[0], b"secret")
    with pytest.raises(DecryptionError):
        rsa.decrypt_with_private_key(other_keypair[1], wrapped)


def test_rsa_corrupted_ciphertext(keypair):
    public_key, private_key = keypair
    with pytest.raises(DecryptionError):
        rsa.decrypt_with_private_key(private_key, "not base64 !!")
    with pytest.raises(DecryptionError):
        rsa.decrypt_with_private_key(private_key, "AAAA")


def test_rsa_invalid_public_key():
    with pytest.raises(ValueError):
        rsa.load_public_key("bm90IGEga2V5")


# ============ AES ============

def test_aes_export_import_roundtrip(key):
    restored = aes.import_key(aes.export_key(key))
    ct, nonce = aes.encrypt_aes(key, b"payload")
    assert aes.decrypt_aes(restored, ct, nonce) == b"payload"


def test_aes_import_rejects_wrong_length():
    with pytest.raises(ValueError):
        aes.import_key("AAAA")


def test_aes_nonce_is_fresh_per_call(key):
    ct1, n1 = aes.encrypt_aes(key, b"same")
    ct2, n2 = aes.encrypt_aes(key, b"same")
    assert len(n1) == aes.NONCE_SIZE
    assert n1 != n2
    assert ct1 != ct2


def test_aes_wrong_key(key):
    ct, nonce = aes.encrypt_aes(key, b"payload")
    with pytest.raises(DecryptionError):
        aes.decrypt_aes(aes.generate_key(), ct, nonce)


def test_aes_wrong_nonce(key):
    ct, _ = aes.encrypt_aes(key, b"payload")
    _, other_nonce = aes.encrypt_aes(key, b"payload")
    with pytest.raises(DecryptionError):
        aes.decrypt_aes(key, ct, other_nonce)


def test_aes_tampered_ciphertext(key):
    ct, nonce = aes.encrypt_aes(key, b"payload")
    tampered = bytes([ct[0] ^ 0x01]) + ct[1:]
    with pytest.raises(DecryptionError):
        aes.decrypt_aes(key, tampered, nonce)
