# tests/test_envelope.py
from datetime import datetime, timezone

import pytest

from e2echat.common.errors import DecryptionError, MalformedEnvelope
from e2echat.common.protocol import StoredMessage
from e2echat.crypto import aes
from e2echat.crypto.digest import digest
from e2echat.crypto.envelope import (
    decode_envelope,
    encode_envelope,
    open_envelope,
    open_message,
    open_messages,
    seal,
)


def _record(envelope: str, digest_: str, msg_id: str = "1") -> StoredMessage:
    return StoredMessage(
        id=msg_id,
        sender="alice",
        receiver="bob",
        envelope=envelope,
        digest=digest_,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@pytest.mark.parametrize("text", ["hello", "", "emoji 🔐 and ünïcode", "a:b:c", "x" * 5000])
def test_seal_open_roundtrip(key, text):
    env, d = seal(text, key)
    assert open_envelope(env, d, key) == (text, True)


def test_envelope_has_two_parts(key):
    env, d = seal("hello", key)
    assert env.count(":") == 1
    assert d == digest("hello")


def test_tampered_ciphertext_is_detected(key):
    env, d = seal("hello", key)
    ct, nonce = decode_envelope(env)
    for i in range(len(ct)):
        flipped = ct[:i] + bytes([ct[i] ^ 0x80]) + ct[i + 1:]
        with pytest.raises(DecryptionError):
            open_envelope(encode_envelope(flipped, nonce), d, key)


def test_wrong_key(key):
    env, d = seal("hello", key)
    with pytest.raises(DecryptionError):
        open_envelope(env, d, aes.generate_key())


def test_imported_key_opens_envelope(key):
    env, d = seal("hello", key)
    assert open_envelope(env, d, aes.import_key(aes.export_key(key))) == ("hello", True)


def test_corrupted_digest_still_decrypts(key):
    env, _ = seal("hello", key)
    assert open_envelope(env, digest("something else"), key) == ("hello", False)
    assert open_envelope(env, "garbage", key) == ("hello", False)


@pytest.mark.parametrize("bad", ["", "onlyonepart", "a:b:c", ":AAAA", "AAAA:", "!!!:AAAA"])
def test_malformed_envelope(key, bad):
    with pytest.raises(MalformedEnvelope):
        open_envelope(bad, digest("x"), key)


def test_open_message_marks_undecryptable(key):
    result = open_message(_record("broken", "x"), key)
    assert result.status == "undecryptable"
    assert result.content is None
    assert result.verified is False
    assert result.display_text == "[Decryption failed]"
    assert "MalformedEnvelope" in result.error


def test_open_messages_batch_survives_bad_entries(key):
    good_env, good_digest = seal("first", key)
    other_env, other_digest = seal("wrong key", aes.generate_key())
    last_env, _ = seal("last", key)
    records = [
        _record(good_env, good_digest, "1"),
        _record("garbage", "x", "2"),
        _record(other_env, other_digest, "3"),
        _record(last_env, digest("tampered"), "4"),
    ]
    opened = open_messages(records, lambda _r: key)
    assert [m.id for m in opened] == ["1", "2", "3", "4"]
    assert [m.status for m in opened] == ["ok", "undecryptable", "undecryptable", "ok"]
    assert opened[0].content == "first" and opened[0].verified
    assert opened[3].content == "last" and not opened[3].verified
