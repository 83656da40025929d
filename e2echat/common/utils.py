# e2echat/common/utils.py
import base64
import binascii
from datetime import datetime, timezone


def b64encode(b: bytes) -> str:
    return base64.b64encode(b).decode("utf-8")


def b64decode(s: str) -> bytes:
    """Strict decode; raises ValueError on characters outside the alphabet."""
    try:
        return base64.b64decode(s.encode("utf-8"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"invalid base64: {e}") from e


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def canonical_pair_id(user_a: str, user_b: str) -> str:
    """Order-independent id for a two-party conversation."""
    low, high = sorted((user_a, user_b))
    return f"{low}:{high}"
