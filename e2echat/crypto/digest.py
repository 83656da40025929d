# e2echat/crypto/digest.py
import hashlib
import hmac
from typing import Union


def digest(data: Union[bytes, str]) -> str:
    """
    hex(SHA256(data)); text is hashed as UTF-8.
    Same input gives the same 64-char lowercase string on every platform.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def digests_match(a: str, b: str) -> bool:
    # constant-time and case-sensitive; digest() only emits lowercase
    try:
        return hmac.compare_digest(a.encode("ascii"), b.encode("ascii"))
    except (AttributeError, UnicodeEncodeError):
        return False
