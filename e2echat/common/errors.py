# e2echat/common/errors.py
from typing import Optional


class ChatError(Exception):
    """Base class for every error raised by e2echat."""


# ============ Directory ============

class DirectoryError(ChatError):
    pass


class NotFound(DirectoryError):
    """A referenced identity or record is absent from the directory."""

    def __init__(self, identity: str, what: str = "identity"):
        super().__init__(f"{what} not found: {identity}")
        self.identity = identity
        self.what = what


class DirectoryUnavailable(DirectoryError):
    """Transport or storage failure behind the directory."""


# ============ Key exchange ============

class PeerUnreachable(ChatError):
    def __init__(self, peer: str):
        super().__init__(f"peer {peer!r} has no published public key")
        self.peer = peer


# ============ Crypto ============

class CryptoError(ChatError):
    pass


class DecryptionError(CryptoError):
    """Wrong key, wrong nonce, or corrupted ciphertext."""


class MalformedEnvelope(CryptoError):
    pass


# ============ Session ============

class RegistrationError(ChatError):
    def __init__(self, reason: str, username: Optional[str] = None):
        super().__init__(reason)
        self.username = username


class AuthenticationError(ChatError):
    pass


class NotLoggedIn(ChatError):
    pass
