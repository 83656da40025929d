# e2echat/common/protocol.py
from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

UNDECRYPTABLE_TEXT = "[Decryption failed]"


class StoredMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    sender: str
    receiver: str
    envelope: str    # base64(ct||tag) ":" base64(nonce)
    digest: str      # hex(SHA256(plaintext))
    timestamp: datetime


class KeyRole(str, Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


class DirectedKeyFound(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["found"] = "found"
    role: KeyRole    # role of the *local* identity in the record
    sender: str
    receiver: str
    payload: str     # base64 RSA-OAEP ciphertext of the session key


class DirectedKeyAbsent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["absent"] = "absent"


DirectedKeyLookup = Union[DirectedKeyFound, DirectedKeyAbsent]


class OpenedMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    sender: str
    receiver: str
    timestamp: datetime
    status: Literal["ok", "undecryptable"]
    content: Optional[str] = None
    verified: bool = False
    error: Optional[str] = Field(default=None, description="reason when undecryptable")

    @property
    def display_text(self) -> str:
        if self.status == "ok":
            return self.content or ""
        return UNDECRYPTABLE_TEXT
