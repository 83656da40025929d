# e2echat/storage/keystore.py
"""
Local durable session-key storage, scoped to one local identity.

Values are exported (base64) session keys keyed by canonical pair id.
Several processes of the same identity may share one FileKeyStore; there is
no locking, so the last writer wins.
"""

import abc
import json
import logging
import os
import tempfile
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class KeyStore(abc.ABC):
    @abc.abstractmethod
    def get(self, pair_id: str) -> Optional[str]: ...

    @abc.abstractmethod
    def put(self, pair_id: str, exported_key: str) -> None: ...

    @abc.abstractmethod
    def delete(self, pair_id: str) -> None: ...

    @abc.abstractmethod
    def clear(self) -> None: ...


class MemoryKeyStore(KeyStore):
    def __init__(self):
        self._keys: Dict[str, str] = {}

    def get(self, pair_id: str) -> Optional[str]:
        return self._keys.get(pair_id)

    def put(self, pair_id: str, exported_key: str) -> None:
        self._keys[pair_id] = exported_key

    def delete(self, pair_id: str) -> None:
        self._keys.pop(pair_id, None)

    def clear(self) -> None:
        self._keys.clear()


class FileKeyStore(KeyStore):
    """One JSON file per owner: ``<directory>/<owner>.json``."""

    def __init__(self, directory: str, owner: str):
        self.owner = owner
        self.path = os.path.join(directory, f"{owner}.json")

    def _load(self) -> Dict[str, str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            logger.warning("keystore %s is corrupt, ignoring it: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return data

    def _save(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{self.owner}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, pair_id: str) -> Optional[str]:
        return self._load().get(pair_id)

    def put(self, pair_id: str, exported_key: str) -> None:
        data = self._load()
        data[pair_id] = exported_key
        self._save(data)

    def delete(self, pair_id: str) -> None:
        data = self._load()
        if data.pop(pair_id, None) is not None:
            self._save(data)

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
