# e2echat/common/config.py
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    keystore_dir: str = "keystore"
    rsa_key_size: int = 2048
    poll_interval: float = 3.0
    tie_break: bool = False
    log_level: str = "INFO"


def load_settings() -> Settings:
    return Settings(
        keystore_dir=os.getenv("E2ECHAT_KEYSTORE_DIR", "keystore"),
        rsa_key_size=int(os.getenv("E2ECHAT_RSA_KEY_SIZE", "2048")),
        poll_interval=float(os.getenv("E2ECHAT_POLL_INTERVAL", "3.0")),
        tie_break=_env_bool("E2ECHAT_TIE_BREAK", False),
        log_level=os.getenv("E2ECHAT_LOG_LEVEL", "INFO").upper(),
    )
