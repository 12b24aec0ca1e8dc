"""
Cipher configuration.

The salt and iteration count must be identical for every participant of a
conversation, otherwise the two sides derive different keys.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field


DEFAULT_SALT = b"chat-app-salt"
DEFAULT_ITERATIONS = 100000
PLACEHOLDER_TEXT = "[Unable to decrypt message]"


class CipherConfig(BaseModel):
    """Fixed parameters shared by all conversations"""
    model_config = ConfigDict(frozen=True)

    salt: bytes = Field(default=DEFAULT_SALT, min_length=1)
    iterations: int = Field(default=DEFAULT_ITERATIONS, ge=100000)
    key_length: int = Field(default=32, ge=32, le=32)  # AES-256 only
    iv_length: int = Field(default=12, ge=12, le=12)  # GCM nonce size
    heuristic_min_length: int = Field(default=20, ge=0)
    cache_keys: bool = True
    key_cache_size: int = Field(default=256, ge=1)
    placeholder: str = PLACEHOLDER_TEXT

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "CipherConfig":
        """
        Build a config from environment variables (and a .env file, if any).

        Recognised variables:
            CHAT_CIPHER_SALT: salt, as UTF-8 text
            CHAT_CIPHER_ITERATIONS: PBKDF2 iteration count
            CHAT_CIPHER_CACHE_KEYS: "0"/"false" disables the key cache
        """
        load_dotenv(dotenv_path)

        values = {}
        salt = os.getenv("CHAT_CIPHER_SALT")
        if salt:
            values["salt"] = salt.encode("utf-8")
        iterations = os.getenv("CHAT_CIPHER_ITERATIONS")
        if iterations:
            values["iterations"] = int(iterations)
        cache_keys = os.getenv("CHAT_CIPHER_CACHE_KEYS")
        if cache_keys:
            values["cache_keys"] = cache_keys.strip().lower() not in ("0", "false", "no", "off")
        return cls(**values)
