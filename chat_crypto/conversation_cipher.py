"""
Conversation Cipher

Deterministic per-conversation encryption for two-party chats. Both
participants derive the same AES-256-GCM key from their two user ids, so no
key exchange is needed. This gives casual end-to-end obfuscation of stored
message bodies; it is not forward secret and anyone who knows both ids and the
shared salt can derive the key.

Token layout (before base64):

    IV (12 bytes) || ciphertext || GCM tag (16 bytes)
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Optional

from .config import CipherConfig
from .primitives import (
    CryptoBackend,
    CipherError,
    DecodingError,
    encode_token,
    decode_token,
    decode_token_lenient,
    split_token,
    constant_time_compare,
)

log = logging.getLogger(__name__)


def canonical_pair(id_a: str, id_b: str) -> str:
    """Sort the two ids and join them without a separator"""
    return "".join(sorted([id_a, id_b]))


def is_likely_encrypted(text, min_length: int = 20) -> bool:
    """
    Guess whether stored text is a cipher token.

    Advisory only: the stored `is_encrypted` flag is authoritative. Short
    tokens can be reported as plaintext, and long plaintext that happens to be
    valid base64 can be reported as encrypted.

    Args:
        text: Stored message body
        min_length: Text must be strictly longer than this

    Returns:
        True if the text base64-decodes (atob rules) and is longer than `min_length`
    """
    if not text or not isinstance(text, str):
        return False
    try:
        decoded = decode_token_lenient(text)
    except DecodingError:
        return False
    return len(decoded) > 0 and len(text) > min_length


class DerivedKey:
    """
    Symmetric key for one participant pair.

    The key material is not exposed; the key can only be used through the
    backend that produced it.
    """

    __slots__ = ("_material", "_backend")

    def __init__(self, material: bytes, backend: CryptoBackend):
        self._material = material
        self._backend = backend

    def encrypt(self, iv: bytes, plaintext: bytes) -> bytes:
        return self._backend.aead_encrypt(self._material, iv, plaintext)

    def decrypt(self, iv: bytes, ciphertext: bytes) -> bytes:
        return self._backend.aead_decrypt(self._material, iv, ciphertext)

    def __eq__(self, other):
        if not isinstance(other, DerivedKey):
            return NotImplemented
        return constant_time_compare(self._material, other._material)

    def __hash__(self):
        return hash(self._material)

    def __repr__(self):
        return "DerivedKey(<hidden>)"


class ConversationCipher:
    """
    Encrypts and decrypts message bodies for a pair of participants.

    All operations are coroutines; key derivation runs in a worker thread so
    the event loop is not blocked by PBKDF2.
    """

    def __init__(self, config: Optional[CipherConfig] = None, backend: Optional[CryptoBackend] = None):
        """
        Initialize the cipher.

        Args:
            config: Salt, iteration count and heuristic settings
            backend: Crypto primitive provider (defaults to `cryptography`)
        """
        self.config = config or CipherConfig()
        self.backend = backend or CryptoBackend()
        self._key_cache: "OrderedDict[str, DerivedKey]" = OrderedDict()

    async def derive_shared_key(self, id_a: str, id_b: str) -> DerivedKey:
        """
        Derive the conversation key for two participants.

        The ids are sorted first, so argument order does not matter.

        Raises:
            CryptoUnavailable: If the backend lacks PBKDF2 or AES-GCM
        """
        canonical = canonical_pair(id_a, id_b)

        if self.config.cache_keys:
            cached = self._key_cache.get(canonical)
            if cached is not None:
                self._key_cache.move_to_end(canonical)
                return cached

        material = await asyncio.to_thread(
            self.backend.derive_key,
            canonical.encode("utf-8"),
            self.config.salt,
            self.config.iterations,
            self.config.key_length,
        )
        key = DerivedKey(material, self.backend)

        if self.config.cache_keys:
            self._key_cache[canonical] = key
            self._key_cache.move_to_end(canonical)
            # least recently used keys go first
            while len(self._key_cache) > self.config.key_cache_size:
                self._key_cache.popitem(last=False)
        return key

    def clear_key_cache(self):
        """Forget all cached conversation keys"""
        self._key_cache.clear()

    async def encrypt(self, plaintext: str, id_a: str, id_b: str) -> Optional[str]:
        """
        Encrypt a message for the conversation between `id_a` and `id_b`.

        Never raises. A None result means encryption failed and the caller
        must not treat the return value as a token.

        Returns:
            Base64 token, or None on failure
        """
        try:
            key = await self.derive_shared_key(id_a, id_b)
            iv = self.backend.random_bytes(self.config.iv_length)
            ciphertext = key.encrypt(iv, plaintext.encode("utf-8"))
            return encode_token(iv, ciphertext)
        except Exception as e:
            log.warning("Encryption failed: %s: %s", type(e).__name__, e)
            return None

    async def decrypt(self, token: str, id_a: str, id_b: str) -> str:
        """
        Decrypt a token produced by `encrypt`.

        Args:
            token: Base64 token
            id_a: One participant id
            id_b: The other participant id (order does not matter)

        Returns:
            Decrypted plaintext

        Raises:
            DecodingError: Token is not base64, or plaintext is not UTF-8
            MalformedToken: Token shorter than the IV
            AuthenticationFailure: Wrong participant pair or tampered token
        """
        raw = decode_token(token)
        iv, ciphertext = split_token(raw, self.config.iv_length)

        key = await self.derive_shared_key(id_a, id_b)
        plaintext = key.decrypt(iv, ciphertext)

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodingError(f"Decrypted payload is not UTF-8: {e}")

    async def decrypt_or_placeholder(self, token: str, id_a: str, id_b: str) -> str:
        """Decrypt, or return the configured placeholder if decryption fails"""
        try:
            return await self.decrypt(token, id_a, id_b)
        except CipherError as e:
            log.warning("Decryption failed: %s: %s", type(e).__name__, e)
            return self.config.placeholder

    def is_likely_encrypted(self, text) -> bool:
        """`is_likely_encrypted` using the configured length threshold"""
        return is_likely_encrypted(text, self.config.heuristic_min_length)
