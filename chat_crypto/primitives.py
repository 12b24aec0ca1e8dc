"""
Cryptographic Primitives for Conversation Encryption

This module provides the low-level operations the conversation cipher is built
on: PBKDF2 key stretching, AES-256-GCM, secure random IVs and the base64 token
encoding. They are grouped behind a pluggable backend so callers (and tests)
can swap the platform capability without touching the cipher itself.
"""

import os
import base64
import binascii
import hmac

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


class CipherError(Exception):
    """Base exception for conversation cipher errors"""
    pass


class CryptoUnavailable(CipherError):
    """The platform lacks a required primitive"""
    pass


class DecodingError(CipherError):
    """Token (or decrypted payload) is not validly encoded"""
    pass


class MalformedToken(CipherError):
    """Decoded token is too short to contain an IV"""
    pass


class AuthenticationFailure(CipherError):
    """AEAD tag verification failed: wrong key or tampered data"""
    pass


class CryptoBackend:
    """
    Default backend built on the `cryptography` package.

    Subclass and override `random_bytes` to inject deterministic IVs, or any
    other method to route the primitive elsewhere.
    """

    def derive_key(self, password: bytes, salt: bytes, iterations: int, length: int = 32) -> bytes:
        """
        Stretch password material into a symmetric key using PBKDF2-HMAC-SHA256.

        Args:
            password: Password material
            salt: Fixed salt
            iterations: PBKDF2 iteration count
            length: Output length in bytes

        Returns:
            Derived key bytes

        Raises:
            CryptoUnavailable: If PBKDF2/SHA-256 is not supported
        """
        try:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=length,
                salt=salt,
                iterations=iterations,
            )
            return kdf.derive(password)
        except UnsupportedAlgorithm as e:
            raise CryptoUnavailable(f"PBKDF2-HMAC-SHA256 unavailable: {e}")

    def random_bytes(self, length: int) -> bytes:
        """Return `length` bytes from the OS CSPRNG"""
        return os.urandom(length)

    def aead_encrypt(self, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        """
        Encrypt with AES-256-GCM.

        Returns:
            ciphertext + tag (16 bytes)
        """
        try:
            aesgcm = AESGCM(key)
        except UnsupportedAlgorithm as e:
            raise CryptoUnavailable(f"AES-GCM unavailable: {e}")
        return aesgcm.encrypt(iv, plaintext, None)

    def aead_decrypt(self, key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        """
        Decrypt with AES-256-GCM, verifying the tag.

        Raises:
            AuthenticationFailure: If the tag does not verify
        """
        try:
            aesgcm = AESGCM(key)
        except UnsupportedAlgorithm as e:
            raise CryptoUnavailable(f"AES-GCM unavailable: {e}")
        try:
            return aesgcm.decrypt(iv, ciphertext, None)
        except InvalidTag:
            raise AuthenticationFailure("Authentication tag verification failed")


def encode_token(iv: bytes, ciphertext: bytes) -> str:
    """Encode IV || ciphertext as a standard base64 string"""
    return base64.b64encode(iv + ciphertext).decode("ascii")


def decode_token(token: str) -> bytes:
    """
    Decode a base64 token back to raw bytes.

    Args:
        token: Printable token

    Returns:
        Decoded bytes

    Raises:
        DecodingError: If the token is not valid standard base64
    """
    if not isinstance(token, str):
        raise DecodingError(f"Token must be a string, got {type(token).__name__}")
    try:
        return base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodingError(f"Invalid base64 token: {e}")


def decode_token_lenient(text: str) -> bytes:
    """
    Decode base64 the way browser `atob` does.

    ASCII whitespace is ignored and missing padding is restored. A length
    that leaves a single dangling character is rejected.

    Raises:
        DecodingError: If the text is not decodable
    """
    if not isinstance(text, str):
        raise DecodingError(f"Token must be a string, got {type(text).__name__}")
    stripped = "".join(ch for ch in text if ch not in " \t\n\f\r")
    if len(stripped) % 4 == 0:
        if stripped.endswith("=="):
            stripped = stripped[:-2]
        elif stripped.endswith("="):
            stripped = stripped[:-1]
    if len(stripped) % 4 == 1:
        raise DecodingError("Invalid base64 length")
    return decode_token(stripped + "=" * (-len(stripped) % 4))


def split_token(raw: bytes, iv_length: int = 12):
    """
    Split decoded token bytes into (iv, ciphertext).

    Raises:
        MalformedToken: If fewer than `iv_length` bytes are present
    """
    if len(raw) < iv_length:
        raise MalformedToken(f"Token too short: {len(raw)} bytes, need at least {iv_length}")
    return raw[:iv_length], raw[iv_length:]


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """
    Constant-time comparison to prevent timing attacks.

    Args:
        a: First byte string
        b: Second byte string

    Returns:
        True if equal, False otherwise
    """
    return hmac.compare_digest(a, b)
