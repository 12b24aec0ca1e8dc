"""
Cryptographic module for end-to-end encrypted chat.

Implements a deterministic two-party conversation cipher:
- PBKDF2-HMAC-SHA256 key derivation from the sorted participant ids
- AES-256-GCM message encryption with a random 12-byte IV per message
- Base64 tokens carrying IV || ciphertext || tag
"""

from .config import CipherConfig
from .conversation_cipher import (
    ConversationCipher,
    DerivedKey,
    canonical_pair,
    is_likely_encrypted
)
from .primitives import (
    CryptoBackend,
    CipherError,
    CryptoUnavailable,
    DecodingError,
    MalformedToken,
    AuthenticationFailure
)

__all__ = [
    'CipherConfig',
    'ConversationCipher',
    'DerivedKey',
    'canonical_pair',
    'is_likely_encrypted',
    'CryptoBackend',
    'CipherError',
    'CryptoUnavailable',
    'DecodingError',
    'MalformedToken',
    'AuthenticationFailure'
]
