"""
hush - Cryptography Module

All cryptographic operations for the hush file live here:

    1. Password + salt -> PBKDF2-HMAC-SHA256 -> password key (32 bytes)
    2. Password key wraps the tree's encryption key and MAC key
    3. Encryption key -> AES-256-GCM -> every private leaf
    4. MAC key -> HMAC-SHA256 -> checksum over the whole tree

The password key only ever wraps the two stored keys, so changing the password
means re-wrapping two leaves instead of re-encrypting the whole tree.
"""

import hmac
import hashlib
import json
import os
from typing import Iterable, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionError, FormatError, UnsupportedVersionError


# =============================================================================
# Configuration
# =============================================================================

KEY_SIZE = 32            # 256-bit keys for AES and HMAC
SALT_SIZE = 16           # double the RFC 8018 minimum
NONCE_SIZE = 12          # 96-bit nonce for AES-GCM
TAG_SIZE = 16            # 128-bit authentication tag

PAYLOAD_VERSION = 1

# PBKDF2 iteration count (about 80ms on a modern server)
PBKDF2_ITERATIONS = 2 << 15


# =============================================================================
# Key Material
# =============================================================================

def stretch_password(password: Union[str, bytes], salt: bytes) -> bytes:
    """
    Derive the password key from the user's password.

    Args:
        password: The user's password (str is encoded as UTF-8)
        salt: Random salt stored publicly in the hush file

    Returns:
        32-byte password key
    """
    if isinstance(password, str):
        password = password.encode('utf-8')
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password)


def create_key() -> bytes:
    """Generate a random 32-byte key."""
    return os.urandom(KEY_SIZE)


def create_salt() -> bytes:
    """Generate a random 16-byte salt."""
    return os.urandom(SALT_SIZE)


# =============================================================================
# Encryption (AES-256-GCM)
# =============================================================================

def encrypt(key: bytes, plaintext: bytes) -> bytes:
    """
    Seal plaintext into a versioned payload.

    Layout:
        version (1 byte) || nonce (12 bytes) || ciphertext + tag

    The version byte and nonce are authenticated as associated data, so
    tampering with either one fails decryption just like tampering with
    the ciphertext itself.

    Args:
        key: 32-byte encryption key
        plaintext: Data to encrypt

    Returns:
        The complete payload
    """
    # fresh nonce for every call; never reuse one under the same key
    nonce = os.urandom(NONCE_SIZE)
    prefix = bytes([PAYLOAD_VERSION]) + nonce
    return prefix + AESGCM(key).encrypt(nonce, plaintext, prefix)


def decrypt(key: bytes, payload: bytes) -> bytes:
    """
    Open a payload produced by encrypt().

    Raises:
        FormatError: payload too short to hold a version, nonce and tag
        UnsupportedVersionError: unknown version byte
        DecryptionError: wrong key, corrupted or tampered payload
    """
    if len(payload) < 1 + NONCE_SIZE + TAG_SIZE:
        raise FormatError(f"encrypted payload too short ({len(payload)} bytes)")
    version = payload[0]
    if version != PAYLOAD_VERSION:
        raise UnsupportedVersionError(f"unsupported payload version {version}")

    prefix = payload[:1 + NONCE_SIZE]
    nonce = prefix[1:]
    try:
        return AESGCM(key).decrypt(nonce, payload[len(prefix):], prefix)
    except InvalidTag as e:
        raise DecryptionError("incorrect password or corrupted data") from e


# =============================================================================
# Tree Checksum (HMAC-SHA256)
# =============================================================================

def canonical_json(obj) -> bytes:
    """
    Convert a JSON-compatible object to canonical bytes.

    Sorted keys, no whitespace, UTF-8 without escaping, so the same object
    always produces the same bytes.
    """
    json_str = json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return json_str.encode('utf-8')


def compute_checksum(mac_key: bytes, pairs: Iterable[Tuple[str, str]]) -> bytes:
    """
    Compute the tree checksum.

    Args:
        mac_key: 32-byte MAC key
        pairs: (path, encoded value) pairs, already in canonical order

    Returns:
        32-byte HMAC
    """
    message = canonical_json([[path, value] for path, value in pairs])
    return hmac.new(mac_key, message, hashlib.sha256).digest()


def constant_compare(a: bytes, b: bytes) -> bool:
    """Compare two byte strings in constant time."""
    return hmac.compare_digest(a, b)
