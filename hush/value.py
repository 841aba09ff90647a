"""
hush - Leaf Values

A leaf value is in exactly one of three states:

    Encoded     base64 text, as stored in the hush file
    Plaintext   raw bytes meaningful to the user
    Ciphertext  raw bytes meaningful only to the encryption layer

Values never change state in place. Every transformation returns a new value,
so a stale reference can't silently turn into plaintext on its way to disk.

    Encoded --decode--> Ciphertext --plaintext(key)--> Plaintext   (private)
    Encoded --decode--> Plaintext                                  (public)
"""

import base64
import binascii
import enum
from dataclasses import dataclass, field

from . import crypto
from .errors import DecodeError


class Privacy(enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"


PUBLIC = Privacy.PUBLIC
PRIVATE = Privacy.PRIVATE


class Value:
    """Base class for the three value states."""

    privacy: Privacy

    @property
    def is_public(self) -> bool:
        return self.privacy is PUBLIC

    def decode(self) -> "Value":
        return self

    def encode(self) -> "Value":
        return self

    def ciphertext(self, key: bytes) -> "Value":
        return self

    def plaintext(self, key: bytes) -> "Value":
        return self


@dataclass(frozen=True)
class Encoded(Value):
    text: str
    privacy: Privacy

    def decode(self) -> Value:
        """
        Reverse the base64 encoding.

        Public values decode to Plaintext, private values to Ciphertext.

        Raises:
            DecodeError: text isn't valid base64
        """
        try:
            data = base64.b64decode(self.text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"invalid base64 value: {e}") from e
        if self.is_public:
            return Plaintext(data, self.privacy)
        return Ciphertext(data, self.privacy)

    def ciphertext(self, key: bytes) -> Value:
        return self.decode().ciphertext(key)

    def plaintext(self, key: bytes) -> Value:
        return self.decode().plaintext(key)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class Plaintext(Value):
    data: bytes = field(repr=False)
    privacy: Privacy

    def encode(self) -> Value:
        if not self.is_public:
            raise ValueError("refusing to encode private plaintext; encrypt it first")
        return Encoded(_b64(self.data), self.privacy)

    def ciphertext(self, key: bytes) -> Value:
        """Encrypt with key. Public values stay as they are."""
        if self.is_public:
            return self
        return Ciphertext(crypto.encrypt(key, self.data), self.privacy)

    def __str__(self) -> str:
        return self.data.decode('utf-8', errors='replace')


@dataclass(frozen=True)
class Ciphertext(Value):
    data: bytes = field(repr=False)
    privacy: Privacy

    def encode(self) -> Value:
        if self.is_public:
            raise ValueError("public value should never be ciphertext")
        return Encoded(_b64(self.data), self.privacy)

    def plaintext(self, key: bytes) -> Value:
        """
        Decrypt with key.

        Raises:
            DecryptionError: wrong key or tampered payload
            FormatError: truncated payload or unknown version byte
        """
        return Plaintext(crypto.decrypt(key, self.data), self.privacy)

    def __str__(self) -> str:
        return _b64(self.data)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')
