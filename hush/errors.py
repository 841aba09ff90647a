"""
hush - Error Types

Every failure the core raises derives from HushError, so the CLI can report
any of them with one except clause and exit non-zero.
"""


class HushError(Exception):
    """Base class for all hush errors."""


class FormatError(HushError):
    """The hush file, or a value inside it, is malformed."""


class DecodeError(FormatError):
    """A leaf is not valid base64."""


class DecryptionError(HushError):
    """AEAD authentication failed: wrong key, corruption or tampering."""


class UnsupportedVersionError(FormatError, DecryptionError):
    """A ciphertext payload carries a version byte this code can't read."""


class IntegrityError(HushError):
    """The tree checksum is missing or doesn't match the tree contents."""


class FilePermissionError(HushError):
    """The hush file has loose permissions that couldn't be corrected."""


class UsageError(HushError):
    """Bad path, pattern or command input from the caller."""
