"""
hush - Paths and Patterns

A Path names one leaf of the tree as a sequence of components, written
slash-separated on the command line ("paypal.com/work/password").

Patterns select paths for listing: each slash-separated sub-pattern must be
a substring of the path component at the same depth.

    $ hush ls pay/work
    paypal.com:
      work:
        password: '123456'
    bitpay.com:
      work:
        password: 42 bitcoins
"""

from typing import Tuple

from .errors import UsageError


SEPARATOR = "/"

CONFIGURATION = "hush-configuration"
CHECKSUM = "hush-tree-checksum"


class Path:
    """Immutable, hashable sequence of non-empty name components."""

    __slots__ = ("_crumbs",)

    def __init__(self, ui_path: str):
        crumbs = tuple(ui_path.split(SEPARATOR))
        if not ui_path or "" in crumbs:
            raise UsageError(f"invalid path {ui_path!r}: components must be non-empty")
        object.__setattr__(self, "_crumbs", crumbs)

    @classmethod
    def from_crumbs(cls, crumbs) -> "Path":
        return cls(SEPARATOR.join(crumbs))

    def __setattr__(self, name, value):
        raise AttributeError("Path is immutable")

    @property
    def crumbs(self) -> Tuple[str, ...]:
        return self._crumbs

    def __str__(self) -> str:
        return SEPARATOR.join(self._crumbs)

    def __repr__(self) -> str:
        return f"Path({str(self)!r})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, Path):
            return NotImplemented
        return self._crumbs == other._crumbs

    def __hash__(self) -> int:
        return hash(self._crumbs)

    def __len__(self) -> int:
        return len(self._crumbs)

    def parent(self) -> "Path":
        """Path without its last component, or itself at the root."""
        if len(self._crumbs) == 1:
            return self
        return Path.from_crumbs(self._crumbs[:-1])

    def has_descendant(self, other: "Path") -> bool:
        """
        True if other lies strictly below this path.

        Comparison is per component, so "a" is not an ancestor of "ab".
        """
        n = len(self._crumbs)
        return len(other._crumbs) > n and other._crumbs[:n] == self._crumbs

    def sort_key(self):
        # case-insensitive per component; ties broken by exact case so equal
        # keys always end up adjacent
        return tuple((c.lower(), c) for c in self._crumbs)

    def is_configuration(self) -> bool:
        return self._crumbs[0] == CONFIGURATION

    def is_reserved(self) -> bool:
        """Configuration and checksum paths are managed by hush itself."""
        return self._crumbs[0] in (CONFIGURATION, CHECKSUM)

    def is_checksum(self) -> bool:
        return self._crumbs == (CHECKSUM,)

    def is_salt(self) -> bool:
        return self._crumbs == (CONFIGURATION, "salt")

    def is_encryption_key(self) -> bool:
        return self._crumbs == (CONFIGURATION, "encryption-key")

    def is_mac_key(self) -> bool:
        return self._crumbs == (CONFIGURATION, "mac-key")

    def is_public(self) -> bool:
        """Public paths are stored unencrypted."""
        return self.is_salt() or self.is_checksum()

    def is_key_material(self) -> bool:
        """Key paths are encrypted with the password key, not the tree key."""
        return self.is_encryption_key() or self.is_mac_key()


SALT_PATH = Path(CONFIGURATION + "/salt")
ENCRYPTION_KEY_PATH = Path(CONFIGURATION + "/encryption-key")
MAC_KEY_PATH = Path(CONFIGURATION + "/mac-key")
CHECKSUM_PATH = Path(CHECKSUM)


def matches(path: Path, pattern: str) -> bool:
    """
    Does pattern select path?

    An all-lowercase pattern matches case-insensitively; a pattern with any
    uppercase letter must match exactly. The empty pattern selects everything.
    """
    if not pattern:
        return True
    crumbs = path.crumbs
    patterns = pattern.split(SEPARATOR)
    if len(patterns) > len(crumbs):
        return False

    ignore_case = pattern == pattern.lower()
    for sub, haystack in zip(patterns, crumbs):
        if ignore_case:
            haystack = haystack.lower()
        if sub not in haystack:
            return False
    return True
