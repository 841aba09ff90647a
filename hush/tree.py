"""
hush - Tree Module

This file handles:
- Parsing the hush file into branches (path -> value)
- Unlocking the tree with a password
- Bulk encrypt/decrypt/encode/decode transforms
- The whole-tree checksum
- Saving atomically, and printing for humans

File structure (YAML, leaves are base64):

    hush-configuration:
      encryption-key: AXx0...   # wrapped by the password key
      mac-key: AfI3...          # wrapped by the password key
      salt: 9mQ2...             # public
    paypal.com:
      personal:
        password: AQ5k...       # encrypted by the encryption key
    hush-tree-checksum: u7Hs... # HMAC over everything above
"""

import logging
import os
import shutil
import stat
import tempfile
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, TextIO

import yaml

from . import crypto
from .errors import (
    DecryptionError,
    FilePermissionError,
    FormatError,
    HushError,
    IntegrityError,
    UnsupportedVersionError,
    UsageError,
)
from .path import (
    CHECKSUM,
    CHECKSUM_PATH,
    ENCRYPTION_KEY_PATH,
    MAC_KEY_PATH,
    SALT_PATH,
    SEPARATOR,
    Path,
    matches,
)
from .value import PRIVATE, PUBLIC, Encoded, Plaintext, Value

logger = logging.getLogger(__name__)

SAFE_PERM = 0o600  # rw- --- ---


@dataclass(frozen=True)
class Branch:
    path: Path
    value: Value


# =============================================================================
# TREE CLASS
# =============================================================================

class Tree:
    """
    All the branches of a hush file.

    Branches live in a list with a dict index from Path to list position.
    Deleted branches leave a tombstone (a freed slot) which iteration skips
    and sort() compacts away.

    Usage:
        tree = Tree.load("/home/me/.hush")
        tree.unlock("hunter2")
        tree.set(Path("site/user"), Plaintext(b"alice", PRIVATE))
        tree.save()
    """

    def __init__(self, filename: Optional[str] = None):
        self.filename = filename
        self.branches: List[Optional[Branch]] = []
        self.index: Dict[Path, int] = {}
        self.free: Set[int] = set()

        # Keys (only present when unlocked)
        self.encryption_key: Optional[bytes] = None
        self.mac_key: Optional[bytes] = None

    # =========================================================================
    # LOADING
    # =========================================================================

    @classmethod
    def load(cls, filename: str) -> "Tree":
        """
        Read a hush file from disk.

        Loose permissions are tightened to 0600 before reading.

        Raises:
            FileNotFoundError: no hush file at filename
            FilePermissionError: permissions couldn't be fixed
            FormatError: the file isn't a valid hush document
        """
        st = os.stat(filename)
        if stat.S_IMODE(st.st_mode) != SAFE_PERM:
            logger.warning("hush file has loose permissions. fixing.")
            try:
                os.chmod(filename, SAFE_PERM)
            except OSError as e:
                raise FilePermissionError(f"can't fix permissions on {filename}: {e}") from e

        try:
            with open(filename, encoding='utf-8') as f:
                text = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise HushError(f"can't read hush file {filename}: {e}") from e

        tree = cls.from_document(text, filename)
        logger.debug("loaded %d branches from %s", len(tree), filename)
        return tree

    @classmethod
    def from_document(cls, text: str, filename: Optional[str] = None) -> "Tree":
        """Parse hush file contents. Every value starts out Encoded."""
        try:
            doc = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise FormatError(f"can't parse hush file: {e}") from e

        tree = cls(filename)
        if doc is None:
            return tree
        if not isinstance(doc, dict):
            raise FormatError("hush file must contain a mapping at the top level")
        tree._add_items(doc, ())
        return tree

    def _add_items(self, items: dict, crumbs: tuple) -> None:
        for key, val in items.items():
            where = SEPARATOR.join(crumbs) or "top level"
            if not isinstance(key, str) or not key or SEPARATOR in key:
                raise FormatError(f"invalid key {key!r} at {where}")
            here = crumbs + (key,)
            if isinstance(val, dict):
                self._add_items(val, here)
            elif isinstance(val, str):
                p = Path.from_crumbs(here)
                self.set(p, Encoded(val, PUBLIC if p.is_public() else PRIVATE))
            else:
                raise FormatError(
                    f"unexpected {type(val).__name__} at {SEPARATOR.join(here)}"
                )

    # =========================================================================
    # BRANCH ACCESS
    # =========================================================================

    def __iter__(self) -> Iterator[Branch]:
        for i, branch in enumerate(self.branches):
            if i not in self.free:
                yield branch

    def __len__(self) -> int:
        return len(self.branches) - len(self.free)

    def __contains__(self, path: Path) -> bool:
        return path in self.index

    def get(self, path: Path) -> Optional[Value]:
        i = self.index.get(path)
        if i is None:
            return None
        return self.branches[i].value

    def set(self, path: Path, value: Value) -> None:
        i = self.index.get(path)
        if i is None:
            self.branches.append(Branch(path, value))
            self.index[path] = len(self.branches) - 1
        else:
            self.branches[i] = Branch(path, value)

    def delete(self, *paths: Path) -> int:
        """
        Remove each path and all its descendants.

        Returns:
            Number of branches removed
        """
        n = 0
        for p in paths:
            for i, branch in enumerate(self.branches):
                if i in self.free:
                    continue
                if p == branch.path or p.has_descendant(branch.path):
                    self.branches[i] = None
                    del self.index[branch.path]
                    self.free.add(i)
                    n += 1
        return n

    def conflicts(self, path: Path) -> Optional[Path]:
        """
        Find a branch that stops path from becoming a leaf.

        A path can't be both a leaf and a subtree, so this returns an
        existing leaf above path, or one below it, or None.
        """
        for n in range(1, len(path)):
            ancestor = Path.from_crumbs(path.crumbs[:n])
            if ancestor in self.index:
                return ancestor
        for branch in self:
            if path.has_descendant(branch.path):
                return branch.path
        return None

    def empty(self) -> "Tree":
        """A tree without branches that shares this tree's keys and filename."""
        t = Tree(self.filename)
        t.encryption_key = self.encryption_key
        t.mac_key = self.mac_key
        return t

    def sort(self) -> None:
        """Sort branches by path, case-insensitively, and drop tombstones."""
        live = sorted(self, key=lambda b: b.path.sort_key())
        self.branches = live
        self.free = set()
        self.index = {b.path: i for i, b in enumerate(live)}

    def filter(self, pattern: str) -> "Tree":
        """A subtree whose branches all match pattern."""
        keep = self.empty()
        for branch in self:
            if matches(branch.path, pattern):
                keep.set(branch.path, branch.value)
        return keep

    # =========================================================================
    # TRANSFORMS
    # =========================================================================

    def encrypt(self) -> "Tree":
        """A copy of this tree with all private leaves encrypted."""
        t = self.empty()
        for branch in self:
            p, v = branch.path, branch.value
            if p.is_public() or p.is_key_material():
                t.set(p, v)
                continue
            t.set(p, v.ciphertext(self._require_key(self.encryption_key)))
        return t

    def decrypt(self) -> "Tree":
        """
        A copy of this tree with all private leaves decrypted.

        Raises:
            DecryptionError: a leaf fails authentication (the path is named)
        """
        t = self.empty()
        for branch in self:
            p, v = branch.path, branch.value
            if p.is_public() or p.is_key_material():
                t.set(p, v)
                continue
            try:
                v = v.plaintext(self._require_key(self.encryption_key))
            except (DecryptionError, FormatError) as e:
                raise type(e)(f"{p}: {e}") from e
            t.set(p, v)
        return t

    def encode(self) -> "Tree":
        """A copy of this tree with every leaf base64 encoded."""
        t = self.empty()
        for branch in self:
            t.set(branch.path, branch.value.encode())
        return t

    def decode(self) -> "Tree":
        """A copy of this tree with every leaf base64 decoded."""
        t = self.empty()
        for branch in self:
            t.set(branch.path, branch.value.decode())
        return t

    @staticmethod
    def _require_key(key: Optional[bytes]) -> bytes:
        if key is None:
            raise HushError("tree is locked. Call unlock() first.")
        return key

    # =========================================================================
    # INTEGRITY
    # =========================================================================

    def checksum(self) -> bytes:
        """
        HMAC over every branch except the checksum itself.

        Branches are visited in sorted order, so insertion order never
        changes the result. Values are covered in their encoded form.
        """
        if self.mac_key is None or len(self.mac_key) < crypto.KEY_SIZE:
            raise IntegrityError("trying to calculate checksum without a MAC key")
        covered = sorted(
            (b for b in self if not b.path.is_checksum()),
            key=lambda b: b.path.sort_key(),
        )
        pairs = [(str(b.path), str(b.value.encode())) for b in covered]
        return crypto.compute_checksum(self.mac_key, pairs)

    def unlock(self, password) -> None:
        """
        Derive keys from password and verify the tree checksum.

        Raises:
            FormatError: salt or a key is missing or malformed
            DecryptionError: the password can't unwrap the stored keys
            IntegrityError: the checksum is missing or doesn't match
        """
        salt = self.get(SALT_PATH)
        if salt is None:
            raise FormatError("hush file missing salt")
        pw_key = crypto.stretch_password(password, salt.decode().data)

        encryption_key = self._unwrap(ENCRYPTION_KEY_PATH, pw_key, "encryption key")
        mac_key = self._unwrap(MAC_KEY_PATH, pw_key, "MAC key")

        # now that we have a password, we can verify the checksum
        stored = self.get(CHECKSUM_PATH)
        if stored is None:
            raise IntegrityError("hush file has no checksum")
        self.mac_key = mac_key
        expect = self.checksum()
        if not crypto.constant_compare(stored.decode().data, expect):
            self.mac_key = None
            raise IntegrityError(
                "checksum doesn't match. "
                "Wrong password, or file modified without hush command?"
            )
        self.encryption_key = encryption_key
        logger.debug("unlocked %s", self.filename)

    def _unwrap(self, path: Path, pw_key: bytes, what: str) -> bytes:
        value = self.get(path)
        if value is None:
            raise FormatError(f"hush file missing {what}")
        try:
            key = value.plaintext(pw_key).data
        except UnsupportedVersionError:
            raise
        except DecryptionError as e:
            raise DecryptionError(f"incorrect password or corrupted {what}") from e
        if len(key) != crypto.KEY_SIZE:
            raise FormatError(f"{what} has wrong length ({len(key)} bytes)")
        return key

    # =========================================================================
    # OUTPUT
    # =========================================================================

    def to_document(self, include_configuration: bool = True) -> dict:
        """
        Nest branches into a dict of dicts, one level per path component.

        The checksum branch is always left out; save() appends a fresh one.
        """
        doc: dict = {}
        for branch in self:
            p = branch.path
            if p.is_checksum():
                continue
            if p.is_configuration() and not include_configuration:
                continue
            node = doc
            *parents, leaf = p.crumbs
            for crumb in parents:
                node = node.setdefault(crumb, {})
                if not isinstance(node, dict):
                    raise FormatError(f"{p}: {crumb} is both a leaf and a subtree")
            if isinstance(node.get(leaf), dict):
                raise FormatError(f"{p} is both a leaf and a subtree")
            node[leaf] = str(branch.value)
        return doc

    def print(self, writer: TextIO) -> None:
        """Write the decrypted tree to writer for a human. Never touches disk."""
        self.sort()
        doc = self.decrypt().to_document(include_configuration=False)
        if doc:
            writer.write(_dump(doc))

    def save(self) -> None:
        """
        Encrypt, checksum and atomically replace the hush file.

        Raises:
            HushError: writing or renaming failed; the old file is untouched
        """
        if not self.filename:
            raise UsageError("tree has no filename to save to")
        self.sort()
        tree = self.encrypt().encode()
        doc = tree.to_document()
        doc[CHECKSUM] = str(Plaintext(tree.checksum(), PUBLIC).encode())
        try:
            _atomic_write(self.filename, _dump(doc).encode('utf-8'))
        except OSError as e:
            raise HushError(f"saving tree: {e}") from e
        logger.debug("saved %d branches to %s", len(tree), self.filename)


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _dump(doc: dict) -> str:
    return yaml.safe_dump(doc, default_flow_style=False, sort_keys=False, allow_unicode=True)


def _atomic_write(filename: str, data: bytes) -> None:
    """Write data to a temp file beside filename, then move it into place."""
    directory = os.path.dirname(os.path.abspath(filename))
    fd, tmp = tempfile.mkstemp(prefix=".hush-", dir=directory)
    try:
        os.chmod(tmp, SAFE_PERM)
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        _rename(tmp, filename)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    _fsync_dir(directory)


def _fsync_dir(directory: str) -> None:
    """Persist the rename itself by syncing the directory entry."""
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _rename(oldpath: str, newpath: str) -> None:
    """Like os.replace, but falls back to copy-then-remove if rename fails."""
    try:
        os.replace(oldpath, newpath)
        return
    except OSError as e:
        logger.warning("rename failed (%s); copying instead", e)

    with open(oldpath, 'rb') as src, open(newpath, 'wb') as dst:
        os.chmod(newpath, SAFE_PERM)
        shutil.copyfileobj(src, dst)
        dst.flush()
        os.fsync(dst.fileno())
    os.unlink(oldpath)
