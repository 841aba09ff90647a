"""
hush - Commands

The operations behind each hush command. The CLI only gathers arguments,
passwords and values from the terminal and calls these.

    initialize      hush init
    list_tree       hush ls [pattern]
    set_leaf        hush set path value
    remove_leaves   hush rm path...
    export_all      hush export
    import_all      hush import
"""

import getpass
import io
import logging
import os
import shlex
import subprocess
import sys
import tempfile
from typing import Iterable, List, Optional, TextIO, Tuple, Union

from . import crypto
from .config import DEFAULT_EDITOR, HushConfig
from .errors import HushError, UsageError
from .path import ENCRYPTION_KEY_PATH, MAC_KEY_PATH, SALT_PATH, Path
from .tree import Tree
from .value import PRIVATE, PUBLIC, Plaintext, Value

logger = logging.getLogger(__name__)


# =============================================================================
# TREE OPERATIONS
# =============================================================================

def initialize(filename: str, password: Union[str, bytes]) -> Tree:
    """
    Create a new hush file protected by password.

    Generates a fresh encryption key, MAC key and salt. Both keys are stored
    wrapped by the password key; the salt is stored in the clear.

    Returns:
        The new, unlocked tree (already saved)
    """
    if os.path.lexists(filename):
        raise UsageError(f"hush file already exists at {filename}")

    salt = crypto.create_salt()
    pw_key = crypto.stretch_password(password, salt)
    encryption_key = crypto.create_key()
    mac_key = crypto.create_key()

    tree = Tree(filename)
    tree.set(SALT_PATH, Plaintext(salt, PUBLIC))
    tree.set(ENCRYPTION_KEY_PATH, Plaintext(encryption_key, PRIVATE).ciphertext(pw_key))
    tree.set(MAC_KEY_PATH, Plaintext(mac_key, PRIVATE).ciphertext(pw_key))
    tree.encryption_key = encryption_key
    tree.mac_key = mac_key
    tree.save()
    return tree


def unlock(tree: Tree, password: Union[str, bytes]) -> None:
    """Unlock tree, raising DecryptionError or IntegrityError on failure."""
    tree.unlock(password)


def list_tree(tree: Tree, pattern: Optional[str] = None) -> str:
    """Decrypted YAML text of the branches matching pattern (all if empty)."""
    if pattern:
        tree = tree.filter(pattern)
    out = io.StringIO()
    tree.print(out)
    return out.getvalue()


def set_leaf(tree: Tree, path: Path, value: Value, out: Optional[TextIO] = None) -> None:
    """
    Set the leaf at path, show the affected subtree on out, and save.

    Raises:
        UsageError: path is reserved, or clashes with an existing subtree/leaf
    """
    _check_settable(tree, path)
    tree.set(path, value)
    if out is not None:
        tree.filter(str(path.parent())).print(out)
    tree.save()


def remove_leaves(tree: Tree, paths: Iterable[Path]) -> int:
    """
    Remove paths and their subtrees. Saves only if something was removed.

    Returns:
        Number of branches removed

    Raises:
        UsageError: a path is reserved; nothing is removed
    """
    paths = list(paths)
    for p in paths:
        if p.is_reserved():
            raise UsageError(f"can't remove configuration path {p}")
    n = tree.delete(*paths)
    if n > 0:
        tree.save()
    return n


def export_all(tree: Tree) -> List[Tuple[str, bytes]]:
    """(path, plaintext) for every user leaf, in sorted order."""
    tree.sort()
    pairs = []
    for branch in tree.decrypt():
        p = branch.path
        if p.is_configuration() or p.is_checksum():
            continue
        pairs.append((str(p), branch.value.data))
    return pairs


def import_all(tree: Tree, lines: Iterable[Union[str, bytes]]) -> List[str]:
    """
    Add tab-separated "path<TAB>value" lines to tree, then save once.

    Lines may be bytes (as read from stdin.buffer) so values that aren't
    UTF-8 survive an export/import round trip. Paths must be UTF-8.
    Malformed lines are skipped and reported; the rest still commit.

    Returns:
        Warnings, one per skipped line
    """
    warnings = []
    for n, line in enumerate(lines, 1):
        if isinstance(line, str):
            line = line.encode('utf-8')
        line = line.rstrip(b"\r\n")
        if not line:
            continue
        if b"\t" not in line:
            warnings.append(f"line {n}: missing tab delimiter")
            continue
        raw_path, raw_value = line.split(b"\t", 1)
        try:
            raw_path = raw_path.decode('utf-8')
        except UnicodeDecodeError:
            warnings.append(f"line {n}: path is not valid UTF-8")
            continue
        try:
            p = Path(raw_path)
            if p.is_reserved():
                warnings.append(f"line {n}: skipping configuration path {p}")
                continue
            _check_settable(tree, p)
        except UsageError as e:
            warnings.append(f"line {n}: {e}")
            continue
        tree.set(p, Plaintext(raw_value, PRIVATE))
    tree.save()
    return warnings


def _check_settable(tree: Tree, path: Path) -> None:
    if path.is_reserved():
        raise UsageError(f"can't set configuration path {path}")
    other = tree.conflicts(path)
    if other is not None:
        raise UsageError(f"{path} conflicts with existing path {other}")


# =============================================================================
# TERMINAL INPUT
# =============================================================================

def read_password(config: HushConfig, prompt: str, stream: TextIO = sys.stderr) -> bytes:
    """
    Ask the user for a password.

    If HUSH_ASKPASS is configured, it's run with prompt as its only argument
    and its stdout is the password. Otherwise prompt on the terminal without
    echo.
    """
    if config.askpass:
        return _run_askpass(config.askpass, prompt)
    return getpass.getpass(prompt + ": ", stream=stream).encode('utf-8')


def _run_askpass(askpass: str, prompt: str) -> bytes:
    try:
        tty = open("/dev/tty", "rb")
    except OSError:
        tty = None
    try:
        result = subprocess.run(
            [askpass, prompt],
            stdin=tty if tty is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        raise HushError(f"running HUSH_ASKPASS: {e}") from e
    finally:
        if tty is not None:
            tty.close()

    password = result.stdout
    if password.endswith(b"\n"):
        password = password[:-1]
    return password


def capture_value(config: HushConfig, raw: str, stdin: TextIO = sys.stdin) -> Plaintext:
    """
    Turn a command line value into a private plaintext.

    "-" means read the value from stdin, or from an editor when stdin is a
    terminal.
    """
    if raw != "-":
        return Plaintext(raw.encode('utf-8'), PRIVATE)
    if stdin.isatty():
        return Plaintext(edit_value(config), PRIVATE)
    if hasattr(stdin, "buffer"):
        return Plaintext(stdin.buffer.read(), PRIVATE)
    return Plaintext(stdin.read().encode('utf-8'), PRIVATE)


def edit_value(config: HushConfig) -> bytes:
    """Launch the configured editor on an empty private file and return its contents."""
    editor = config.editor
    if not editor:
        logger.warning("environment configures no editor. defaulting to %s", DEFAULT_EDITOR)
        editor = DEFAULT_EDITOR

    fd, tmp = tempfile.mkstemp(prefix="hush-value-")
    os.close(fd)
    try:
        try:
            subprocess.run(shlex.split(editor) + [tmp], check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise HushError(f"running editor {editor!r}: {e}") from e
        with open(tmp, 'rb') as f:
            data = f.read()
    finally:
        os.unlink(tmp)

    # editors end files with a newline nobody meant as part of the value
    if data.endswith(b"\n"):
        data = data[:-1]
    if not data:
        raise UsageError("empty value; nothing to set")
    return data
