"""
hush - Command Line Interface

Usage:
    hush init
    hush ls [pattern]
    hush set path value
    hush rm path [path ...]
    hush export
    hush import < lines.tsv
    hush help
"""

import argparse
import logging
import sys
from typing import NoReturn

from . import commands
from .config import HushConfig
from .errors import HushError, UsageError
from .path import Path
from .tree import Tree

HELP = """\
NAME
    hush - tiny password manager

SYNOPSIS
    hush [command [arguments]]

DESCRIPTION
    hush keeps your secrets in a tree with encrypted leaves.  You can
    organize the tree in whatever hierarchy you prefer.

    The hush file ($HOME/.hush by default) is a YAML document.  Paths
    are stored in the clear, leaves are encrypted, and a checksum over
    the whole file detects modifications made outside of hush.  It's
    safe to keep under version control.

COMMANDS
    export
        Writes every leaf to stdout as a line of two tab-separated
        columns: the slash-separated path, then the leaf's plaintext.

    help
        Displays this help text.

    import
        Reads lines in the export format from stdin and adds them to
        the hush file.  Malformed lines are reported and skipped.

    init
        Creates a new hush file after asking for a password.  Run this
        before any other command.

    ls [pattern]
        Lists the decrypted subtrees matching 'pattern', or the whole
        tree if 'pattern' is omitted.

    rm path [path ...]
        Removes each path, and everything below it.

    set path value
        Sets the leaf at 'path' to 'value'.  If value is '-' it's read
        from stdin, or from your editor when stdin is a terminal.

PATTERNS
    A pattern is split on '/' into subpatterns, one per level of the
    tree.  At each level, a subpattern matches every name containing
    it as a substring.  An all-lowercase pattern ignores case.

        $ hush ls pay/work
        paypal.com:
          work:
            password: '123456'
        bitpay.com:
          work:
            password: 42 bitcoins

ENVIRONMENT VARIABLES
    HUSH_ASKPASS
        Program to run when hush needs a password.  It's called with
        the prompt as its only argument and prints the password on
        stdout.  Without it, hush prompts on the terminal.

    HUSH_EDITOR, VISUAL, EDITOR
        Editor used by 'hush set path -', first one set wins.

    HUSH_FILE
        Absolute path of your hush file.  Default: $HOME/.hush

    HUSH_DEBUG
        Set to anything to see debug logging.
"""


def die(message: str) -> NoReturn:
    print(message, file=sys.stderr)
    sys.exit(1)


def open_tree(config: HushConfig) -> Tree:
    """Load the hush file and unlock it with a password from the user."""
    tree = Tree.load(config.hush_file)
    password = commands.read_password(config, "Password")
    commands.unlock(tree, password)
    return tree


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_help(args: argparse.Namespace, config: HushConfig) -> None:
    sys.stdout.write(HELP)


def cmd_init(args: argparse.Namespace, config: HushConfig) -> None:
    print("Preparing to initialize your hush file. Please provide", file=sys.stderr)
    print("and verify a password to use for encryption.\n", file=sys.stderr)
    password = commands.read_password(config, "Password")
    verify = commands.read_password(config, "Verify password")
    if password != verify:
        raise UsageError("Passwords don't match")
    if not password:
        raise UsageError("Password can't be empty")
    commands.initialize(config.hush_file, password)
    print(f"Initialized hush file at {config.hush_file}", file=sys.stderr)


def cmd_ls(args: argparse.Namespace, config: HushConfig) -> None:
    tree = open_tree(config)
    sys.stdout.write(commands.list_tree(tree, args.pattern))


def cmd_set(args: argparse.Namespace, config: HushConfig) -> None:
    p = Path(args.path)
    tree = open_tree(config)
    value = commands.capture_value(config, args.value)
    commands.set_leaf(tree, p, value, sys.stdout)


def cmd_rm(args: argparse.Namespace, config: HushConfig) -> None:
    paths = [Path(p) for p in args.paths]
    tree = open_tree(config)
    commands.remove_leaves(tree, paths)


def cmd_export(args: argparse.Namespace, config: HushConfig) -> None:
    tree = open_tree(config)
    out = sys.stdout.buffer
    for path, plaintext in commands.export_all(tree):
        out.write(path.encode('utf-8') + b"\t" + plaintext + b"\n")
    out.flush()


def cmd_import(args: argparse.Namespace, config: HushConfig) -> None:
    tree = open_tree(config)
    for warning in commands.import_all(tree, sys.stdin.buffer):
        print(warning, file=sys.stderr)


# =============================================================================
# ENTRY POINT
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hush", description="tiny password manager")
    sub = parser.add_subparsers(dest="command")

    p_help = sub.add_parser("help", help="Show the full help text")
    p_help.set_defaults(func=cmd_help)

    p_init = sub.add_parser("init", help="Create a new hush file")
    p_init.set_defaults(func=cmd_init)

    p_ls = sub.add_parser("ls", help="List decrypted subtrees matching a pattern")
    p_ls.add_argument("pattern", nargs="?", default="", help="Slash-separated pattern")
    p_ls.set_defaults(func=cmd_ls)

    p_set = sub.add_parser("set", help="Set a leaf's value")
    p_set.add_argument("path", help="Slash-separated path")
    p_set.add_argument("value", help="Value, or '-' to read it from stdin/editor")
    p_set.set_defaults(func=cmd_set)

    p_rm = sub.add_parser("rm", help="Remove paths and their subtrees")
    p_rm.add_argument("paths", nargs="+", help="Slash-separated paths")
    p_rm.set_defaults(func=cmd_rm)

    p_export = sub.add_parser("export", help="Write all leaves as tab-separated lines")
    p_export.set_defaults(func=cmd_export)

    p_import = sub.add_parser("import", help="Read tab-separated lines from stdin")
    p_import.set_defaults(func=cmd_import)

    return parser


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_usage(sys.stderr)
        sys.exit(1)

    try:
        config = HushConfig.from_environ()
    except HushError as e:
        die(str(e))

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.WARNING,
        format="%(message)s",
    )

    try:
        args.func(args, config)
    except FileNotFoundError:
        die(f"hush file does not exist: {config.hush_file}\n"
            "Maybe you need to run 'hush init'?")
    except HushError as e:
        die(str(e))
    except KeyboardInterrupt:
        die("")


if __name__ == "__main__":
    main()
