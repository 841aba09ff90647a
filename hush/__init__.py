"""
hush - Tiny Password Manager

Secrets live in a tree with encrypted leaves, stored as a YAML file you can
keep under version control.

Key Features:
- Hierarchical: organize secrets as paths like "paypal.com/work/password"
- Strong crypto: AES-256-GCM leaves + PBKDF2-HMAC-SHA256 password key
- Tamper detection: HMAC-SHA256 checksum over the whole tree
- Atomic saves: the hush file is replaced, never half-written

Components:
- crypto.py: All cryptographic operations
- value.py: Leaf values (encoded / plaintext / ciphertext)
- path.py: Paths and the pattern matcher
- tree.py: The tree, its checksum and persistence
- commands.py: One function per hush command
- cli.py: Command-line interface (uses built-in argparse)

Usage:
    hush init                       # Create hush file
    hush set site/user alice        # Set a leaf
    hush ls site                    # List matching subtrees
    hush rm site                    # Remove a subtree
"""

__version__ = "0.3.0"
