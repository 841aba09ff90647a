"""
hush - Attack Demonstration

Run: python attack_demo.py

What it shows (and why attacks fail):
1) Wrong password cannot unwrap the tree's keys.
2) Editing a leaf's ciphertext breaks the tree checksum (and AES-GCM).
3) Moving a ciphertext to another path breaks the tree checksum.
4) Deleting a branch breaks the tree checksum.
5) Bumping a payload's version byte is rejected.
"""

import os
import tempfile

from hush import commands, crypto
from hush.errors import DecryptionError, HushError, IntegrityError
from hush.path import Path
from hush.tree import Tree
from hush.value import PRIVATE, Plaintext


LINE = "=" * 70


def section(title: str):
    print(f"\n{LINE}\n{title}\n{LINE}")


def rewrite(filename: str, old: str, new: str) -> None:
    """Edit the hush file behind hush's back."""
    with open(filename) as f:
        text = f.read()
    with open(filename, "w") as f:
        f.write(text.replace(old, new, 1))


def try_unlock(filename: str, password: str) -> None:
    tree = Tree.load(filename)
    try:
        commands.unlock(tree, password)
        tree.decrypt()
        print("Unexpected: tree unlocked and decrypted")
    except (DecryptionError, IntegrityError) as e:
        print(f"Expected failure: {type(e).__name__}: {e}")


def main():
    password = "CorrectHorseBatteryStaple!"
    with tempfile.TemporaryDirectory() as d:
        filename = os.path.join(d, "hush")

        # Initialize and add two leaves
        tree = commands.initialize(filename, password)
        tree.set(Path("example.com/alice"), Plaintext(b"super_secret_password", PRIVATE))
        tree.set(Path("example.com/bob"), Plaintext(b"hunter2", PRIVATE))
        tree.save()

        with open(filename) as f:
            pristine = f.read()
        print("Hush file on disk:\n")
        print(pristine)

        def restore():
            with open(filename, "w") as f:
                f.write(pristine)

        alice = Tree.load(filename).get(Path("example.com/alice")).text
        bob = Tree.load(filename).get(Path("example.com/bob")).text

        # 1) Wrong password
        section("Attack 1: Wrong password")
        try_unlock(filename, "wrong_password")

        # 2) Ciphertext tampering
        section("Attack 2: Flip a character of alice's ciphertext")
        flipped = alice[:20] + ("A" if alice[20] != "A" else "B") + alice[21:]
        rewrite(filename, alice, flipped)
        try_unlock(filename, password)
        restore()

        # 3) Swap ciphertexts between paths
        section("Attack 3: Swap alice's and bob's ciphertexts")
        rewrite(filename, alice, "SWAP")
        rewrite(filename, bob, alice)
        rewrite(filename, "SWAP", bob)
        try_unlock(filename, password)
        restore()

        # 4) Delete a branch
        section("Attack 4: Delete bob's branch")
        rewrite(filename, f"  bob: {bob}\n", "")
        try_unlock(filename, password)
        restore()

        # 5) Version byte
        section("Attack 5: Bump a payload's version byte")
        key = crypto.create_key()
        payload = bytearray(crypto.encrypt(key, b"secret"))
        payload[0] = 2
        try:
            crypto.decrypt(key, bytes(payload))
            print("Unexpected: version 2 payload decrypted")
        except HushError as e:
            print(f"Expected failure: {type(e).__name__}: {e}")

        section("Sanity: correct password on the untouched file")
        tree = Tree.load(filename)
        commands.unlock(tree, password)
        print(commands.list_tree(tree))


if __name__ == "__main__":
    main()
