"""
hush - Tree and Command Tests

Run with: python test_tree.py  (or: pytest)

Exercises the hush file end to end:
- init -> set -> save -> reload -> unlock -> get
- Wrong passwords and files edited outside hush
- Checksum determinism
- Delete cascades, import/export, listing
- Permissions and atomic saves
"""

import io
import os
import stat
import tempfile
from unittest import mock

from hush import commands
from hush.config import HushConfig
from hush.errors import DecryptionError, FormatError, HushError, IntegrityError, UsageError
from hush.path import CHECKSUM_PATH, Path
from hush.tree import Tree
from hush.value import PRIVATE, PUBLIC, Encoded, Plaintext


PASSWORD = "hunter2"


def new_hush_file(directory):
    """Initialize a hush file in directory and return its filename."""
    filename = os.path.join(directory, "hush")
    commands.initialize(filename, PASSWORD)
    return filename


def reload(filename, password=PASSWORD):
    tree = Tree.load(filename)
    commands.unlock(tree, password)
    return tree


def read_leaf(tree, path):
    return tree.decrypt().get(Path(path)).data


def test_end_to_end():
    """init -> set -> save -> reload -> unlock -> get."""
    print("Testing End to End...")

    with tempfile.TemporaryDirectory() as d:
        filename = new_hush_file(d)
        assert stat.S_IMODE(os.stat(filename).st_mode) == 0o600, "hush file should be private"

        tree = reload(filename)
        commands.set_leaf(tree, Path("site/user"), Plaintext(b"alice", PRIVATE))

        with open(filename) as f:
            text = f.read()
        assert "alice" not in text, "Plaintext should never reach the disk"
        assert "site:" in text, "Paths are stored in the clear"
        print("  [OK] Saved file is encrypted")

        tree = reload(filename)
        assert read_leaf(tree, "site/user") == b"alice"
        print("  [OK] Leaf survives a reload")


def test_wrong_password():
    """A wrong password never yields plaintext."""
    print("Testing Wrong Password...")

    with tempfile.TemporaryDirectory() as d:
        filename = new_hush_file(d)
        commands.set_leaf(reload(filename), Path("site/user"), Plaintext(b"alice", PRIVATE))

        tree = Tree.load(filename)
        try:
            commands.unlock(tree, "hunter3")
        except (DecryptionError, IntegrityError):
            print("  [OK] Wrong password detected")
        else:
            assert False, "Should fail with wrong password"
        assert tree.encryption_key is None, "No key should be kept after a failed unlock"


def test_tampered_file():
    """Edits made outside hush break the checksum."""
    print("Testing Tamper Detection...")

    with tempfile.TemporaryDirectory() as d:
        filename = new_hush_file(d)
        commands.set_leaf(reload(filename), Path("site/user"), Plaintext(b"alice", PRIVATE))
        with open(filename) as f:
            original = f.read()

        attacks = {
            "renamed path": original.replace("site:", "evil:"),
            "added leaf": original + "evil: AQID\n",
        }
        for name, text in attacks.items():
            with open(filename, "w") as f:
                f.write(text)
            try:
                reload(filename)
            except IntegrityError:
                print(f"  [OK] {name} detected")
            else:
                assert False, f"{name} should break the checksum"

        without_checksum = "\n".join(
            line for line in original.splitlines() if not line.startswith("hush-tree-checksum")
        )
        with open(filename, "w") as f:
            f.write(without_checksum)
        try:
            reload(filename)
        except IntegrityError:
            print("  [OK] Missing checksum detected")
        else:
            assert False, "A missing checksum should fail unlock"


def test_checksum_determinism():
    """Checksum ignores insertion order but covers every path and value."""
    print("Testing Checksum Determinism...")

    mac_key = os.urandom(32)
    leaves = [("b/x", "AQID"), ("a/y", "BAUG"), ("A/z", "BwgJ"), ("c", "CgsM")]

    def build(items):
        tree = Tree()
        tree.mac_key = mac_key
        for path, text in items:
            tree.set(Path(path), Encoded(text, PRIVATE))
        return tree

    forward = build(leaves)
    backward = build(reversed(leaves))
    assert forward.checksum() == backward.checksum(), "Order should not matter"
    print("  [OK] Insertion order doesn't matter")

    changed_value = build(leaves[:-1] + [("c", "DQ4P")])
    changed_path = build(leaves[:-1] + [("d", "CgsM")])
    assert forward.checksum() != changed_value.checksum()
    assert forward.checksum() != changed_path.checksum()
    print("  [OK] Path and value changes are detected")

    with_checksum = build(leaves)
    with_checksum.set(CHECKSUM_PATH, Plaintext(b"whatever", PUBLIC))
    assert with_checksum.checksum() == forward.checksum(), "Checksum branch isn't covered"

    try:
        Tree().checksum()
    except IntegrityError:
        print("  [OK] Checksum needs a MAC key")
    else:
        assert False, "Checksum without a MAC key should fail"


def test_delete_cascade():
    """Deleting a path removes its descendants; nothing removed means no save."""
    print("Testing Delete Cascade...")

    with tempfile.TemporaryDirectory() as d:
        filename = new_hush_file(d)
        tree = reload(filename)
        for path in ["site/user", "site/deep/er/still", "sites/other"]:
            tree.set(Path(path), Plaintext(path.encode(), PRIVATE))
        tree.save()

        n = commands.remove_leaves(tree, [Path("site")])
        assert n == 2, f"Should remove 2 branches, removed {n}"
        assert tree.get(Path("site/user")) is None
        assert tree.get(Path("sites/other")) is not None, "Siblings sharing a prefix survive"
        assert all(not str(b.path).startswith("site/") for b in tree)
        print("  [OK] Descendants removed")

        tree = reload(filename)
        assert tree.get(Path("site/deep/er/still")) is None, "Removal was saved"
        assert read_leaf(tree, "sites/other") == b"sites/other"

        def boom():
            raise AssertionError("save should be skipped")
        tree.save = boom
        assert commands.remove_leaves(tree, [Path("nothing/here")]) == 0
        print("  [OK] Nothing removed, nothing saved")

        for reserved in ["hush-configuration", "hush-configuration/salt", "hush-tree-checksum"]:
            try:
                commands.remove_leaves(tree, [Path("sites/other"), Path(reserved)])
            except UsageError:
                pass
            else:
                assert False, f"Removing {reserved} should be refused"
        assert tree.get(Path("sites/other")) is not None, "Refused rm removes nothing"

        assert read_leaf(reload(filename), "sites/other") == b"sites/other", "File still unlocks"
        print("  [OK] Configuration can't be removed")


def test_tombstones():
    """Deleted slots are skipped by iteration and compacted by sort()."""
    print("Testing Tombstones...")

    tree = Tree()
    for path in ["c", "a", "b/x", "b/y"]:
        tree.set(Path(path), Encoded("AQID", PRIVATE))
    assert tree.delete(Path("b")) == 2
    assert len(tree) == 2
    assert len(tree.branches) == 4, "Tombstones stay until sort()"
    assert [str(b.path) for b in tree] == ["c", "a"]

    tree.sort()
    assert len(tree.branches) == 2
    assert [str(b.path) for b in tree] == ["a", "c"]
    assert tree.get(Path("c")) == Encoded("AQID", PRIVATE), "Index rebuilt after sort"

    tree.set(Path("a"), Encoded("BAUG", PRIVATE))
    assert len(tree) == 2, "Setting an existing path overwrites it"
    assert tree.get(Path("a")).text == "BAUG"
    print("  [OK] Tombstones work")


def test_persisted_ordering():
    """The file groups paths by prefix, sorted case-insensitively per level."""
    print("Testing Persisted Ordering...")

    with tempfile.TemporaryDirectory() as d:
        filename = new_hush_file(d)
        tree = reload(filename)
        for path in ["zeta/a", "Beta/b", "alpha/c", "beta/d", "alpha/b"]:
            tree.set(Path(path), Plaintext(b"v", PRIVATE))
        tree.save()

        with open(filename) as f:
            lines = f.read().splitlines()
        top = [line.split(":")[0] for line in lines if not line.startswith(" ")]
        assert top == ["alpha", "Beta", "beta", "hush-configuration", "zeta", "hush-tree-checksum"], top
        nested = [line.split(":")[0].strip() for line in lines[:3]]
        assert nested == ["alpha", "b", "c"], "Nested levels are sorted too"
        print("  [OK] File order is stable")


def test_list_tree():
    """ls shows decrypted subtrees matching a pattern."""
    print("Testing Listing...")

    with tempfile.TemporaryDirectory() as d:
        filename = new_hush_file(d)
        tree = reload(filename)
        tree.set(Path("paypal.com/personal/password"), Plaintext(b"secret", PRIVATE))
        tree.set(Path("paypal.com/work/password"), Plaintext(b"123456", PRIVATE))
        tree.set(Path("bitpay.com/work/password"), Plaintext(b"42 bitcoins", PRIVATE))
        tree.save()

        tree = reload(filename)
        text = commands.list_tree(tree, "pay/work")
        assert "paypal.com" in text and "bitpay.com" in text
        assert "123456" in text and "42 bitcoins" in text
        assert "personal" not in text and "secret" not in text
        print("  [OK] Pattern listing works")

        everything = commands.list_tree(tree)
        assert "personal" in everything
        assert "hush-configuration" not in everything, "Bookkeeping stays hidden"
        print("  [OK] Full listing works")


def test_set_leaf_rules():
    """set refuses reserved paths and leaf/subtree clashes without saving."""
    print("Testing Set Rules...")

    with tempfile.TemporaryDirectory() as d:
        filename = new_hush_file(d)
        tree = reload(filename)
        commands.set_leaf(tree, Path("site/user"), Plaintext(b"alice", PRIVATE))

        out = io.StringIO()
        commands.set_leaf(tree, Path("site/user"), Plaintext(b"bob", PRIVATE), out)
        assert "bob" in out.getvalue(), "Affected subtree is shown"
        assert read_leaf(reload(filename), "site/user") == b"bob", "Last write wins"
        with open(filename) as f:
            before = f.read()

        for bad in ["hush-configuration/salt", "hush-tree-checksum", "site/user/deeper", "site"]:
            try:
                commands.set_leaf(tree, Path(bad), Plaintext(b"x", PRIVATE))
            except UsageError:
                pass
            else:
                assert False, f"set {bad} should be refused"
        with open(filename) as f:
            assert f.read() == before, "Refused sets don't touch the disk"
        print("  [OK] Set rules enforced")


def test_export_import():
    """export writes user leaves; import collects warnings and saves once."""
    print("Testing Export/Import...")

    with tempfile.TemporaryDirectory() as d:
        filename = new_hush_file(d)
        tree = reload(filename)
        lines = [
            "b.com/user\tbob\n",
            "\n",
            "no delimiter here\n",
            "hush-configuration/salt\tAAAA\n",
            "a.com/password\tp\tw with tab\n",
            "a.com/password/deeper\tclash\n",
        ]
        warnings = commands.import_all(tree, lines)
        assert warnings == [
            "line 3: missing tab delimiter",
            "line 4: skipping configuration path hush-configuration/salt",
            "line 6: a.com/password/deeper conflicts with existing path a.com/password",
        ], warnings
        print("  [OK] Malformed lines reported")

        tree = reload(filename)
        exported = commands.export_all(tree)
        assert exported == [
            ("a.com/password", b"p\tw with tab"),
            ("b.com/user", b"bob"),
        ], exported
        print("  [OK] Well-formed lines committed and exported")

        warnings = commands.import_all(tree, [
            b"bin/blob\t\xff\xfe\x00\n",
            b"bad\xff/path\tvalue\n",
        ])
        assert warnings == ["line 2: path is not valid UTF-8"], warnings
        assert read_leaf(reload(filename), "bin/blob") == b"\xff\xfe\x00"
        print("  [OK] Binary values survive import")


def test_loose_permissions():
    """Loading fixes a hush file readable by others."""
    print("Testing Permissions...")

    with tempfile.TemporaryDirectory() as d:
        filename = new_hush_file(d)
        os.chmod(filename, 0o644)
        reload(filename)
        assert stat.S_IMODE(os.stat(filename).st_mode) == 0o600
        print("  [OK] Loose permissions fixed")


def test_atomic_save():
    """A failed save leaves the original file and no temp files behind."""
    print("Testing Atomic Save...")

    with tempfile.TemporaryDirectory() as d:
        filename = new_hush_file(d)
        tree = reload(filename)
        with open(filename) as f:
            before = f.read()

        tree.set(Path("site/user"), Plaintext(b"alice", PRIVATE))
        with mock.patch("hush.tree._rename", side_effect=OSError("disk full")):
            try:
                tree.save()
            except HushError:
                pass
            else:
                assert False, "Save should report the failure"

        with open(filename) as f:
            assert f.read() == before, "Original must be untouched"
        assert os.listdir(d) == ["hush"], "Temp file should be cleaned up"
        print("  [OK] Failed save is harmless")

        with mock.patch("hush.tree._fsync_dir") as fsync_dir:
            tree.save()
        fsync_dir.assert_called_once_with(os.path.dirname(os.path.abspath(filename)))
        print("  [OK] Directory synced after rename")

        with mock.patch("hush.tree.os.replace", side_effect=OSError("cross-device link")):
            tree.save()
        assert os.listdir(d) == ["hush"]
        assert stat.S_IMODE(os.stat(filename).st_mode) == 0o600
        assert read_leaf(reload(filename), "site/user") == b"alice"
        print("  [OK] Copy fallback works")


def test_initialize_refuses_existing():
    """init never overwrites an existing hush file."""
    print("Testing Init...")

    with tempfile.TemporaryDirectory() as d:
        filename = new_hush_file(d)
        try:
            commands.initialize(filename, "other")
        except UsageError:
            print("  [OK] Existing file protected")
        else:
            assert False, "init should refuse an existing file"


def test_load_errors():
    """Missing and malformed hush files."""
    print("Testing Load Errors...")

    with tempfile.TemporaryDirectory() as d:
        try:
            Tree.load(os.path.join(d, "missing"))
        except FileNotFoundError:
            print("  [OK] Missing file reported")
        else:
            assert False, "Loading a missing file should fail"

    for text in ["- a\n- b\n", "site: 42\n", "site: [unclosed\n", "? [a, b]\n: c\n"]:
        try:
            Tree.from_document(text)
        except FormatError:
            pass
        else:
            assert False, f"{text!r} should be rejected"
    print("  [OK] Malformed documents rejected")

    assert len(Tree.from_document("")) == 0, "An empty document is an empty tree"


def test_config():
    """Configuration comes from an explicit environment mapping."""
    print("Testing Config...")

    config = HushConfig.from_environ({"HUSH_FILE": "/tmp/x.hush", "HOME": "/home/me"})
    assert config.hush_file == "/tmp/x.hush"
    assert config.askpass is None
    assert config.editor is None

    config = HushConfig.from_environ({
        "HOME": "/nonexistent-home",
        "VISUAL": "nano",
        "EDITOR": "ed",
        "HUSH_ASKPASS": "/bin/askpass",
    })
    assert config.hush_file == "/nonexistent-home/.hush"
    assert config.editor == "nano"
    assert config.askpass == "/bin/askpass"

    try:
        HushConfig.from_environ({})
    except UsageError:
        print("  [OK] Missing HOME reported")
    else:
        assert False, "Missing HOME should fail"


def test_capture_value():
    """Values come from the command line or from stdin."""
    print("Testing Value Capture...")

    config = HushConfig(hush_file="/unused")
    assert commands.capture_value(config, "alice") == Plaintext(b"alice", PRIVATE)

    stdin = io.TextIOWrapper(io.BytesIO(b"from\nstdin"))
    assert commands.capture_value(config, "-", stdin) == Plaintext(b"from\nstdin", PRIVATE)
    print("  [OK] Value capture works")


def run_all_tests():
    """Run all tests."""
    print("=" * 70)
    print("hush - Tree and Command Tests")
    print("=" * 70)
    print()

    tests = [
        test_end_to_end,
        test_wrong_password,
        test_tampered_file,
        test_checksum_determinism,
        test_delete_cascade,
        test_tombstones,
        test_persisted_ordering,
        test_list_tree,
        test_set_leaf_rules,
        test_export_import,
        test_loose_permissions,
        test_atomic_save,
        test_initialize_refuses_existing,
        test_load_errors,
        test_config,
        test_capture_value,
    ]

    failed = []

    for test in tests:
        try:
            test()
            print()
        except Exception as e:
            print(f"  [FAIL] TEST FAILED: {e}")
            failed.append((test.__name__, e))
            print()

    print("=" * 70)
    if not failed:
        print("[OK] ALL TESTS PASSED!")
    else:
        print(f"[FAIL] {len(failed)} TESTS FAILED:")
        for name, error in failed:
            print(f"  - {name}: {error}")
    print("=" * 70)

    return len(failed) == 0


if __name__ == "__main__":
    import sys
    success = run_all_tests()
    sys.exit(0 if success else 1)
