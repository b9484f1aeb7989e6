import errno
import importlib
import os
import struct
import sys

import pytest

from directory_toolkit.acl import Snapshot, SnapshotError, decode_posix_acl, diff_snapshots, snapshot
from directory_toolkit.acl.snapshot import (
    ACL_GROUP_OBJ,
    ACL_MASK,
    ACL_OTHER,
    ACL_USER,
    ACL_USER_OBJ,
    user_name,
)
from directory_toolkit.reporting import Report, export_csv, export_json, export_markdown

acl_snapshot = importlib.import_module("directory_toolkit.acl.snapshot")

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions only")

UNDEFINED_ID = 0xFFFFFFFF


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "share"
    (root / "a" / "inner").mkdir(parents=True)
    (root / "b").mkdir()
    (root / "z.txt").write_text("z")
    (root / "a" / "file.txt").write_text("f")
    (root / "a" / "inner" / "deep.txt").write_text("d")
    for d in (root, root / "a", root / "a" / "inner"):
        os.chmod(d, 0o755)
    os.chmod(root / "b", 0o700)
    return root


def paths(snap):
    return [e.path for e in snap.entries]


def test_walk_is_breadth_first_in_name_order(tree):
    snap = snapshot(tree)

    assert paths(snap) == [".", "a", "b", "z.txt", "a/file.txt", "a/inner", "a/inner/deep.txt"]
    assert [e.depth for e in snap.entries] == [0, 1, 1, 1, 2, 2, 3]
    assert snap.entries[0].kind == "directory"
    assert snap.entries[3].kind == "file"
    assert snap.error_count == 0


def test_max_depth_and_dirs_only(tree):
    assert paths(snapshot(tree, max_depth=1)) == [".", "a", "b", "z.txt"]
    assert paths(snapshot(tree, max_depth=0)) == ["."]
    assert paths(snapshot(tree, include_files=False)) == [".", "a", "b", "a/inner"]


def test_records_ownership_and_permissions(tree):
    entries = {e.path: e for e in snapshot(tree).entries}

    assert entries["b"].permissions == "0700"
    assert entries["b"].mode == "drwx------"
    assert entries["a"].uid == os.getuid()
    assert entries["a"].owner == user_name(os.getuid())


def test_differs_from_parent(tree):
    entries = {e.path: e for e in snapshot(tree).entries}

    assert entries["."].differs_from_parent is False
    assert entries["a"].differs_from_parent is False
    assert entries["a/inner"].differs_from_parent is False
    assert entries["b"].differs_from_parent is True


def test_symlinks_are_recorded_not_followed(tree):
    os.symlink(tree / "a", tree / "link")
    snap = snapshot(tree)

    link = [e for e in snap.entries if e.path == "link"][0]
    assert link.kind == "symlink"
    assert not any(p.startswith("link/") for p in paths(snap))


def test_missing_root_raises(tmp_path):
    with pytest.raises(SnapshotError):
        snapshot(tmp_path / "does-not-exist")


def test_unreadable_directory_keeps_walking(tree):
    if os.geteuid() == 0:
        pytest.skip("root can list any directory")
    os.chmod(tree / "b", 0o000)
    (tree / "c").mkdir()
    try:
        snap = snapshot(tree)
    finally:
        os.chmod(tree / "b", 0o700)

    entries = {e.path: e for e in snap.entries}
    assert entries["b"].error.startswith("cannot list")
    assert "c" in entries
    assert snap.error_count == 1


def test_decode_posix_acl():
    uid = os.getuid()
    blob = struct.pack("<I", 2) + b"".join(
        struct.pack("<HHI", tag, perm, qualifier)
        for tag, perm, qualifier in [
            (ACL_USER_OBJ, 7, UNDEFINED_ID),
            (ACL_USER, 5, uid),
            (ACL_GROUP_OBJ, 5, UNDEFINED_ID),
            (ACL_MASK, 5, UNDEFINED_ID),
            (ACL_OTHER, 0, UNDEFINED_ID),
        ]
    )

    assert decode_posix_acl(blob) == [
        "user::rwx",
        f"user:{user_name(uid)}:r-x",
        "group::r-x",
        "mask::r-x",
        "other::---",
    ]
    assert decode_posix_acl(blob, prefix="default:")[0] == "default:user::rwx"


@pytest.mark.parametrize("blob", [
    b"\x01\x00",
    struct.pack("<I", 1),
    struct.pack("<I", 2) + b"\x01\x00\x07",
    struct.pack("<I", 2) + struct.pack("<HHI", 0x40, 7, 0),
])
def test_decode_posix_acl_rejects_malformed_blobs(blob):
    with pytest.raises(ValueError):
        decode_posix_acl(blob)


def test_diff_snapshots(tree, tmp_path):
    before = snapshot(tree)
    saved = before.save(tmp_path / "before.snapshot.json")

    os.chmod(tree / "a", 0o750)
    (tree / "z.txt").unlink()
    (tree / "new.txt").write_text("n")
    after = snapshot(tree)

    delta = diff_snapshots(Snapshot.load(saved), after)

    assert delta["added"] == ["new.txt"]
    assert delta["removed"] == ["z.txt"]
    assert delta["changed"] == [{"path": "a", "changes": {"permissions": ["0755", "0750"]}}]


def test_snapshot_round_trips_through_json(tree, tmp_path):
    snap = snapshot(tree, max_depth=1)
    loaded = Snapshot.load(snap.save(tmp_path / "s.json"))

    assert loaded.root == snap.root
    assert loaded.max_depth == 1
    assert [e.to_dict() for e in loaded.entries] == [e.to_dict() for e in snap.entries]


def test_undecodable_file_names_survive_save_and_load(tree, tmp_path):
    raw_name = b"bad\xffname"
    with open(os.path.join(os.fsencode(tree), raw_name), "wb") as fh:
        fh.write(b"x")

    snap = snapshot(tree, max_depth=1)
    loaded = Snapshot.load(snap.save(tmp_path / "s.json"))

    name = os.fsdecode(raw_name)
    assert name in paths(snap)
    assert paths(loaded) == paths(snap)
    assert os.fsencode([p for p in paths(loaded) if p.startswith("bad")][0]) == raw_name

    report = Report(command="acl-snapshot", run_id="r1", title="ACL",
                    tables={"entries": [e.to_dict() for e in snap.entries]})
    assert export_json(report, tmp_path / "reports").exists()
    assert export_csv(report, tmp_path / "reports")
    assert export_markdown(report, tmp_path / "reports").exists()


def test_entry_with_unreadable_acl_is_not_compared(tree, monkeypatch):
    real_read_acl = acl_snapshot.read_acl

    def failing_read_acl(path, attribute, prefix=""):
        if os.path.basename(path) == "b":
            raise OSError(errno.EIO, "I/O error")
        return real_read_acl(path, attribute, prefix)

    monkeypatch.setattr(acl_snapshot, "read_acl", failing_read_acl)
    entries = {e.path: e for e in snapshot(tree).entries}

    assert entries["b"].error.startswith("acl read failed")
    assert entries["b"].differs_from_parent is False


@pytest.mark.parametrize("content", [None, "{not json", "[]", '{"entries": []}'])
def test_load_rejects_missing_or_malformed_files(tmp_path, content):
    path = tmp_path / "s.json"
    if content is not None:
        path.write_text(content)

    with pytest.raises(SnapshotError):
        Snapshot.load(path)
