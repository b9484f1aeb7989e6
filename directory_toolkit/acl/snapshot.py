"""
Filesystem ACL snapshot — breadth-first walk of a directory tree recording
ownership, permission bits and POSIX ACLs for every entry.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import stat
import struct
import sys
from collections import deque
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

if sys.platform != "win32":
    import grp
    import pwd

logger = logging.getLogger("directory_toolkit.acl")

ACL_ACCESS_XATTR = "system.posix_acl_access"
ACL_DEFAULT_XATTR = "system.posix_acl_default"

POSIX_ACL_XATTR_VERSION = 2
_HEADER = struct.Struct("<I")
_ENTRY = struct.Struct("<HHI")

ACL_USER_OBJ = 0x01
ACL_USER = 0x02
ACL_GROUP_OBJ = 0x04
ACL_GROUP = 0x08
ACL_MASK = 0x10
ACL_OTHER = 0x20

_TAG_NAMES = {
    ACL_USER_OBJ: "user",
    ACL_USER: "user",
    ACL_GROUP_OBJ: "group",
    ACL_GROUP: "group",
    ACL_MASK: "mask",
    ACL_OTHER: "other",
}

# xattr errors that mean "no ACL here" rather than a failure
_NO_ACL_ERRNOS = {
    getattr(errno, name)
    for name in ("ENODATA", "ENOATTR", "ENOTSUP", "EOPNOTSUPP", "ENOENT")
    if hasattr(errno, name)
}

COMPARED_FIELDS = ("kind", "owner", "group", "uid", "gid", "permissions", "acl", "default_acl")


class SnapshotError(Exception):
    """Raised when the snapshot root or a saved snapshot cannot be read."""
    pass


@lru_cache(maxsize=None)
def user_name(uid: int) -> str:
    if sys.platform == "win32":
        return str(uid)
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


@lru_cache(maxsize=None)
def group_name(gid: int) -> str:
    if sys.platform == "win32":
        return str(gid)
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


def _perm_string(perm: int) -> str:
    return (
        ("r" if perm & 4 else "-")
        + ("w" if perm & 2 else "-")
        + ("x" if perm & 1 else "-")
    )


def decode_posix_acl(data: bytes, prefix: str = "") -> list[str]:
    """
    Decode a Linux posix_acl xattr blob into getfacl-style entries,
    e.g. ["user::rwx", "user:alice:r-x", "group::r-x", "mask::r-x", "other::---"].
    """
    if len(data) < _HEADER.size:
        raise ValueError("ACL blob shorter than its header")
    (version,) = _HEADER.unpack_from(data, 0)
    if version != POSIX_ACL_XATTR_VERSION:
        raise ValueError(f"Unsupported ACL xattr version {version}")
    body = data[_HEADER.size:]
    if len(body) % _ENTRY.size:
        raise ValueError("ACL blob has a truncated entry")

    entries = []
    for offset in range(0, len(body), _ENTRY.size):
        tag, perm, qualifier = _ENTRY.unpack_from(body, offset)
        if tag not in _TAG_NAMES:
            raise ValueError(f"Unknown ACL tag 0x{tag:02x}")
        if tag == ACL_USER:
            who = user_name(qualifier)
        elif tag == ACL_GROUP:
            who = group_name(qualifier)
        else:
            who = ""
        entries.append(f"{prefix}{_TAG_NAMES[tag]}:{who}:{_perm_string(perm)}")
    return entries


def read_acl(path: str, attribute: str, prefix: str = "") -> list[str]:
    """Extended ACL entries of a path; empty when the filesystem carries none."""
    if not hasattr(os, "getxattr"):
        return []
    try:
        data = os.getxattr(path, attribute, follow_symlinks=False)
    except OSError as e:
        if e.errno in _NO_ACL_ERRNOS:
            return []
        raise
    return decode_posix_acl(data, prefix)


@dataclass
class AclEntry:
    """Ownership and access metadata of one filesystem entry."""
    path: str                      # Relative to the snapshot root, "." for the root
    depth: int
    kind: str = ""                 # directory, file, symlink, other
    owner: str = ""
    group: str = ""
    uid: int = -1
    gid: int = -1
    mode: str = ""                 # e.g. drwxr-x---
    permissions: str = ""          # e.g. 0750
    acl: list[str] = field(default_factory=list)
    default_acl: list[str] = field(default_factory=list)
    differs_from_parent: bool = False
    error: str = ""

    def access_signature(self) -> tuple:
        return (self.uid, self.gid, self.permissions, tuple(self.acl))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Snapshot:
    root: str
    taken_at: str
    max_depth: Optional[int] = None
    include_files: bool = True
    entries: list[AclEntry] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(1 for e in self.entries if e.error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root,
            "taken_at": self.taken_at,
            "max_depth": self.max_depth,
            "include_files": self.include_files,
            "entries": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Snapshot":
        known = {f.name for f in fields(AclEntry)}
        return cls(
            root=data["root"],
            taken_at=data.get("taken_at", ""),
            max_depth=data.get("max_depth"),
            include_files=data.get("include_files", True),
            entries=[
                AclEntry(**{k: v for k, v in e.items() if k in known})
                for e in data.get("entries", [])
            ],
        )

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", errors="surrogateescape") as fh:
            json.dump(self.to_dict(), fh, indent=2, ensure_ascii=False)
        return path

    @classmethod
    def load(cls, path: str | Path) -> "Snapshot":
        try:
            with open(path, "r", encoding="utf-8", errors="surrogateescape") as fh:
                return cls.from_dict(json.load(fh))
        except OSError as e:
            raise SnapshotError(f"Cannot read snapshot {path}: {e.strerror or e}") from e
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise SnapshotError(f"Not a snapshot file: {path} ({e})") from e


def _kind(st_mode: int) -> str:
    if stat.S_ISLNK(st_mode):
        return "symlink"
    if stat.S_ISDIR(st_mode):
        return "directory"
    if stat.S_ISREG(st_mode):
        return "file"
    return "other"


def describe(path: str, relative: str, depth: int) -> AclEntry:
    """Build the AclEntry for one path without following symlinks."""
    entry = AclEntry(path=relative, depth=depth)
    try:
        st = os.lstat(path)
    except OSError as e:
        entry.error = f"stat failed: {e.strerror or e}"
        return entry

    entry.kind = _kind(st.st_mode)
    entry.uid, entry.gid = st.st_uid, st.st_gid
    entry.owner, entry.group = user_name(st.st_uid), group_name(st.st_gid)
    entry.mode = stat.filemode(st.st_mode)
    entry.permissions = f"{stat.S_IMODE(st.st_mode):04o}"

    if entry.kind == "symlink":
        return entry
    try:
        entry.acl = read_acl(path, ACL_ACCESS_XATTR)
        if entry.kind == "directory":
            entry.default_acl = read_acl(path, ACL_DEFAULT_XATTR, prefix="default:")
    except (OSError, ValueError) as e:
        entry.error = f"acl read failed: {e}"
    return entry


def snapshot(
    root: str | Path,
    max_depth: Optional[int] = None,
    include_files: bool = True,
) -> Snapshot:
    """
    Walk root breadth-first and record every entry.

    Children of a directory are visited in name order; a whole level is
    recorded before the next one. Symlinks are recorded, never followed.
    Unreadable entries keep an error and the walk continues.
    """
    root_path = os.path.abspath(os.fspath(root))
    if not os.path.lexists(root_path):
        raise SnapshotError(f"Snapshot root does not exist: {root_path}")

    snap = Snapshot(
        root=root_path,
        taken_at=datetime.now(timezone.utc).isoformat(),
        max_depth=max_depth,
        include_files=include_files,
    )

    root_entry = describe(root_path, ".", 0)
    snap.entries.append(root_entry)
    queue: deque[tuple[str, AclEntry]] = deque()
    if root_entry.kind == "directory":
        queue.append((root_path, root_entry))

    while queue:
        dir_path, parent = queue.popleft()
        if max_depth is not None and parent.depth >= max_depth:
            continue

        try:
            with os.scandir(dir_path) as it:
                children = sorted(it, key=lambda d: d.name)
        except OSError as e:
            parent.error = f"cannot list: {e.strerror or e}"
            logger.warning(f"Cannot list {dir_path}: {e}")
            continue

        for child in children:
            is_dir = child.is_dir(follow_symlinks=False)
            if not include_files and not is_dir:
                continue
            relative = child.name if parent.path == "." else f"{parent.path}/{child.name}"
            entry = describe(child.path, relative, parent.depth + 1)
            if not entry.error and not parent.error:
                entry.differs_from_parent = entry.access_signature() != parent.access_signature()
            snap.entries.append(entry)
            if entry.kind == "directory":
                queue.append((child.path, entry))

    logger.info(
        f"Snapshot of {root_path}: {len(snap.entries)} entries, {snap.error_count} errors"
    )
    return snap


def diff_snapshots(old: Snapshot, new: Snapshot) -> dict[str, list]:
    """Compare two snapshots by relative path."""
    old_by_path = {e.path: e for e in old.entries}
    new_by_path = {e.path: e for e in new.entries}

    changed = []
    for path in sorted(old_by_path.keys() & new_by_path.keys()):
        before, after = old_by_path[path], new_by_path[path]
        changes = {
            name: [getattr(before, name), getattr(after, name)]
            for name in COMPARED_FIELDS
            if getattr(before, name) != getattr(after, name)
        }
        if changes:
            changed.append({"path": path, "changes": changes})

    return {
        "added": sorted(new_by_path.keys() - old_by_path.keys()),
        "removed": sorted(old_by_path.keys() - new_by_path.keys()),
        "changed": changed,
    }
