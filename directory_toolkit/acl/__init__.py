from .snapshot import (
    AclEntry,
    Snapshot,
    SnapshotError,
    decode_posix_acl,
    diff_snapshots,
    snapshot,
)

__all__ = [
    "AclEntry",
    "Snapshot",
    "SnapshotError",
    "decode_posix_acl",
    "diff_snapshots",
    "snapshot",
]
