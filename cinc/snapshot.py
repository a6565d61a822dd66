"""Snapshot packaging

A snapshot is a gzip compressed tarball holding an 'index.json' member that
describes the save set, followed by one member per save file. The index
records for each file its portable key, the absolute path it was read from,
its size, permissions, modification time and SHA-256 digest.

The fingerprint of a snapshot is a SHA-256 over the (key, content) pairs of
its files sorted by key; it does not depend on when or where the snapshot
was made, so equal fingerprints mean equal saves.
"""

import datetime
import hashlib
import io
import json
import os
import platform
import tarfile
import time
import zlib
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Tuple

from cinc.exceptions import CorruptSnapshot
from cinc.manifest import get_placeholders, substitute
from cinc.resolver import ResolvedSaveSet
from cinc.util.log import logger
from cinc.util.system import write_file_atomically

SNAPSHOT_FORMAT = 1
INDEX_NAME = "index.json"
ARCHIVE_EXTENSION = ".tar.gz"


@dataclass(frozen=True, order=True)
class LogicalVersion:
    """Recency of a snapshot: a per-game sequence counter, then the time
    it was produced. Ordering only looks at the timestamp when sequences
    are equal, so clock skew between machines can't reorder versions."""

    sequence: int = 0
    timestamp: float = 0.0

    @classmethod
    def initial(cls, now: Optional[float] = None) -> "LogicalVersion":
        return cls(1, time.time() if now is None else now)

    def next(self, now: Optional[float] = None) -> "LogicalVersion":
        now = time.time() if now is None else now
        return LogicalVersion(self.sequence + 1, max(now, self.timestamp))

    def to_dict(self) -> dict:
        return {"sequence": self.sequence, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict) -> "LogicalVersion":
        return cls(int(data["sequence"]), float(data["timestamp"]))

    def __str__(self):
        date = datetime.datetime.fromtimestamp(self.timestamp, tz=datetime.timezone.utc)
        return "v%d (%s)" % (self.sequence, date.isoformat(timespec="seconds"))


@dataclass(frozen=True)
class SnapshotEntry:
    key: str
    path: str
    size: int
    mode: int
    mtime: float
    sha256: str
    member: str = ""

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "path": self.path,
            "size": self.size,
            "mode": self.mode,
            "mtime": self.mtime,
            "sha256": self.sha256,
            "member": self.member,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SnapshotEntry":
        return cls(
            key=data["key"],
            path=data["path"],
            size=int(data["size"]),
            mode=int(data["mode"]),
            mtime=float(data["mtime"]),
            sha256=data["sha256"],
            member=data["member"],
        )


@dataclass
class Snapshot:
    """A save set packed at one point in time.

    Attributes:
        fingerprint: Content hash of the save set.
        version: Logical version given to the snapshot.
        entries: Files in the snapshot, sorted by path.
        payload: The compressed archive.
        hostname: Machine that made the snapshot.
        parent: Fingerprint of the remote snapshot this one replaces.
    """

    fingerprint: str
    version: LogicalVersion
    entries: Tuple[SnapshotEntry, ...] = ()
    payload: bytes = b""
    hostname: str = ""
    parent: Optional[str] = None
    created: float = field(default_factory=time.time)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def size(self) -> int:
        return len(self.payload)

    def __repr__(self):
        return "<Snapshot %s %s: %d files>" % (self.fingerprint[:12], self.version, len(self.entries))

    @classmethod
    def from_bytes(cls, payload: bytes) -> "Snapshot":
        """Read the index of a fetched archive.

        Raises:
            CorruptSnapshot: if the archive or its index can't be read
        """
        try:
            with tarfile.open(fileobj=io.BytesIO(payload), mode="r:gz") as archive:
                index_file = archive.extractfile(INDEX_NAME)
                if index_file is None:
                    raise CorruptSnapshot("Snapshot has no index")
                index = json.loads(index_file.read().decode("utf-8"))
        except (tarfile.TarError, OSError, EOFError, zlib.error, KeyError, ValueError) as ex:
            raise CorruptSnapshot("Unreadable snapshot: %s" % ex) from ex
        if index.get("format") != SNAPSHOT_FORMAT:
            raise CorruptSnapshot("Unsupported snapshot format %s" % index.get("format"))
        try:
            return cls(
                fingerprint=index["fingerprint"],
                version=LogicalVersion.from_dict(index["version"]),
                entries=tuple(SnapshotEntry.from_dict(entry) for entry in index["files"]),
                payload=payload,
                hostname=index.get("hostname", ""),
                parent=index.get("parent"),
                created=float(index.get("created", 0)),
            )
        except (KeyError, TypeError, ValueError) as ex:
            raise CorruptSnapshot("Invalid snapshot index: %s" % ex) from ex

    def read_contents(self) -> List[Tuple[SnapshotEntry, bytes]]:
        """Return the content of every file, after checking each digest
        and the fingerprint of the whole set.

        Raises:
            CorruptSnapshot: on any mismatch
        """
        contents = []
        try:
            with tarfile.open(fileobj=io.BytesIO(self.payload), mode="r:gz") as archive:
                for entry in self.entries:
                    member = archive.extractfile(entry.member)
                    if member is None:
                        raise CorruptSnapshot("%s is not a file in the snapshot" % entry.member)
                    content = member.read()
                    if hashlib.sha256(content).hexdigest() != entry.sha256:
                        raise CorruptSnapshot("Checksum mismatch for %s" % entry.key)
                    contents.append((entry, content))
        except (tarfile.TarError, OSError, EOFError, zlib.error, KeyError) as ex:
            raise CorruptSnapshot("Unreadable snapshot: %s" % ex) from ex
        fingerprint = compute_fingerprint((entry.key, content) for entry, content in contents)
        if fingerprint != self.fingerprint:
            raise CorruptSnapshot(
                "Snapshot content hashes to %s, expected %s" % (fingerprint[:12], self.fingerprint[:12])
            )
        return contents


def compute_fingerprint(items: Iterable[Tuple[str, bytes]]) -> str:
    """Hash (key, content) pairs in key order"""
    hasher = hashlib.sha256()
    for key, content in sorted(items, key=lambda item: item[0]):
        hasher.update(key.encode("utf-8"))
        hasher.update(b"\0")
        hasher.update(len(content).to_bytes(8, "big"))
        hasher.update(content)
    return hasher.hexdigest()


def _read_save_set(save_set: ResolvedSaveSet):
    """Read the files of a save set, skipping the ones that vanished"""
    for save_file in save_set:
        try:
            with open(save_file.path, "rb") as save_fd:
                content = save_fd.read()
            stat = os.stat(save_file.path)
        except FileNotFoundError:
            logger.warning("%s disappeared before it could be read", save_file.path)
            continue
        yield save_file, content, stat


def fingerprint_files(save_set: ResolvedSaveSet) -> Optional[str]:
    """Fingerprint of the files currently on disk, None for an empty set"""
    items = [(save_file.key, content) for save_file, content, _stat in _read_save_set(save_set)]
    if not items:
        return None
    return compute_fingerprint(items)


def _add_member(archive, name, content, mode=0o644, mtime=0.0):
    info = tarfile.TarInfo(name)
    info.size = len(content)
    info.mode = mode & 0o7777
    info.mtime = int(mtime)
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    archive.addfile(info, io.BytesIO(content))


def pack(
    save_set: ResolvedSaveSet,
    version: Optional[LogicalVersion] = None,
    parent: Optional[str] = None,
    hostname: Optional[str] = None,
) -> Snapshot:
    """Pack the files of a save set into a snapshot.

    An empty save set gives a valid snapshot without files.
    """
    version = version or LogicalVersion.initial()
    hostname = hostname or platform.node()
    files = list(_read_save_set(save_set))
    fingerprint = compute_fingerprint((save_file.key, content) for save_file, content, _stat in files)

    entries = []
    for index, (save_file, content, stat) in enumerate(files):
        entries.append(
            SnapshotEntry(
                key=save_file.key,
                path=save_file.path,
                size=len(content),
                mode=stat.st_mode & 0o7777,
                mtime=stat.st_mtime,
                sha256=hashlib.sha256(content).hexdigest(),
                member="files/%05d" % index,
            )
        )
    created = time.time()
    index_data = {
        "format": SNAPSHOT_FORMAT,
        "fingerprint": fingerprint,
        "version": version.to_dict(),
        "hostname": hostname,
        "parent": parent,
        "created": created,
        "files": [entry.to_dict() for entry in entries],
    }

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        _add_member(archive, INDEX_NAME, json.dumps(index_data, indent=2, sort_keys=True).encode("utf-8"))
        for entry, (_save_file, content, _stat) in zip(entries, files):
            _add_member(archive, entry.member, content, mode=entry.mode, mtime=entry.mtime)

    snapshot = Snapshot(
        fingerprint=fingerprint,
        version=version,
        entries=tuple(entries),
        payload=buffer.getvalue(),
        hostname=hostname,
        parent=parent,
        created=created,
    )
    logger.debug("Packed %r (%d bytes)", snapshot, snapshot.size)
    return snapshot


def get_restore_path(entry: SnapshotEntry, destination_roots: Optional[Mapping[str, str]] = None) -> str:
    """Where a snapshot entry should be written on this machine"""
    if destination_roots is not None and get_placeholders(entry.key):
        return os.path.normpath(substitute(entry.key, destination_roots))
    return entry.path


def unpack(snapshot: Snapshot, destination_roots: Optional[Mapping[str, str]] = None) -> List[str]:
    """Restore the files of a snapshot and return the paths written.

    With destination_roots (placeholder values of this machine), files go
    where their portable key points to; otherwise they go back to the
    absolute path they were packed from. Nothing is written unless the
    whole snapshot checks out, and every file is written to a temporary
    name first then renamed over the old one.

    Raises:
        CorruptSnapshot: if the snapshot doesn't match its fingerprint
        UnresolvedVariable: if destination_roots lacks a placeholder
    """
    contents = snapshot.read_contents()
    targets = [get_restore_path(entry, destination_roots) for entry, _content in contents]
    restored = []
    for target, (entry, content) in zip(targets, contents):
        logger.debug("Restoring %s to %s", entry.key, target)
        write_file_atomically(target, content, mode=entry.mode, mtime=entry.mtime)
        restored.append(target)
    logger.info("Restored %d files from %r", len(restored), snapshot)
    return restored


def remove_stale_files(save_set: ResolvedSaveSet, restored: Iterable[str]) -> List[str]:
    """Delete the files of save_set that a restore didn't write, so the
    local saves end up equal to the restored snapshot. Returns the paths
    removed."""
    kept = {os.path.normpath(path) for path in restored}
    removed = []
    for save_file in save_set:
        if os.path.normpath(save_file.path) in kept:
            continue
        try:
            os.unlink(save_file.path)
        except FileNotFoundError:
            continue
        logger.info("Removed %s, it is not part of the restored saves", save_file.path)
        removed.append(save_file.path)
    return removed
