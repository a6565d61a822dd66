"""Storage backend contract

Backends store, under their root, one folder per game:

    cinc-protocol                  protocol version marker
    <game>/latest.json             record of the current snapshot
    <game>/snapshots/<n>-<fp>.tar.gz
    <game>/conflicts/<host>-<time>-<fp>.tar.gz (+ .json)

Concrete transports only provide the object primitives (read, write, move,
exists, list, delete). The sync operations are built on those here so every
transport gets the same atomicity: snapshot archives are written under a
name that is never reused, and latest.json is written to a staging name then
moved over the canonical one. A reader sees either the previous record or
the new one, and a record never points to a partially uploaded archive.
"""

import json
import platform
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from cinc import PROTOCOL_VERSION
from cinc.compat import CompatResult, check_compat
from cinc.exceptions import NotFound, TransferError
from cinc.snapshot import ARCHIVE_EXTENSION, LogicalVersion, Snapshot
from cinc.util.log import logger
from cinc.util.strings import get_storage_name, human_size

PROTOCOL_MARKER = "cinc-protocol"
LATEST_NAME = "latest.json"
SNAPSHOTS_DIR = "snapshots"
CONFLICTS_DIR = "conflicts"
# Number of previous fingerprints kept in a record
MAX_ANCESTORS = 32


@dataclass(frozen=True)
class RemoteRecord:
    """Metadata of a snapshot stored on a backend.

    Attributes:
        game_id: Game the snapshot belongs to.
        version: Logical version of the snapshot.
        fingerprint: Content fingerprint of the snapshot.
        size: Size of the archive in bytes.
        location: Where the archive is stored, only meaningful to the backend.
        hostname: Machine that pushed the snapshot.
        ancestors: Fingerprints of the snapshots it replaced, newest first.
    """

    game_id: str
    version: LogicalVersion
    fingerprint: str
    size: int
    location: str
    hostname: str = ""
    ancestors: Tuple[str, ...] = ()
    pushed: float = field(default_factory=time.time)

    def descends_from(self, fingerprint: Optional[str]) -> bool:
        """True if `fingerprint` was a previous latest snapshot of this game"""
        return bool(fingerprint) and fingerprint in self.ancestors

    def to_dict(self) -> dict:
        return {
            "game_id": self.game_id,
            "version": self.version.to_dict(),
            "fingerprint": self.fingerprint,
            "size": self.size,
            "location": self.location,
            "hostname": self.hostname,
            "ancestors": list(self.ancestors),
            "pushed": self.pushed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteRecord":
        return cls(
            game_id=data["game_id"],
            version=LogicalVersion.from_dict(data["version"]),
            fingerprint=data["fingerprint"],
            size=int(data["size"]),
            location=data["location"],
            hostname=data.get("hostname", ""),
            ancestors=tuple(data.get("ancestors") or ()),
            pushed=float(data.get("pushed", 0)),
        )


class StorageBackend(ABC):
    """Remote object store holding the snapshots of every game"""

    backend_type = None

    def __init__(self, name: str = ""):
        self.name = name or self.backend_type or self.__class__.__name__

    def __repr__(self):
        return "<%s %s>" % (self.__class__.__name__, self.name)

    # Object primitives, paths are relative to the backend root and use '/'

    @abstractmethod
    def read_object(self, path: str) -> bytes:
        """Return the content of an object.

        Raises:
            NotFound: if there is no object at path
            TransferError: on any other failure
        """

    @abstractmethod
    def write_object(self, path: str, data: bytes) -> None:
        """Create or replace an object, creating parent folders as needed"""

    @abstractmethod
    def move_object(self, source: str, destination: str) -> None:
        """Move an object, replacing whatever is at destination"""

    @abstractmethod
    def object_exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def list_objects(self, path: str) -> List[str]:
        """Names of the objects in a folder, empty if it doesn't exist"""

    @abstractmethod
    def delete_object(self, path: str) -> None:
        pass

    def close(self) -> None:
        """Release any connection held by the backend"""

    def write_object_atomically(self, path: str, data: bytes) -> None:
        """Upload to a staging name next to path, then move it into place"""
        folder, _sep, basename = path.rpartition("/")
        staging_name = ".%s.%s.partial" % (basename, uuid.uuid4().hex[:8])
        staging_path = "%s/%s" % (folder, staging_name) if folder else staging_name
        self.write_object(staging_path, data)
        try:
            self.move_object(staging_path, path)
        except TransferError:
            try:
                self.delete_object(staging_path)
            except (NotFound, TransferError) as ex:
                logger.warning("Could not remove staging object %s: %s", staging_path, ex)
            raise

    def get_game_path(self, game_id: str, *parts: str) -> str:
        return "/".join((get_storage_name(game_id),) + parts)

    def _read_record(self, path: str) -> Optional[RemoteRecord]:
        try:
            data = self.read_object(path)
        except NotFound:
            return None
        try:
            return RemoteRecord.from_dict(json.loads(data.decode("utf-8")))
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as ex:
            raise TransferError("Invalid record at %s on %s: %s" % (path, self.name, ex)) from ex

    @staticmethod
    def _dump_record(record: RemoteRecord) -> bytes:
        return json.dumps(record.to_dict(), indent=2, sort_keys=True).encode("utf-8")

    # Sync operations

    def get_latest(self, game_id: str) -> Optional[RemoteRecord]:
        """Record of the current snapshot of a game, None if there is none"""
        return self._read_record(self.get_game_path(game_id, LATEST_NAME))

    def fetch(self, record: RemoteRecord) -> bytes:
        """Download the archive a record points to.

        Raises:
            TransferError: on failure or if the archive is incomplete
        """
        try:
            data = self.read_object(record.location)
        except NotFound as ex:
            raise TransferError("Snapshot %s is missing from %s" % (record.location, self.name)) from ex
        if len(data) != record.size:
            raise TransferError(
                "Got %d bytes for %s, expected %d" % (len(data), record.location, record.size)
            )
        logger.debug("Fetched %s (%s) from %s", record.location, human_size(record.size), self.name)
        return data

    def push(self, game_id: str, snapshot: Snapshot) -> RemoteRecord:
        """Make `snapshot` the latest snapshot of the game"""
        ancestors: Tuple[str, ...] = ()
        previous = self.get_latest(game_id)
        if previous and previous.fingerprint != snapshot.fingerprint:
            ancestors = ((previous.fingerprint,) + previous.ancestors)[:MAX_ANCESTORS]
        elif previous:
            ancestors = previous.ancestors

        archive_name = "%08d-%s%s" % (snapshot.version.sequence, snapshot.fingerprint[:16], ARCHIVE_EXTENSION)
        location = self.get_game_path(game_id, SNAPSHOTS_DIR, archive_name)
        self.write_object_atomically(location, snapshot.payload)

        record = RemoteRecord(
            game_id=game_id,
            version=snapshot.version,
            fingerprint=snapshot.fingerprint,
            size=snapshot.size,
            location=location,
            hostname=snapshot.hostname or platform.node(),
            ancestors=ancestors,
        )
        self.write_object_atomically(self.get_game_path(game_id, LATEST_NAME), self._dump_record(record))
        logger.info("Pushed %r for %s to %s", snapshot, game_id, self.name)
        return record

    def stash(self, game_id: str, snapshot: Snapshot, label: Optional[str] = None) -> RemoteRecord:
        """Keep a copy of a snapshot aside without touching the latest one.
        Used to save local files before they get overwritten by a pull."""
        label = get_storage_name(label or snapshot.hostname or platform.node())
        basename = "%s-%d-%s" % (label, int(snapshot.created), snapshot.fingerprint[:12])
        location = self.get_game_path(game_id, CONFLICTS_DIR, basename + ARCHIVE_EXTENSION)
        self.write_object_atomically(location, snapshot.payload)
        record = RemoteRecord(
            game_id=game_id,
            version=snapshot.version,
            fingerprint=snapshot.fingerprint,
            size=snapshot.size,
            location=location,
            hostname=snapshot.hostname,
        )
        self.write_object_atomically(
            self.get_game_path(game_id, CONFLICTS_DIR, basename + ".json"), self._dump_record(record)
        )
        logger.warning("Stashed local saves of %s to %s on %s", game_id, location, self.name)
        return record

    def list_stashed(self, game_id: str) -> List[RemoteRecord]:
        """Stashed snapshots of a game, oldest first"""
        records = []
        for name in sorted(self.list_objects(self.get_game_path(game_id, CONFLICTS_DIR))):
            if not name.endswith(".json"):
                continue
            record = self._read_record(self.get_game_path(game_id, CONFLICTS_DIR, name))
            if record:
                records.append(record)
        return sorted(records, key=lambda r: r.pushed)

    def delete(self, record: RemoteRecord) -> None:
        """Remove a stashed snapshot. The latest snapshot can't be deleted."""
        latest = self.get_latest(record.game_id)
        if latest and latest.location == record.location:
            raise ValueError("Refusing to delete the latest snapshot of %s" % record.game_id)
        self.delete_object(record.location)
        if record.location.endswith(ARCHIVE_EXTENSION):
            sidecar = record.location[: -len(ARCHIVE_EXTENSION)] + ".json"
            try:
                self.delete_object(sidecar)
            except NotFound:
                pass

    def read_protocol_marker(self) -> Optional[str]:
        try:
            return self.read_object(PROTOCOL_MARKER).decode("utf-8").strip()
        except NotFound:
            return None
        except UnicodeDecodeError as ex:
            raise TransferError("Invalid protocol marker on %s" % self.name) from ex

    def write_protocol_marker(self, version: str = PROTOCOL_VERSION) -> None:
        self.write_object_atomically(PROTOCOL_MARKER, version.encode("utf-8"))
        logger.info("Marked %s with protocol version %s", self.name, version)

    def check_compat(self, client_version: str = PROTOCOL_VERSION) -> CompatResult:
        return check_compat(self, client_version)
