import os
import tempfile
from unittest import TestCase
from unittest.mock import MagicMock, patch

import httpx
from webdav4.client import ResourceNotFound

from cinc.backends import FilesystemBackend, WebDavBackend, get_backend
from cinc.backends.base import LATEST_NAME, MAX_ANCESTORS, PROTOCOL_MARKER, RemoteRecord
from cinc.backends.webdav import normalize_root
from cinc.compat import CompatResult
from cinc.config import BackendConfig
from cinc.exceptions import MisconfigurationError, NotFound, TransferError
from cinc.resolver import ResolvedSaveSet, SaveFile
from cinc.snapshot import LogicalVersion, Snapshot, pack


class BackendTestCase(TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.backend = FilesystemBackend(os.path.join(self.tmpdir.name, "remote"), name="test")
        self.saves_dir = os.path.join(self.tmpdir.name, "saves")
        os.makedirs(self.saves_dir)

    def tearDown(self):
        self.tmpdir.cleanup()

    def make_snapshot(self, content, sequence=1):
        path = os.path.join(self.saves_dir, "slot.sav")
        with open(path, "wb") as save_file:
            save_file.write(content)
        return pack(ResolvedSaveSet([SaveFile(path, "<home>/slot.sav")]), LogicalVersion(sequence, 100.0 + sequence))


class TestFilesystemPrimitives(BackendTestCase):
    def test_objects(self):
        self.backend.write_object("game/a.bin", b"123")
        self.assertTrue(self.backend.object_exists("game/a.bin"))
        self.assertEqual(self.backend.read_object("game/a.bin"), b"123")
        self.backend.move_object("game/a.bin", "game/sub/b.bin")
        self.assertFalse(self.backend.object_exists("game/a.bin"))
        self.assertEqual(self.backend.list_objects("game"), ["sub"])
        self.assertEqual(self.backend.list_objects("game/sub"), ["b.bin"])
        self.backend.delete_object("game/sub/b.bin")
        self.assertEqual(self.backend.list_objects("game/sub"), [])

    def test_missing_objects(self):
        with self.assertRaises(NotFound):
            self.backend.read_object("nothing")
        with self.assertRaises(NotFound):
            self.backend.delete_object("nothing")
        self.assertEqual(self.backend.list_objects("nothing"), [])

    def test_paths_stay_under_root(self):
        with self.assertRaises(ValueError):
            self.backend.get_local_path("../escape")

    def test_atomic_write_leaves_no_staging_file(self):
        self.backend.write_object_atomically("game/latest.json", b"{}")
        self.assertEqual(self.backend.list_objects("game"), ["latest.json"])

    def test_failed_move_removes_staging_file(self):
        with patch.object(self.backend, "move_object", side_effect=TransferError("boom")):
            with self.assertRaises(TransferError):
                self.backend.write_object_atomically("game/latest.json", b"{}")
        self.assertEqual(self.backend.list_objects("game"), [])


class TestSyncOperations(BackendTestCase):
    def test_no_latest(self):
        self.assertIsNone(self.backend.get_latest("Hollow Game"))

    def test_push_and_fetch(self):
        snapshot = self.make_snapshot(b"v1")
        record = self.backend.push("Hollow Game", snapshot)
        self.assertEqual(record.fingerprint, snapshot.fingerprint)
        self.assertEqual(record.ancestors, ())
        self.assertEqual(self.backend.get_latest("Hollow Game"), record)
        self.assertEqual(Snapshot.from_bytes(self.backend.fetch(record)).fingerprint, snapshot.fingerprint)

    def test_ancestors_are_tracked(self):
        first = self.backend.push("game", self.make_snapshot(b"v1", 1))
        second = self.backend.push("game", self.make_snapshot(b"v2", 2))
        third = self.backend.push("game", self.make_snapshot(b"v3", 3))
        self.assertEqual(third.ancestors, (second.fingerprint, first.fingerprint))
        self.assertTrue(third.descends_from(first.fingerprint))
        self.assertFalse(first.descends_from(third.fingerprint))
        self.assertFalse(third.descends_from(None))

    def test_ancestors_are_bounded(self):
        for sequence in range(MAX_ANCESTORS + 5):
            record = self.backend.push("game", self.make_snapshot(b"v%d" % sequence, sequence + 1))
        self.assertEqual(len(record.ancestors), MAX_ANCESTORS)

    def test_fetch_incomplete_archive(self):
        record = self.backend.push("game", self.make_snapshot(b"v1"))
        self.backend.write_object(record.location, b"short")
        with self.assertRaises(TransferError):
            self.backend.fetch(record)

    def test_fetch_missing_archive(self):
        record = self.backend.push("game", self.make_snapshot(b"v1"))
        self.backend.delete_object(record.location)
        with self.assertRaises(TransferError):
            self.backend.fetch(record)

    def test_invalid_record(self):
        self.backend.write_object(self.backend.get_game_path("game", LATEST_NAME), b"{not json")
        with self.assertRaises(TransferError):
            self.backend.get_latest("game")

    def test_stash(self):
        latest = self.backend.push("game", self.make_snapshot(b"remote"))
        stashed = self.backend.stash("game", self.make_snapshot(b"local"), label="deck")
        self.assertEqual(self.backend.get_latest("game"), latest)
        self.assertEqual([record.location for record in self.backend.list_stashed("game")], [stashed.location])
        self.assertIn("/conflicts/deck-", stashed.location)
        self.backend.delete(stashed)
        self.assertEqual(self.backend.list_stashed("game"), [])

    def test_latest_cant_be_deleted(self):
        latest = self.backend.push("game", self.make_snapshot(b"remote"))
        with self.assertRaises(ValueError):
            self.backend.delete(latest)

    def test_record_dict_conversion(self):
        record = RemoteRecord("game", LogicalVersion(2, 5.0), "f" * 64, 10, "game/x.tar.gz", "deck", ("a", "b"))
        self.assertEqual(RemoteRecord.from_dict(record.to_dict()), record)


class TestProtocolMarker(BackendTestCase):
    def test_uninitialized(self):
        self.assertIsNone(self.backend.read_protocol_marker())
        self.assertEqual(self.backend.check_compat(), CompatResult.UNINITIALIZED)

    def test_marker(self):
        self.backend.write_protocol_marker("1.0")
        self.assertEqual(self.backend.read_protocol_marker(), "1.0")
        self.assertEqual(self.backend.check_compat("1.2"), CompatResult.OK)
        self.backend.write_protocol_marker("1.3")
        self.assertEqual(self.backend.check_compat("1.2"), CompatResult.INCOMPATIBLE)
        self.assertTrue(self.backend.object_exists(PROTOCOL_MARKER))


class TestWebDavBackend(TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.client.exists.return_value = True
        self.backend = WebDavBackend("https://dav.example.com/files/", "/games/saves", name="nas", client=self.client)

    def test_normalize_root(self):
        self.assertEqual(normalize_root("/games/saves"), "games/saves/")
        self.assertEqual(normalize_root("games/saves/"), "games/saves/")
        self.assertEqual(normalize_root(""), "")
        self.assertEqual(normalize_root(None), "")

    def test_read_object(self):
        self.client.download_fileobj.side_effect = lambda resource, buffer: buffer.write(b"payload")
        self.assertEqual(self.backend.read_object("game/latest.json"), b"payload")
        self.assertEqual(self.client.download_fileobj.call_args[0][0], "games/saves/game/latest.json")

    def test_read_missing_object(self):
        self.client.download_fileobj.side_effect = ResourceNotFound("games/saves/x")
        with self.assertRaises(NotFound):
            self.backend.read_object("x")

    def test_network_errors_become_transfer_errors(self):
        self.client.download_fileobj.side_effect = httpx.ConnectError("unreachable")
        with self.assertRaises(TransferError):
            self.backend.read_object("x")

    @patch("cinc.backends.webdav.Client")
    def test_transport_timeout(self, client_class):
        WebDavBackend("https://dav.example.com", timeout=5)
        self.assertEqual(client_class.call_args[1]["timeout"], 5)
        self.client.download_fileobj.side_effect = httpx.ReadTimeout("too slow")
        with self.assertRaises(TransferError):
            self.backend.read_object("x")

    def test_write_creates_missing_folders_once(self):
        self.client.exists.return_value = False
        self.backend.write_object("game/snapshots/a.tar.gz", b"1")
        self.backend.write_object("game/snapshots/b.tar.gz", b"2")
        created = [call[0][0] for call in self.client.mkdir.call_args_list]
        self.assertEqual(created, ["games", "games/saves", "games/saves/game", "games/saves/game/snapshots"])
        self.assertEqual(self.client.upload_fileobj.call_count, 2)

    def test_move_overwrites(self):
        self.backend.move_object("game/.latest.json.partial", "game/latest.json")
        self.client.move.assert_called_once_with(
            "games/saves/game/.latest.json.partial", "games/saves/game/latest.json", overwrite=True
        )

    def test_list_objects(self):
        self.client.ls.return_value = [
            {"name": "games/saves/game/conflicts/a.json", "type": "file"},
            {"name": "games/saves/game/conflicts/sub/", "type": "directory"},
        ]
        self.assertEqual(self.backend.list_objects("game/conflicts"), ["a.json"])
        self.client.ls.side_effect = ResourceNotFound("x")
        self.assertEqual(self.backend.list_objects("game/conflicts"), [])

    def test_repr_hides_credentials(self):
        backend = WebDavBackend("https://dav.example.com", username="me", password="hunter2", client=self.client)
        self.assertNotIn("hunter2", repr(backend))


class TestGetBackend(TestCase):
    def test_filesystem(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            backend = get_backend(BackendConfig("usb", "filesystem", root=tmpdir))
        self.assertIsInstance(backend, FilesystemBackend)
        self.assertEqual(backend.name, "usb")

    @patch("cinc.backends.get_credentials", return_value="secret")
    def test_webdav_credentials_from_keyring(self, get_credentials):
        config = BackendConfig("nas", "webdav", url="https://dav.example.com", username="me", credential_id="nas")
        with patch("cinc.backends.WebDavBackend") as webdav_backend:
            get_backend(config)
        get_credentials.assert_called_once_with("nas")
        self.assertEqual(webdav_backend.call_args[1]["password"], "secret")

    @patch("cinc.backends.get_credentials", return_value=None)
    def test_webdav_missing_credentials(self, _get_credentials):
        config = BackendConfig("nas", "webdav", url="https://dav.example.com", username="me", credential_id="nas")
        with self.assertRaises(MisconfigurationError):
            get_backend(config)
