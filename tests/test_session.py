import asyncio
import os
import tempfile
import time
from unittest import TestCase
from unittest.mock import patch

from cinc import PROTOCOL_VERSION
from cinc.backends import FilesystemBackend
from cinc.config import BackendConfig, Config
from cinc.exceptions import TransferError
from cinc.lineage import LineageStore
from cinc.manifest import SaveRule, manifest_from_games
from cinc.platforms import native_bindings
from cinc.reconciler import SyncAction, SyncState
from cinc.resolver import ResolvedSaveSet, SaveFile
from cinc.session import SyncSession, launch
from cinc.snapshot import LogicalVersion, pack

GAME_ID = "game-X"
MANIFEST = manifest_from_games({GAME_ID: [SaveRule("${home}/saves/*.sav")]})


def write_file(path, content):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as save_file:
        save_file.write(content)


def read_file(path):
    with open(path, "rb") as save_file:
        return save_file.read()


class FakeRunner:
    """Stands in for the game, optionally doing something while 'running'"""

    def __init__(self, on_run=None, exit_code=0):
        self.on_run = on_run
        self.exit_code = exit_code
        self.calls = []

    async def __call__(self, command, env=None, cwd=None):
        self.calls.append(command)
        if self.on_run:
            self.on_run()
        return self.exit_code


class SessionTestCase(TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.home = os.path.join(self.tmpdir.name, "home")
        self.other_home = os.path.join(self.tmpdir.name, "other")
        os.makedirs(self.home)
        self.backend = FilesystemBackend(os.path.join(self.tmpdir.name, "remote"), name="usb")
        self.lineage = LineageStore(os.path.join(self.tmpdir.name, "sync-state.json"))

    def tearDown(self):
        self.tmpdir.cleanup()

    def local_save(self, name="a.sav"):
        return os.path.join(self.home, "saves", name)

    def get_session(self, game_id=GAME_ID, **kwargs):
        kwargs.setdefault("retries", 2)
        kwargs.setdefault("backoff", 0)
        kwargs.setdefault("timeout", 10)
        kwargs.setdefault("safety_margin", None)
        return SyncSession(
            MANIFEST,
            game_id,
            native_bindings(home=self.home),
            self.backend,
            lineage=self.lineage,
            hostname="deck",
            **kwargs
        )

    def push_from_other_machine(self, files, sequence=None):
        """Push a snapshot of `files` (name -> content) as another machine would"""
        save_files = []
        for name, content in files.items():
            path = os.path.join(self.other_home, "saves", name)
            write_file(path, content)
            save_files.append(SaveFile(path, "${home}/saves/%s" % name))
        latest = self.backend.get_latest(GAME_ID)
        if sequence:
            version = LogicalVersion(sequence, 100.0)
        else:
            version = latest.version.next() if latest else LogicalVersion.initial()
        snapshot = pack(ResolvedSaveSet(save_files), version, latest.fingerprint if latest else None, "desktop")
        return self.backend.push(GAME_ID, snapshot)

    def launch(self, session, runner):
        return asyncio.run(launch(session, ["game"], runner=runner))


class TestPull(SessionTestCase):
    def test_empty_local_pulls_remote(self):
        record = self.push_from_other_machine({"a.sav": b"slot one", "b.sav": b"slot two"}, sequence=3)
        session = self.get_session()
        report = asyncio.run(session.pre_launch())

        self.assertEqual(report.state, SyncState.PULLED)
        self.assertEqual(report.action, SyncAction.PULL)
        self.assertEqual(sorted(report.restored), [self.local_save("a.sav"), self.local_save("b.sav")])
        self.assertEqual(read_file(self.local_save("b.sav")), b"slot two")
        self.assertEqual(session.local_before.fingerprint, record.fingerprint)
        self.assertEqual(self.lineage.get(GAME_ID, "usb").fingerprint, record.fingerprint)

    def test_pull_then_push_changes(self):
        first = self.push_from_other_machine({"a.sav": b"v1"})
        runner = FakeRunner(lambda: write_file(self.local_save(), b"v2"))
        result = self.launch(self.get_session(), runner)

        self.assertEqual(result.pre_launch.state, SyncState.PULLED)
        self.assertEqual(result.post_launch.state, SyncState.PUSHED)
        latest = self.backend.get_latest(GAME_ID)
        self.assertEqual(latest, result.post_launch.record)
        self.assertEqual(latest.ancestors, (first.fingerprint,))
        self.assertEqual(latest.version.sequence, first.version.sequence + 1)
        self.assertEqual(latest.hostname, "deck")
        self.assertEqual(self.lineage.get(GAME_ID, "usb").fingerprint, latest.fingerprint)
        self.assertEqual(self.backend.read_protocol_marker(), PROTOCOL_VERSION)

    def test_newer_remote_after_previous_sync(self):
        self.push_from_other_machine({"a.sav": b"v1"})
        self.launch(self.get_session(), FakeRunner())
        newer = self.push_from_other_machine({"a.sav": b"v2"})

        report = asyncio.run(self.get_session().pre_launch())
        self.assertEqual(report.state, SyncState.PULLED)
        self.assertEqual(read_file(self.local_save()), b"v2")
        self.assertEqual(self.lineage.get(GAME_ID, "usb").fingerprint, newer.fingerprint)

    def test_pull_removes_saves_missing_from_remote(self):
        self.push_from_other_machine({"a.sav": b"v1", "b.sav": b"v1"})
        self.launch(self.get_session(), FakeRunner())
        newer = self.push_from_other_machine({"a.sav": b"v2"})

        session = self.get_session()
        result = self.launch(session, FakeRunner())
        self.assertEqual(result.pre_launch.state, SyncState.PULLED)
        self.assertEqual(result.pre_launch.removed, [self.local_save("b.sav")])
        self.assertFalse(os.path.exists(self.local_save("b.sav")))
        self.assertEqual(session.local_before.fingerprint, newer.fingerprint)
        self.assertEqual(result.post_launch.state, SyncState.SKIPPED)

        result = self.launch(self.get_session(), FakeRunner())
        self.assertEqual(result.pre_launch.state, SyncState.SKIPPED)
        self.assertEqual(result.post_launch.state, SyncState.SKIPPED)
        self.assertEqual(self.backend.get_latest(GAME_ID).fingerprint, newer.fingerprint)

    def test_corrupt_remote_is_held(self):
        self.push_from_other_machine({"a.sav": b"v1"})
        runner = FakeRunner(lambda: write_file(self.local_save(), b"new game"))
        with patch.object(self.backend, "fetch", return_value=b"garbage"):
            with patch.object(self.backend, "push") as push:
                result = self.launch(self.get_session(), runner)
        self.assertEqual(result.pre_launch.state, SyncState.CONFLICT_HELD)
        self.assertIsNotNone(result.pre_launch.error)
        self.assertEqual(len(runner.calls), 1)
        push.assert_not_called()


class TestInSync(SessionTestCase):
    def test_equal_fingerprints_transfer_nothing(self):
        write_file(self.local_save(), b"same")
        self.push_from_other_machine({"a.sav": b"same"})
        session = self.get_session()
        with patch.object(self.backend, "fetch", wraps=self.backend.fetch) as fetch:
            with patch.object(self.backend, "push", wraps=self.backend.push) as push:
                result = self.launch(session, FakeRunner())
        self.assertEqual(result.pre_launch.state, SyncState.SKIPPED)
        self.assertEqual(result.post_launch.state, SyncState.SKIPPED)
        fetch.assert_not_called()
        push.assert_not_called()
        self.assertEqual(session.state, SyncState.IDLE)

    def test_first_push(self):
        write_file(self.local_save(), b"local only")
        result = self.launch(self.get_session(), FakeRunner())
        self.assertEqual(result.pre_launch.reason, "first sync, nothing to pull")
        self.assertEqual(result.post_launch.state, SyncState.PUSHED)
        self.assertEqual(self.backend.get_latest(GAME_ID).version.sequence, 1)
        self.assertEqual(self.backend.read_protocol_marker(), PROTOCOL_VERSION)

    def test_nothing_to_sync(self):
        result = self.launch(self.get_session(), FakeRunner(exit_code=3))
        self.assertEqual(result.exit_code, 3)
        self.assertEqual(result.post_launch.state, SyncState.SKIPPED)
        self.assertIsNone(self.backend.get_latest(GAME_ID))


class TestConflicts(SessionTestCase):
    def test_diverged_saves_are_never_pushed(self):
        remote = self.push_from_other_machine({"a.sav": b"F1"})
        write_file(self.local_save(), b"F2")
        runner = FakeRunner(lambda: write_file(self.local_save(), b"F2 played more"))
        with patch.object(self.backend, "push", wraps=self.backend.push) as push:
            result = self.launch(self.get_session(), runner)

        self.assertEqual(result.pre_launch.state, SyncState.CONFLICT_HELD)
        self.assertEqual(result.post_launch.action, SyncAction.CONFLICT)
        self.assertEqual(len(runner.calls), 1)
        push.assert_not_called()
        self.assertEqual(self.backend.get_latest(GAME_ID), remote)
        self.assertEqual(read_file(self.local_save()), b"F2 played more")

    def test_remote_changed_during_play(self):
        self.push_from_other_machine({"a.sav": b"v1"})

        def play():
            write_file(self.local_save(), b"deck progress")
            self.push_from_other_machine({"a.sav": b"desktop progress"})

        result = self.launch(self.get_session(), FakeRunner(play))
        self.assertEqual(result.post_launch.action, SyncAction.CONFLICT)
        self.assertEqual(result.post_launch.state, SyncState.SKIPPED)
        self.assertEqual(self.backend.get_latest(GAME_ID).hostname, "desktop")

    def test_safety_margin_stashes_local_saves(self):
        write_file(self.local_save(), b"old local")
        os.utime(self.local_save(), (1000, 1000))
        record = self.push_from_other_machine({"a.sav": b"remote"})

        report = asyncio.run(self.get_session(safety_margin=60).pre_launch())
        self.assertEqual(report.action, SyncAction.PULL_WITH_STASH)
        self.assertEqual(report.state, SyncState.PULLED)
        self.assertEqual(read_file(self.local_save()), b"remote")
        stashed = self.backend.list_stashed(GAME_ID)
        self.assertEqual([stash.location for stash in stashed], [report.stashed.location])
        self.assertEqual(self.backend.get_latest(GAME_ID), record)

    def test_stashed_pull_removes_saves_missing_from_remote(self):
        write_file(self.local_save("b.sav"), b"old local extra")
        os.utime(self.local_save("b.sav"), (1000, 1000))
        record = self.push_from_other_machine({"a.sav": b"remote"})

        session = self.get_session(safety_margin=60)
        report = asyncio.run(session.pre_launch())
        self.assertEqual(report.action, SyncAction.PULL_WITH_STASH)
        self.assertIsNotNone(report.stashed)
        self.assertEqual(report.removed, [self.local_save("b.sav")])
        self.assertEqual(session.local_before.fingerprint, record.fingerprint)


class TestFailures(SessionTestCase):
    def test_unreachable_backend_still_launches(self):
        write_file(self.local_save(), b"local")
        runner = FakeRunner()
        with patch.object(self.backend, "read_object", side_effect=TransferError("offline")) as read_object:
            with patch.object(self.backend, "write_object", side_effect=TransferError("offline")):
                result = self.launch(self.get_session(), runner)

        self.assertEqual(len(runner.calls), 1)
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.pre_launch.state, SyncState.SKIPPED)
        self.assertEqual(read_object.call_count, 3)
        self.assertTrue(result.post_launch.warnings)

    def test_failed_push_is_reported(self):
        write_file(self.local_save(), b"local")
        runner = FakeRunner(lambda: write_file(self.local_save(), b"more"))
        with patch.object(self.backend, "push", side_effect=TransferError("disk full")) as push:
            result = self.launch(self.get_session(), runner)
        self.assertEqual(push.call_count, 3)
        self.assertEqual(result.post_launch.state, SyncState.SKIPPED)
        self.assertIn("disk full", result.post_launch.warnings[-1])

    def test_timeouts_are_transfer_errors(self):
        session = self.get_session(retries=0, timeout=0.01)

        def slow():
            time.sleep(0.5)

        with self.assertRaises(TransferError):
            asyncio.run(session._retry("slow call", slow))

    def test_incompatible_backend_disables_sync(self):
        self.backend.write_protocol_marker("9.0")
        write_file(self.local_save(), b"local")
        runner = FakeRunner(lambda: write_file(self.local_save(), b"more"))
        result = self.launch(self.get_session(), runner)
        self.assertEqual(len(runner.calls), 1)
        self.assertIn("incompatible", result.pre_launch.error)
        self.assertEqual(result.post_launch.reason, "sync disabled for this launch")
        self.assertIsNone(self.backend.get_latest(GAME_ID))

    def test_unknown_game_still_launches(self):
        runner = FakeRunner()
        result = self.launch(self.get_session(game_id="Unknown"), runner)
        self.assertEqual(len(runner.calls), 1)
        self.assertEqual(result.pre_launch.state, SyncState.SKIPPED)
        self.assertIsNotNone(result.pre_launch.error)

    def test_crashing_runner_still_closes_backend(self):
        session = self.get_session()

        async def broken_runner(command, env=None, cwd=None):
            raise OSError("exec format error")

        with patch.object(self.backend, "close") as close:
            with self.assertRaises(OSError):
                self.launch(session, broken_runner)
        close.assert_called_once_with()
        self.assertEqual(session.state, SyncState.IDLE)

    def test_crash_in_sync_still_launches(self):
        runner = FakeRunner()
        session = self.get_session()
        with patch.object(session, "_scan", side_effect=RuntimeError("bug")):
            result = self.launch(session, runner)
        self.assertEqual(len(runner.calls), 1)
        self.assertIsNone(result.pre_launch)


class TestFromConfig(SessionTestCase):
    def test_from_config(self):
        config = Config([BackendConfig("usb", "filesystem", root=self.backend.root)])
        bindings = native_bindings(home=self.home)
        session = SyncSession.from_config(MANIFEST, GAME_ID, bindings, config, lineage=self.lineage)
        self.assertIsInstance(session.backend, FilesystemBackend)
        self.assertEqual(session.backend.name, "usb")
        self.assertEqual(session.state, SyncState.IDLE)
