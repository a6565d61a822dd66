"""Sync session wrapping one game launch

A SyncSession holds everything one invocation needs (manifest, bindings,
backend, lineage) and runs the two sync phases around the game:

    pre_launch()   pull newer saves, or detect a conflict
    post_launch()  push the saves the game wrote

Sync problems never stop the game from starting: anything that goes wrong
is logged, reported, and the phase ends as skipped. Conflicts and corrupt
snapshots leave both local and remote saves untouched.
"""

import asyncio
import platform
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from cinc import settings
from cinc.backends import StorageBackend, get_backend
from cinc.backends.base import RemoteRecord
from cinc.compat import CompatResult
from cinc.config import Config, load_config
from cinc.exceptions import (
    ConflictDetected,
    CorruptSnapshot,
    IncompatibleBackend,
    TransferError,
    UnknownGame,
    UnresolvedVariable,
)
from cinc.lineage import LineageMark, LineageStore
from cinc.manifest import Manifest
from cinc.platforms import BindingContext
from cinc.reconciler import (
    Decision,
    LocalState,
    SyncAction,
    SyncState,
    can_transition,
    confirm_push,
    decide_post_launch,
    decide_pre_launch,
)
from cinc.resolver import ResolvedSaveSet, resolve
from cinc.snapshot import LogicalVersion, Snapshot, fingerprint_files, pack, remove_stale_files, unpack
from cinc.util.log import logger
from cinc.util.process import run_command


@dataclass
class SyncReport:
    """Outcome of a sync phase.

    Attributes:
        phase: 'pre-launch' or 'post-launch'.
        state: State the phase ended in.
        action: Action the reconciler chose.
        reason: Why it was chosen.
        record: Remote record pulled or pushed, if any.
        restored: Local files written by a pull.
        removed: Local files deleted by a pull because the pulled
            snapshot doesn't have them.
        stashed: Record of the local saves stashed before a pull.
        warnings: Problems that did not stop the phase.
        error: Problem that stopped the phase, if any.
    """

    phase: str
    state: SyncState = SyncState.IDLE
    action: SyncAction = SyncAction.NONE
    reason: str = ""
    record: Optional[RemoteRecord] = None
    restored: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    stashed: Optional[RemoteRecord] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class LaunchResult:
    exit_code: int
    pre_launch: Optional[SyncReport] = None
    post_launch: Optional[SyncReport] = None


class SyncSession:
    """Sync context of one game launch"""

    def __init__(
        self,
        manifest: Manifest,
        game_id: str,
        bindings: BindingContext,
        backend: StorageBackend,
        lineage: Optional[LineageStore] = None,
        retries: Optional[int] = None,
        backoff: Optional[float] = None,
        timeout: Optional[float] = None,
        safety_margin: Optional[float] = settings.TIMESTAMP_SAFETY_MARGIN,
        hostname: Optional[str] = None,
    ):
        self.manifest = manifest
        self.game_id = game_id
        self.bindings = bindings
        self.backend = backend
        self.lineage = lineage if lineage is not None else LineageStore()
        self.retries = settings.SYNC_RETRIES if retries is None else retries
        self.backoff = settings.SYNC_BACKOFF if backoff is None else backoff
        self.timeout = settings.NETWORK_TIMEOUT if timeout is None else timeout
        self.safety_margin = safety_margin
        self.hostname = hostname or platform.node()

        self.state = SyncState.IDLE
        self.pre_state: Optional[SyncState] = None
        self.sync_enabled = True
        self.compat: Optional[CompatResult] = None
        self.save_set = ResolvedSaveSet()
        self.local_before = LocalState()
        self.base_fingerprint: Optional[str] = None
        self.push_pending = False
        self.failures: List[str] = []

    def __repr__(self):
        return "<SyncSession %s on %s: %s>" % (self.game_id, self.backend.name, self.state.value)

    @classmethod
    def from_config(
        cls,
        manifest: Manifest,
        game_id: str,
        bindings: BindingContext,
        config: Optional[Config] = None,
        backend_name: Optional[str] = None,
        credentials: Optional[str] = None,
        **kwargs,
    ) -> "SyncSession":
        """Create a session using a configured backend (the default one
        unless backend_name is given)."""
        config = config or load_config()
        backend = get_backend(config.get_backend_config(backend_name), credentials)
        return cls(manifest, game_id, bindings, backend, **kwargs)

    def _set_state(self, new_state: SyncState) -> None:
        if not can_transition(self.state, new_state):
            raise RuntimeError("Can't go from %s to %s" % (self.state.value, new_state.value))
        logger.debug("%s: %s -> %s", self.game_id, self.state.value, new_state.value)
        self.state = new_state

    def _end_phase(self, report: SyncReport, state: SyncState) -> SyncReport:
        self._set_state(state)
        report.state = state
        if report.error:
            logger.error("%s sync of %s ended %s: %s", report.phase, self.game_id, state.value, report.error)
        else:
            logger.info("%s sync of %s ended %s: %s", report.phase, self.game_id, state.value, report.reason)
        return report

    def _record_failure(self, report: SyncReport, message: str) -> None:
        logger.warning(message)
        self.failures.append(message)
        report.warnings.append(message)

    async def _call(self, func: Callable, *args):
        """Run a blocking backend call in a worker thread, with a timeout.

        The timeout only stops waiting: a thread can't be cancelled, so a
        call that timed out keeps running until the transport gives up on
        its own (WebDavBackend passes NETWORK_TIMEOUT to its client).
        Retries can overlap such a call; backend writes go through a
        staging name and a move, so the last move wins and no reader sees
        a partial object.
        """
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), self.timeout)
        except asyncio.TimeoutError as ex:
            raise TransferError("%s timed out after %ss" % (getattr(func, "__name__", func), self.timeout)) from ex

    async def _retry(self, description: str, func: Callable, *args):
        """Call func, retrying TransferErrors with exponential backoff"""
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._call(func, *args)
            except TransferError as ex:
                logger.warning("%s failed (attempt %d/%d): %s", description, attempt, attempts, ex)
                if attempt == attempts:
                    raise
                await asyncio.sleep(self.backoff * 2 ** (attempt - 1))

    def _scan(self) -> LocalState:
        """Resolve the save set and fingerprint it"""
        self.save_set = resolve(self.manifest, self.game_id, self.bindings)
        return LocalState(fingerprint_files(self.save_set), self.save_set.newest_mtime)

    async def _check_compat(self, report: SyncReport) -> bool:
        """Run the protocol gate once per invocation.

        Raises:
            IncompatibleBackend: if the backend must not be touched
        """
        if self.compat in (CompatResult.OK, CompatResult.UNINITIALIZED):
            return True
        try:
            self.compat = await self._retry("protocol check", self.backend.check_compat)
        except TransferError as ex:
            self._record_failure(report, "Could not check protocol version of %s: %s" % (self.backend.name, ex))
            return False
        if self.compat == CompatResult.INCOMPATIBLE:
            self.sync_enabled = False
            raise IncompatibleBackend(
                "Backend %s was written by an incompatible version, not syncing" % self.backend.name
            )
        return True

    def _remember(self, record: RemoteRecord) -> None:
        self.base_fingerprint = record.fingerprint
        self.lineage.set(self.game_id, self.backend.name, LineageMark(record.fingerprint, record.version))

    async def _pull(self, remote: RemoteRecord, decision: Decision, report: SyncReport) -> None:
        if decision.action == SyncAction.PULL_WITH_STASH:
            local_snapshot = await asyncio.to_thread(pack, self.save_set, None, None, self.hostname)
            report.stashed = await self._retry(
                "stashing local saves", self.backend.stash, self.game_id, local_snapshot, self.hostname
            )
        payload = await self._retry("downloading snapshot", self.backend.fetch, remote)
        snapshot = Snapshot.from_bytes(payload)
        if snapshot.fingerprint != remote.fingerprint:
            raise CorruptSnapshot(
                "Downloaded snapshot is %s, the record says %s" % (snapshot.fingerprint[:12], remote.fingerprint[:12])
            )
        report.restored = await asyncio.to_thread(unpack, snapshot, self.bindings.variables)
        report.removed = await asyncio.to_thread(remove_stale_files, self.save_set, report.restored)
        report.record = remote

    async def pre_launch(self) -> SyncReport:
        """Bring the local saves up to date before the game starts"""
        self._set_state(SyncState.PRE_SYNCING)
        report = SyncReport("pre-launch")
        self.pre_state = SyncState.SKIPPED
        try:
            self.local_before = await asyncio.to_thread(self._scan)
        except (UnknownGame, UnresolvedVariable) as ex:
            self.sync_enabled = False
            report.error = "Can't sync %s on this platform: %s" % (self.game_id, ex)
            return self._end_phase(report, SyncState.SKIPPED)

        mark = self.lineage.get(self.game_id, self.backend.name)
        self.base_fingerprint = mark.fingerprint if mark else None

        try:
            compatible = await self._check_compat(report)
        except IncompatibleBackend as ex:
            report.error = ex.message
            return self._end_phase(report, SyncState.SKIPPED)
        if not compatible:
            report.reason = "protocol check failed"
            return self._end_phase(report, SyncState.SKIPPED)

        try:
            remote = await self._retry("reading latest snapshot", self.backend.get_latest, self.game_id)
        except TransferError as ex:
            self._record_failure(report, "Could not reach %s, launching with local saves: %s" % (self.backend.name, ex))
            report.reason = "backend unreachable"
            return self._end_phase(report, SyncState.SKIPPED)

        decision = decide_pre_launch(self.local_before, remote, mark, self.safety_margin)
        logger.info("Pre-launch decision for %s: %s", self.game_id, decision)
        report.action = decision.action
        report.reason = decision.reason
        self.push_pending = decision.push_pending

        if decision.action == SyncAction.CONFLICT:
            conflict = ConflictDetected(
                local_fingerprint=self.local_before.fingerprint,
                remote_fingerprint=remote.fingerprint if remote else None,
            )
            report.warnings.append(conflict.message)
            logger.warning("%s. Keeping both, nothing will be synced for %s.", conflict.message, self.game_id)
            self.pre_state = SyncState.CONFLICT_HELD
            return self._end_phase(report, SyncState.CONFLICT_HELD)

        if decision.action == SyncAction.NONE:
            if remote and remote.fingerprint == self.local_before.fingerprint:
                self._remember(remote)
            return self._end_phase(report, SyncState.SKIPPED)

        try:
            await self._pull(remote, decision, report)
        except TransferError as ex:
            self._record_failure(
                report, "Could not pull saves of %s, launching with local saves: %s" % (self.game_id, ex)
            )
            return self._end_phase(report, SyncState.SKIPPED)
        except CorruptSnapshot as ex:
            report.error = "Remote saves of %s are corrupt, nothing was restored: %s" % (self.game_id, ex)
            self.pre_state = SyncState.CONFLICT_HELD
            return self._end_phase(report, SyncState.CONFLICT_HELD)
        except UnresolvedVariable as ex:
            self.sync_enabled = False
            report.error = "Can't restore saves of %s on this platform: %s" % (self.game_id, ex)
            return self._end_phase(report, SyncState.SKIPPED)

        self._remember(remote)
        self.local_before = await asyncio.to_thread(self._scan)
        self.pre_state = SyncState.PULLED
        return self._end_phase(report, SyncState.PULLED)

    def start_game(self) -> None:
        self._set_state(SyncState.RUNNING)

    async def post_launch(self) -> SyncReport:
        """Push the saves left by the game"""
        self._set_state(SyncState.POST_SYNCING)
        report = SyncReport("post-launch")
        report.warnings.extend(self.failures)

        if not self.sync_enabled:
            report.reason = "sync disabled for this launch"
            return self._end_phase(report, SyncState.SKIPPED)

        try:
            local_after = await asyncio.to_thread(self._scan)
        except (UnknownGame, UnresolvedVariable) as ex:
            report.error = "Can't sync %s on this platform: %s" % (self.game_id, ex)
            return self._end_phase(report, SyncState.SKIPPED)

        decision = decide_post_launch(self.pre_state, self.local_before, local_after, self.push_pending)
        if decision.action == SyncAction.PUSH:
            try:
                compatible = await self._check_compat(report)
            except IncompatibleBackend as ex:
                report.error = ex.message
                return self._end_phase(report, SyncState.SKIPPED)
            if not compatible:
                report.reason = "protocol check failed"
                return self._end_phase(report, SyncState.SKIPPED)
            try:
                decision = await self._push(local_after, report)
            except TransferError as ex:
                self._record_failure(report, "Could not push saves of %s: %s" % (self.game_id, ex))
                decision = Decision(SyncAction.NONE, "push failed")

        report.action = decision.action
        report.reason = decision.reason
        if decision.action == SyncAction.CONFLICT:
            report.warnings.append("Not pushing saves of %s: %s" % (self.game_id, decision.reason))
            logger.warning("Not pushing saves of %s: %s", self.game_id, decision.reason)
        if decision.action == SyncAction.PUSH:
            return self._end_phase(report, SyncState.PUSHED)
        return self._end_phase(report, SyncState.SKIPPED)

    async def _push(self, local_after: LocalState, report: SyncReport) -> Decision:
        remote = await self._retry("reading latest snapshot", self.backend.get_latest, self.game_id)
        decision = confirm_push(local_after, remote, self.base_fingerprint)
        if decision.action == SyncAction.NONE and remote:
            self._remember(remote)
        if decision.action != SyncAction.PUSH:
            return decision

        version = remote.version.next() if remote else LogicalVersion.initial()
        parent = remote.fingerprint if remote else None
        snapshot = await asyncio.to_thread(pack, self.save_set, version, parent, self.hostname)
        if snapshot.is_empty:
            return Decision(SyncAction.NONE, "save files disappeared before they could be packed")
        record = await self._retry("uploading snapshot", self.backend.push, self.game_id, snapshot)
        if self.compat == CompatResult.UNINITIALIZED:
            await self._retry("writing protocol marker", self.backend.write_protocol_marker)
            self.compat = CompatResult.OK
        self._remember(record)
        report.record = record
        return decision

    def finish(self) -> None:
        self._set_state(SyncState.IDLE)

    def close(self) -> None:
        self.backend.close()


Runner = Callable[..., Awaitable[int]]


async def launch(
    session: SyncSession,
    command: List[str],
    runner: Runner = run_command,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[str] = None,
) -> LaunchResult:
    """Sync, run the game, wait for it to exit, sync again.

    Returns the game's exit code along with both sync reports. The game is
    started whatever happens during the pre-launch sync.
    """
    result = LaunchResult(exit_code=0)
    try:
        result.pre_launch = await session.pre_launch()
    except Exception as ex:  # pylint: disable=broad-except
        logger.exception("Pre-launch sync of %s crashed: %s", session.game_id, ex)
        session.sync_enabled = False
        session.state = SyncState.SKIPPED

    session.start_game()
    try:
        logger.info("Starting %s", session.game_id)
        result.exit_code = await runner(command, env=env, cwd=cwd)
        logger.info("%s exited with code %s", session.game_id, result.exit_code)
        try:
            result.post_launch = await session.post_launch()
        except Exception as ex:  # pylint: disable=broad-except
            logger.exception("Post-launch sync of %s crashed: %s", session.game_id, ex)
            session.state = SyncState.SKIPPED
    finally:
        if session.state == SyncState.RUNNING:
            session.state = SyncState.SKIPPED
        session.finish()
        session.close()
    return result
