"""Sync direction decisions

Pure functions deciding what a sync phase should do from the local state,
the remote record and the recorded lineage. They do no I/O, the session
gathers their inputs and carries out the result.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from cinc.backends.base import RemoteRecord
from cinc.lineage import LineageMark


class SyncState(Enum):
    """Where an invocation stands"""

    IDLE = "idle"
    PRE_SYNCING = "pre-syncing"
    PULLED = "pulled"
    SKIPPED = "skipped"
    CONFLICT_HELD = "conflict-held"
    RUNNING = "running"
    POST_SYNCING = "post-syncing"
    PUSHED = "pushed"


TRANSITIONS = {
    SyncState.IDLE: {SyncState.PRE_SYNCING},
    SyncState.PRE_SYNCING: {SyncState.PULLED, SyncState.SKIPPED, SyncState.CONFLICT_HELD},
    SyncState.PULLED: {SyncState.RUNNING},
    SyncState.SKIPPED: {SyncState.RUNNING, SyncState.IDLE},
    SyncState.CONFLICT_HELD: {SyncState.RUNNING},
    SyncState.RUNNING: {SyncState.POST_SYNCING},
    SyncState.POST_SYNCING: {SyncState.PUSHED, SyncState.SKIPPED},
    SyncState.PUSHED: {SyncState.IDLE},
}


def can_transition(current: SyncState, new: SyncState) -> bool:
    return new in TRANSITIONS.get(current, set())


class SyncAction(Enum):
    """Possible sync actions after comparing local and remote saves."""

    NONE = "none"
    PULL = "pull"
    PULL_WITH_STASH = "pull-with-stash"
    PUSH = "push"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class LocalState:
    """Fingerprint of the local save set, None when there are no saves"""

    fingerprint: Optional[str] = None
    newest_mtime: float = 0.0

    @property
    def exists(self) -> bool:
        return self.fingerprint is not None


@dataclass(frozen=True)
class Decision:
    action: SyncAction
    reason: str
    # Local saves are ahead of the remote and should be pushed after the game
    push_pending: bool = False

    def __str__(self):
        return "%s (%s)" % (self.action.value, self.reason)


def decide_pre_launch(
    local: LocalState,
    remote: Optional[RemoteRecord],
    mark: Optional[LineageMark] = None,
    safety_margin: Optional[float] = None,
) -> Decision:
    """Decide what to do before the game starts.

    Params:
        local: State of the save files on disk
        remote: Latest record on the backend, None if the game has none
        mark: Last state synced from this machine, if any
        safety_margin: Seconds by which local saves must be older than the
            remote snapshot for a pull to be allowed without lineage. None
            never allows it.
    """
    if not local.exists and remote is None:
        return Decision(SyncAction.NONE, "no saves anywhere")
    if not local.exists:
        return Decision(SyncAction.PULL, "no local saves")
    if remote is None:
        return Decision(SyncAction.NONE, "first sync, nothing to pull", push_pending=True)
    if local.fingerprint == remote.fingerprint:
        return Decision(SyncAction.NONE, "already in sync")
    if remote.descends_from(local.fingerprint):
        return Decision(SyncAction.PULL, "remote descends from local saves")
    if mark:
        if mark.fingerprint == local.fingerprint and remote.version > mark.version:
            return Decision(SyncAction.PULL, "remote changed since last sync")
        if mark.fingerprint == remote.fingerprint:
            return Decision(SyncAction.NONE, "local saves changed since last sync", push_pending=True)
        if mark.fingerprint != local.fingerprint:
            return Decision(SyncAction.CONFLICT, "local and remote saves both changed since last sync")
    if safety_margin is not None and local.newest_mtime + safety_margin <= remote.version.timestamp:
        return Decision(SyncAction.PULL_WITH_STASH, "remote saves are newer than local ones")
    return Decision(SyncAction.CONFLICT, "no common history between local and remote saves")


def decide_post_launch(
    pre_state: SyncState,
    before: LocalState,
    after: LocalState,
    push_pending: bool = False,
) -> Decision:
    """Decide whether the saves left by the game need to be pushed.

    A PUSH result still has to be confirmed against the latest remote
    record with confirm_push.
    """
    if pre_state == SyncState.CONFLICT_HELD:
        return Decision(SyncAction.CONFLICT, "conflict found before launch is still unresolved")
    if not after.exists:
        return Decision(SyncAction.NONE, "no local saves to push")
    if after.fingerprint == before.fingerprint and not push_pending:
        return Decision(SyncAction.NONE, "saves unchanged")
    return Decision(SyncAction.PUSH, "saves changed")


def confirm_push(after: LocalState, remote: Optional[RemoteRecord], base_fingerprint: Optional[str]) -> Decision:
    """Check that the remote still is the state the local saves come from.

    Params:
        after: Local state to push
        remote: Latest record on the backend right now
        base_fingerprint: Fingerprint of the remote snapshot the local
            saves were last synced with, None if they never were
    """
    if remote is None:
        return Decision(SyncAction.PUSH, "backend has no saves yet")
    if remote.fingerprint == after.fingerprint:
        return Decision(SyncAction.NONE, "backend already has these saves")
    if base_fingerprint and remote.fingerprint == base_fingerprint:
        return Decision(SyncAction.PUSH, "local saves are ahead of the backend")
    return Decision(SyncAction.CONFLICT, "backend changed since local saves were synced")
