"""Exception handling module"""

from gettext import gettext as _


class CincError(Exception):
    """Base exception for cinc related errors"""

    def __init__(self, message, *args, **kwarg):
        super().__init__(message, *args, **kwarg)
        self.message = message
        self.is_expected = False


class MisconfigurationError(CincError):
    """Raised for incorrect or missing settings, like an unknown backend
    type or a backend entry lacking its root."""


class ManifestError(CincError):
    """Raised when a manifest entry can't be understood."""


class UnknownGame(CincError):
    """Raised when a game is not present in the manifest"""

    def __init__(self, message=None, game_id=None, *args, **kwarg):
        if not message and game_id:
            message = _("The game '{}' is not in the manifest").format(game_id)
        super().__init__(message, *args, **kwarg)
        self.game_id = game_id
        self.is_expected = True


class UnresolvedVariable(CincError):
    """Raised when a path template uses a placeholder the current platform
    has no value for. The game can still run, it just can't be synced."""

    def __init__(self, message=None, variable=None, template=None, *args, **kwarg):
        if not message and variable:
            message = _("No value for <{}> in '{}'").format(variable, template)
        super().__init__(message, *args, **kwarg)
        self.variable = variable
        self.template = template
        self.is_expected = True


class TransferError(CincError):
    """Raised on any network or storage failure while talking to a backend.
    These are retried."""


class NotFound(CincError):
    """Raised by backend primitives when an object does not exist"""

    def __init__(self, message=None, path=None, *args, **kwarg):
        if not message and path:
            message = _("Remote object {} does not exist").format(path)
        super().__init__(message, *args, **kwarg)
        self.path = path


class IncompatibleBackend(CincError):
    """Raised when the backend was written by an incompatible protocol version"""

    def __init__(self, message=None, remote_version=None, *args, **kwarg):
        if not message:
            message = _("The backend uses protocol version {}, which this client can't use").format(remote_version)
        super().__init__(message, *args, **kwarg)
        self.remote_version = remote_version
        self.is_expected = True


class ConflictDetected(CincError):
    """Raised when local and remote saves diverged. Never resolved
    automatically."""

    def __init__(self, message=None, local_fingerprint=None, remote_fingerprint=None, *args, **kwarg):
        if not message:
            message = _("Local saves ({}) and remote saves ({}) have diverged").format(
                (local_fingerprint or "none")[:12], (remote_fingerprint or "none")[:12]
            )
        super().__init__(message, *args, **kwarg)
        self.local_fingerprint = local_fingerprint
        self.remote_fingerprint = remote_fingerprint
        self.is_expected = True


class CorruptSnapshot(CincError):
    """Raised when a snapshot's content doesn't match its fingerprint"""
