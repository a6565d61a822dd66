"""Protocol version gate

Every backend root holds a marker with the protocol version of the client
that initialized it. A client only reads and writes a backend whose marker
has the same major version and a minor version no newer than its own.
"""

from enum import Enum

from cinc import PROTOCOL_VERSION
from cinc.util.log import logger
from cinc.util.strings import parse_version


class CompatResult(Enum):
    OK = "ok"
    INCOMPATIBLE = "incompatible"
    UNINITIALIZED = "uninitialized"


def is_compatible(client_version: str, remote_version: str) -> bool:
    client, _prefix, _suffix = parse_version(client_version)
    remote, _prefix, _suffix = parse_version(remote_version)
    if not client or not remote:
        return False
    client_major, client_minor = client[0], (client[1:] or [0])[0]
    remote_major, remote_minor = remote[0], (remote[1:] or [0])[0]
    return client_major == remote_major and remote_minor <= client_minor


def check_compat(backend, client_version: str = PROTOCOL_VERSION) -> CompatResult:
    """Compare the client's protocol version with the backend's marker.

    Raises:
        TransferError: if the marker can't be read
    """
    remote_version = backend.read_protocol_marker()
    if remote_version is None:
        logger.info("Backend %s has no protocol marker yet", backend.name)
        return CompatResult.UNINITIALIZED
    if not is_compatible(client_version, remote_version):
        logger.warning(
            "Backend %s uses protocol %s, this client speaks %s", backend.name, remote_version, client_version
        )
        return CompatResult.INCOMPATIBLE
    return CompatResult.OK
