"""Storage backends"""

from typing import Optional

from cinc.backends.base import RemoteRecord, StorageBackend
from cinc.backends.filesystem import FilesystemBackend
from cinc.backends.webdav import WebDavBackend
from cinc.config import BackendConfig
from cinc.exceptions import MisconfigurationError
from cinc.util.keyring import get_credentials

__all__ = ["FilesystemBackend", "RemoteRecord", "StorageBackend", "WebDavBackend", "get_backend"]


def get_backend(backend_config: BackendConfig, credentials: Optional[str] = None) -> StorageBackend:
    """Instantiate the backend described by a configuration entry.

    Params:
        backend_config (BackendConfig): Configuration entry
        credentials (str): Secret for the backend, looked up in the keyring
            when not given
    """
    if backend_config.backend_type == "filesystem":
        return FilesystemBackend(backend_config.root, name=backend_config.name)
    if backend_config.backend_type == "webdav":
        if credentials is None and backend_config.credential_id:
            credentials = get_credentials(backend_config.credential_id)
            if credentials is None:
                raise MisconfigurationError(
                    "No credentials found in the keyring for backend '%s'" % backend_config.name
                )
        return WebDavBackend(
            backend_config.url,
            root=backend_config.root,
            username=backend_config.username,
            password=credentials,
            name=backend_config.name,
        )
    raise MisconfigurationError("Unsupported backend type '%s'" % backend_config.backend_type)
