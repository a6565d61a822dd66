"""Backend configuration

backends.yml lists the places snapshots can be stored:

    default: nas
    backends:
      - name: nas
        type: webdav
        url: https://nas.local/remote.php/dav/files/me
        root: /games/saves
        username: me
        credential: nas
      - name: usb
        type: filesystem
        root: /run/media/me/backup/saves

Secrets never go in this file; 'credential' names the keyring entry holding
the password.
"""

from dataclasses import dataclass
from typing import List, Optional

import yaml

from cinc import settings
from cinc.exceptions import MisconfigurationError
from cinc.util.log import logger
from cinc.util.yaml import read_yaml_from_file, write_yaml_to_file

BACKEND_TYPES = ("filesystem", "webdav")


@dataclass(frozen=True)
class BackendConfig:
    name: str
    backend_type: str
    root: str = ""
    url: Optional[str] = None
    username: Optional[str] = None
    credential_id: Optional[str] = None

    def validate(self):
        if not self.name:
            raise MisconfigurationError("A backend needs a name")
        if self.backend_type not in BACKEND_TYPES:
            raise MisconfigurationError(
                "Backend '%s' has unknown type '%s' (expected one of %s)"
                % (self.name, self.backend_type, ", ".join(BACKEND_TYPES))
            )
        if self.backend_type == "filesystem" and not self.root:
            raise MisconfigurationError("Filesystem backend '%s' has no root" % self.name)
        if self.backend_type == "webdav" and not self.url:
            raise MisconfigurationError("WebDav backend '%s' has no url" % self.name)

    def to_dict(self) -> dict:
        data = {"name": self.name, "type": self.backend_type, "root": self.root}
        if self.url:
            data["url"] = self.url
        if self.username:
            data["username"] = self.username
        if self.credential_id:
            data["credential"] = self.credential_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "BackendConfig":
        if not isinstance(data, dict):
            raise MisconfigurationError("Invalid backend entry: %s" % data)
        backend = cls(
            name=str(data.get("name") or ""),
            backend_type=str(data.get("type") or ""),
            root=str(data.get("root") or ""),
            url=data.get("url"),
            username=data.get("username"),
            credential_id=data.get("credential"),
        )
        backend.validate()
        return backend


class Config:
    """The configured backends, read-only during a sync"""

    def __init__(self, backends: Optional[List[BackendConfig]] = None, default_backend: Optional[str] = None):
        self.backends = list(backends or [])
        names = [backend.name for backend in self.backends]
        if len(set(names)) != len(names):
            raise MisconfigurationError("Backend names must be unique")
        if default_backend and default_backend not in names:
            raise MisconfigurationError("Default backend '%s' is not configured" % default_backend)
        self.default_backend = default_backend

    def get_backend_config(self, name: Optional[str] = None) -> BackendConfig:
        """Return the backend called `name`, or the default one"""
        if not self.backends:
            raise MisconfigurationError("No backend configured")
        name = name or self.default_backend
        if not name:
            if len(self.backends) == 1:
                return self.backends[0]
            raise MisconfigurationError("Several backends are configured but none is the default")
        for backend in self.backends:
            if backend.name == name:
                return backend
        raise MisconfigurationError("No backend named '%s'" % name)

    def to_dict(self) -> dict:
        data = {"backends": [backend.to_dict() for backend in self.backends]}
        if self.default_backend:
            data["default"] = self.default_backend
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        backends = [BackendConfig.from_dict(entry) for entry in data.get("backends") or []]
        return cls(backends, data.get("default"))


def load_config(path: Optional[str] = None) -> Config:
    path = path or settings.BACKENDS_FILE
    try:
        data = read_yaml_from_file(path)
    except yaml.YAMLError as ex:
        raise MisconfigurationError("Backend configuration %s is not valid YAML: %s" % (path, ex)) from ex
    if not isinstance(data, dict):
        raise MisconfigurationError("Backend configuration %s must be a mapping" % path)
    config = Config.from_dict(data)
    logger.debug("Loaded %d backends from %s", len(config.backends), path)
    return config


def save_config(config: Config, path: Optional[str] = None) -> None:
    write_yaml_to_file(config.to_dict(), path or settings.BACKENDS_FILE)
