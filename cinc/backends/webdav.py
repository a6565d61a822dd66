"""WebDav backend"""

import io
from typing import List, Optional

import httpx
from webdav4.client import Client, ClientError, ResourceNotFound

from cinc import settings
from cinc.backends.base import StorageBackend
from cinc.exceptions import NotFound, TransferError
from cinc.util.log import logger


def normalize_root(root: Optional[str]) -> str:
    """Return root without leading slash and with a trailing one, so that
    child resources can be appended to it. An empty root stays empty.

    >>> normalize_root("/games/saves")
    'games/saves/'
    """
    root = (root or "").strip().strip("/")
    return root + "/" if root else ""


class WebDavBackend(StorageBackend):
    backend_type = "webdav"

    def __init__(
        self,
        url: str,
        root: str = "",
        username: Optional[str] = None,
        password: Optional[str] = None,
        name: str = "",
        timeout: Optional[float] = None,
        client: Optional[Client] = None,
    ):
        super().__init__(name)
        if not url:
            raise ValueError("A WebDav URL is required")
        self.url = url.rstrip("/") + "/"
        self.root = normalize_root(root)
        auth = (username, password or "") if username else None
        self.client = client or Client(self.url, auth=auth, timeout=timeout or settings.NETWORK_TIMEOUT)
        self._created_dirs = set()

    def __repr__(self):
        # Never include credentials
        return "<WebDavBackend %s %s%s>" % (self.name, self.url, self.root)

    def get_resource(self, path: str) -> str:
        return self.root + path.lstrip("/")

    def _create_dirs(self, folder: str) -> None:
        """Create each missing collection of folder, remembering the ones
        already known to exist"""
        parts = [part for part in folder.split("/") if part]
        for index in range(len(parts)):
            relpath = "/".join(parts[: index + 1])
            if relpath in self._created_dirs:
                continue
            if not self.client.exists(relpath):
                logger.debug("Creating WebDav folder %s", relpath)
                self.client.mkdir(relpath)
            self._created_dirs.add(relpath)

    def _parent_of(self, resource: str) -> str:
        return resource.rpartition("/")[0]

    def read_object(self, path):
        resource = self.get_resource(path)
        buffer = io.BytesIO()
        try:
            self.client.download_fileobj(resource, buffer)
        except ResourceNotFound as ex:
            raise NotFound(path=path) from ex
        except (ClientError, httpx.HTTPError, OSError) as ex:
            raise TransferError("Failed to download %s: %s" % (resource, ex)) from ex
        return buffer.getvalue()

    def write_object(self, path, data):
        resource = self.get_resource(path)
        logger.debug("Uploading %d bytes to %s", len(data), resource)
        try:
            self._create_dirs(self._parent_of(resource))
            self.client.upload_fileobj(io.BytesIO(data), resource, overwrite=True)
        except (ClientError, httpx.HTTPError, OSError) as ex:
            raise TransferError("Failed to upload %s: %s" % (resource, ex)) from ex

    def move_object(self, source, destination):
        source_resource = self.get_resource(source)
        destination_resource = self.get_resource(destination)
        try:
            self._create_dirs(self._parent_of(destination_resource))
            self.client.move(source_resource, destination_resource, overwrite=True)
        except ResourceNotFound as ex:
            raise NotFound(path=source) from ex
        except (ClientError, httpx.HTTPError, OSError) as ex:
            raise TransferError("Failed to move %s to %s: %s" % (source_resource, destination_resource, ex)) from ex

    def object_exists(self, path):
        resource = self.get_resource(path)
        try:
            return self.client.exists(resource)
        except (ClientError, httpx.HTTPError, OSError) as ex:
            raise TransferError("Failed to check %s: %s" % (resource, ex)) from ex

    def list_objects(self, path) -> List[str]:
        resource = self.get_resource(path)
        try:
            entries = self.client.ls(resource, detail=True)
        except ResourceNotFound:
            return []
        except (ClientError, httpx.HTTPError, OSError) as ex:
            raise TransferError("Failed to list %s: %s" % (resource, ex)) from ex
        names = []
        for entry in entries:
            if entry.get("type") == "directory":
                continue
            names.append(entry["name"].rstrip("/").rpartition("/")[2])
        return sorted(names)

    def delete_object(self, path):
        resource = self.get_resource(path)
        try:
            self.client.remove(resource)
        except ResourceNotFound as ex:
            raise NotFound(path=path) from ex
        except (ClientError, httpx.HTTPError, OSError) as ex:
            raise TransferError("Failed to delete %s: %s" % (resource, ex)) from ex

    def close(self):
        http_client = getattr(self.client, "http", None)
        if http_client is not None:
            http_client.close()
