"""Backend storing snapshots in a local folder (mounted share, USB drive,
or a temporary directory in tests)"""

import os
from typing import List

from cinc.backends.base import StorageBackend
from cinc.exceptions import NotFound, TransferError
from cinc.util.log import logger
from cinc.util.system import path_contains


class FilesystemBackend(StorageBackend):
    backend_type = "filesystem"

    def __init__(self, root: str, name: str = ""):
        super().__init__(name)
        if not root:
            raise ValueError("A root directory is required")
        self.root = os.path.abspath(os.path.expanduser(root))

    def get_local_path(self, path: str) -> str:
        """Map an object path to the filesystem, never escaping the root"""
        local_path = os.path.normpath(os.path.join(self.root, path.lstrip("/")))
        if not path_contains(self.root, local_path):
            raise ValueError("%s is outside of %s" % (path, self.root))
        return local_path

    def read_object(self, path):
        local_path = self.get_local_path(path)
        try:
            with open(local_path, "rb") as object_file:
                return object_file.read()
        except (FileNotFoundError, NotADirectoryError) as ex:
            raise NotFound(path=path) from ex
        except OSError as ex:
            raise TransferError("Failed to read %s: %s" % (local_path, ex)) from ex

    def write_object(self, path, data):
        local_path = self.get_local_path(path)
        logger.debug("Writing %d bytes to %s", len(data), local_path)
        try:
            os.makedirs(os.path.dirname(local_path), exist_ok=True)
            with open(local_path, "wb") as object_file:
                object_file.write(data)
                object_file.flush()
                os.fsync(object_file.fileno())
        except OSError as ex:
            raise TransferError("Failed to write %s: %s" % (local_path, ex)) from ex

    def move_object(self, source, destination):
        source_path = self.get_local_path(source)
        destination_path = self.get_local_path(destination)
        try:
            os.makedirs(os.path.dirname(destination_path), exist_ok=True)
            os.replace(source_path, destination_path)
        except FileNotFoundError as ex:
            raise NotFound(path=source) from ex
        except OSError as ex:
            raise TransferError("Failed to move %s to %s: %s" % (source_path, destination_path, ex)) from ex

    def object_exists(self, path):
        return os.path.isfile(self.get_local_path(path))

    def list_objects(self, path) -> List[str]:
        local_path = self.get_local_path(path)
        if not os.path.isdir(local_path):
            return []
        try:
            return sorted(os.listdir(local_path))
        except OSError as ex:
            raise TransferError("Failed to list %s: %s" % (local_path, ex)) from ex

    def delete_object(self, path):
        local_path = self.get_local_path(path)
        try:
            os.remove(local_path)
        except FileNotFoundError as ex:
            raise NotFound(path=path) from ex
        except OSError as ex:
            raise TransferError("Failed to delete %s: %s" % (local_path, ex)) from ex
