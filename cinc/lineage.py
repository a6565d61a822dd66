"""Record of the last state synced for each game

After every successful pull, push, or check that both sides are equal, the
fingerprint and version of the remote snapshot are written here. On the next
run this tells which side changed since: if the local saves still have the
recorded fingerprint only the remote moved, and the other way around.
"""

import json
import os
from dataclasses import dataclass
from typing import Dict, Optional

from cinc import settings
from cinc.snapshot import LogicalVersion
from cinc.util.log import logger
from cinc.util.system import write_file_atomically


@dataclass(frozen=True)
class LineageMark:
    fingerprint: str
    version: LogicalVersion

    def to_dict(self) -> dict:
        return {"fingerprint": self.fingerprint, "version": self.version.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "LineageMark":
        return cls(data["fingerprint"], LogicalVersion.from_dict(data["version"]))


class LineageStore:
    """Marks per game and backend, kept in a JSON file"""

    def __init__(self, path: Optional[str] = None):
        self.path = path or settings.LINEAGE_PATH
        self._marks: Dict[str, Dict[str, dict]] = {}
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, encoding="utf-8") as lineage_file:
                marks = json.load(lineage_file)
        except (json.JSONDecodeError, OSError) as ex:
            logger.warning("Failed to load sync state from %s: %s", self.path, ex)
            return
        if not isinstance(marks, dict):
            logger.warning("Ignoring invalid sync state in %s", self.path)
            return
        self._marks = marks

    def _save(self) -> None:
        content = json.dumps(self._marks, indent=2, sort_keys=True).encode("utf-8")
        try:
            write_file_atomically(self.path, content)
        except OSError as ex:
            logger.error("Failed to save sync state to %s: %s", self.path, ex)

    def get(self, game_id: str, backend_name: str) -> Optional[LineageMark]:
        """Last synced state of a game on a backend, None if never synced"""
        data = self._marks.get(game_id, {}).get(backend_name)
        if not data:
            return None
        try:
            return LineageMark.from_dict(data)
        except (KeyError, TypeError, ValueError) as ex:
            logger.warning("Ignoring invalid sync state for %s: %s", game_id, ex)
            return None

    def set(self, game_id: str, backend_name: str, mark: LineageMark) -> None:
        self._marks.setdefault(game_id, {})[backend_name] = mark.to_dict()
        self._save()

    def clear(self, game_id: str, backend_name: str) -> None:
        if self._marks.get(game_id, {}).pop(backend_name, None) is not None:
            self._save()
