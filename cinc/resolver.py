"""Turn manifest rules into the list of save files present on disk"""

import fnmatch
import glob
import os
from typing import Dict, Iterator, List, NamedTuple

from cinc.manifest import Manifest, SaveRule, split_template, substitute
from cinc.platforms import BindingContext
from cinc.util.log import logger


class SaveFile(NamedTuple):
    """A save file found on disk.

    path is the absolute local path, key is the same file written with the
    placeholders of the rule that found it (eg. '<home>/saves/a.sav'), so it
    can be restored on a machine where the placeholders have other values.
    """

    path: str
    key: str


class ResolvedSaveSet:
    """Save files of a game, sorted by path, without duplicates"""

    def __init__(self, files=None):
        unique: Dict[str, SaveFile] = {}
        for save_file in files or []:
            unique.setdefault(save_file.path, save_file)
        self.files: List[SaveFile] = [unique[path] for path in sorted(unique)]

    def __iter__(self) -> Iterator[SaveFile]:
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)

    def __bool__(self) -> bool:
        return bool(self.files)

    def __eq__(self, other) -> bool:
        if not isinstance(other, ResolvedSaveSet):
            return NotImplemented
        return self.files == other.files

    def __repr__(self) -> str:
        return "<ResolvedSaveSet: %d files>" % len(self.files)

    @property
    def paths(self) -> List[str]:
        return [save_file.path for save_file in self.files]

    @property
    def newest_mtime(self) -> float:
        """Most recent modification time of the set, 0 when empty"""
        mtimes = []
        for save_file in self.files:
            try:
                mtimes.append(os.stat(save_file.path).st_mtime)
            except OSError:
                continue
        return max(mtimes, default=0.0)


def _walk_files(directory: str) -> List[str]:
    """Every file below directory, in a stable order"""
    files = []
    for root, dirs, filenames in os.walk(directory):
        dirs.sort()
        for filename in sorted(filenames):
            files.append(os.path.join(root, filename))
    return files


def _make_key(base_key: str, base_path: str, path: str) -> str:
    relpath = os.path.relpath(path, base_path)
    if relpath == ".":
        return base_key
    if not base_key:
        return path
    return base_key.rstrip("/") + "/" + relpath


def resolve_rule(rule: SaveRule, bindings: BindingContext) -> List[SaveFile]:
    """Files on disk matched by a single rule.

    Raises:
        UnresolvedVariable: if the rule uses a placeholder without value
    """
    pattern = substitute(rule.template, bindings.variables, escape=glob.escape)
    base_template, _rest = split_template(rule.template)
    base_path = os.path.normpath(substitute(base_template, bindings.variables)) if base_template else "/"

    save_files = []
    for match in sorted(glob.glob(os.path.expanduser(pattern), recursive=True)):
        match = os.path.abspath(match)
        if os.path.isdir(match):
            for path in _walk_files(match):
                if fnmatch.fnmatch(os.path.basename(path), rule.pattern):
                    save_files.append(SaveFile(path, _make_key(base_template, base_path, path)))
        elif os.path.isfile(match):
            save_files.append(SaveFile(match, _make_key(base_template, base_path, match)))
    logger.debug("%s matched %d files", rule.template, len(save_files))
    return save_files


def resolve(manifest: Manifest, game_id: str, bindings: BindingContext) -> ResolvedSaveSet:
    """Resolve the save files of a game under the given bindings.

    Raises:
        UnknownGame: if game_id is not in the manifest
        UnresolvedVariable: if an applicable rule needs a missing placeholder
    """
    entry = manifest.get_game(game_id)
    save_files = []
    for rule in entry.applicable_rules(bindings):
        save_files.extend(resolve_rule(rule, bindings))
    save_set = ResolvedSaveSet(save_files)
    logger.info("Found %d save files for %s", len(save_set), game_id)
    return save_set
