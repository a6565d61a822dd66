"""Game manifest model

The manifest says which files make up the save data of each game. It uses
the community format where each game lists path templates:

    Game Name:
      steam:
        id: 12345
      files:
        <base>/saves:
          when:
            - os: windows
              store: steam
          tags: [save]

Templates reference placeholders written as <name> or ${name}, replaced by
the values of a BindingContext when the manifest is resolved.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Tuple

import yaml

from cinc.exceptions import ManifestError, UnknownGame, UnresolvedVariable
from cinc.platforms import BindingContext, Platform
from cinc.util.log import logger
from cinc.util.yaml import read_yaml_from_file

PLACEHOLDER_RE = re.compile(r"<(\w+)>|\$\{([\w-]+)\}")
GLOB_CHARS = ("*", "?", "[")

# Tags of files worth syncing, untagged files are synced too
SYNC_TAGS = ("save", "config")

OS_PLATFORMS = {
    "windows": Platform.WINE,
    "dos": Platform.WINE,
    "linux": Platform.NATIVE,
}


def get_placeholders(template: str) -> List[str]:
    """Return the placeholder names used in a template, in order"""
    return [match.group(1) or match.group(2) for match in PLACEHOLDER_RE.finditer(template)]


def substitute(template: str, variables: Mapping[str, str], escape: Optional[Callable[[str], str]] = None) -> str:
    """Replace every placeholder of `template` with its value.

    Params:
        template (str): Path template
        variables (dict): Placeholder name -> value
        escape (callable): Applied to each value before insertion

    Raises:
        UnresolvedVariable: if a placeholder has no value
    """

    def _replace(match):
        name = match.group(1) or match.group(2)
        value = variables.get(name)
        if value is None:
            raise UnresolvedVariable(variable=name, template=template)
        return escape(value) if escape else value

    return PLACEHOLDER_RE.sub(_replace, template)


def split_template(template: str) -> Tuple[str, str]:
    """Split a template into the literal directory prefix and the rest,
    which starts at the first component holding a glob character.

    >>> split_template("<home>/saves/*/slot.sav")
    ('<home>/saves', '*/slot.sav')
    """
    parts = template.split("/")
    for index, part in enumerate(parts):
        if any(char in part for char in GLOB_CHARS):
            return "/".join(parts[:index]), "/".join(parts[index:])
    return template, ""


@dataclass(frozen=True)
class SaveRule:
    """One location holding save data.

    Attributes:
        template: Path template with placeholders, may contain globs.
        platform: Only applies when the game runs on this platform, None
            for every platform.
        launcher: Only applies when the game comes from this store or
            launcher, None for all of them.
        pattern: Glob filtering file names found under matched directories.
        tags: Manifest tags of the location.
    """

    template: str
    platform: Optional[Platform] = None
    launcher: Optional[str] = None
    pattern: str = "*"
    tags: Tuple[str, ...] = ()

    def applies_to(self, bindings: BindingContext) -> bool:
        if self.platform is not None and self.platform != bindings.platform:
            return False
        if self.launcher is not None and self.launcher != bindings.launcher:
            return False
        return True

    @property
    def placeholders(self) -> List[str]:
        return get_placeholders(self.template)

    @property
    def base_template(self) -> str:
        return split_template(self.template)[0]


@dataclass(frozen=True)
class GameEntry:
    """Save rules of one game, in manifest order"""

    name: str
    rules: Tuple[SaveRule, ...] = ()
    steam_id: Optional[int] = None

    def applicable_rules(self, bindings: BindingContext) -> List[SaveRule]:
        return [rule for rule in self.rules if rule.applies_to(bindings)]


@dataclass(frozen=True)
class Manifest:
    """Game id -> GameEntry. Never modified once loaded."""

    games: Mapping[str, GameEntry] = field(default_factory=dict)

    def __contains__(self, game_id: str) -> bool:
        return game_id in self.games

    def __iter__(self) -> Iterator[str]:
        return iter(self.games)

    def __len__(self) -> int:
        return len(self.games)

    def get_game(self, game_id: str) -> GameEntry:
        try:
            return self.games[game_id]
        except KeyError as ex:
            raise UnknownGame(game_id=game_id) from ex

    def find_by_steam_id(self, steam_id) -> Optional[str]:
        """Return the id of the game with the given Steam app id"""
        for game_id, entry in self.games.items():
            if entry.steam_id is not None and str(entry.steam_id) == str(steam_id):
                return game_id
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "Manifest":
        if not isinstance(data, dict):
            raise ManifestError("A manifest must be a mapping of game names, got %s" % type(data).__name__)
        games = {}
        for game_id, game_data in data.items():
            games[str(game_id)] = parse_game_entry(str(game_id), game_data or {})
        logger.debug("Loaded manifest with %d games", len(games))
        return cls(games)


def _parse_predicate(game_id: str, template: str, predicate: dict):
    """Convert a 'when' entry to a (platform, launcher) pair, None if the
    rule can never apply on this system."""
    if not isinstance(predicate, dict):
        raise ManifestError("Invalid 'when' entry for %s in %s: %s" % (template, game_id, predicate))
    platform = None
    os_name = predicate.get("os")
    if os_name:
        os_name = str(os_name).lower()
        if os_name not in OS_PLATFORMS:
            logger.debug("Skipping %s for %s: os '%s' not supported", template, game_id, os_name)
            return None
        platform = OS_PLATFORMS[os_name]
    store = predicate.get("store")
    return platform, str(store).lower() if store else None


def parse_game_entry(game_id: str, data: dict) -> GameEntry:
    if not isinstance(data, dict):
        raise ManifestError("Manifest entry for %s must be a mapping" % game_id)
    steam_id = None
    steam_data = data.get("steam")
    if steam_data:
        try:
            steam_id = int(steam_data["id"])
        except (KeyError, TypeError, ValueError) as ex:
            raise ManifestError("Invalid steam id for %s: %s" % (game_id, steam_data)) from ex

    files = data.get("files") or {}
    if not isinstance(files, dict):
        raise ManifestError("'files' of %s must be a mapping" % game_id)

    rules = []
    for template, file_config in files.items():
        file_config = file_config or {}
        if not isinstance(file_config, dict):
            raise ManifestError("Invalid file entry %s for %s" % (template, game_id))
        tags = tuple(str(tag) for tag in file_config.get("tags") or ())
        if tags and not any(tag in SYNC_TAGS for tag in tags):
            continue
        pattern = file_config.get("pattern") or "*"
        template = str(template).replace("\\", "/")
        predicates = file_config.get("when") or [{}]
        for predicate in predicates:
            parsed = _parse_predicate(game_id, template, predicate)
            if parsed is None:
                continue
            platform, launcher = parsed
            rules.append(SaveRule(template, platform=platform, launcher=launcher, pattern=pattern, tags=tags))
    return GameEntry(game_id, tuple(rules), steam_id)


def load_manifest(path: str) -> Manifest:
    """Read a YAML manifest from disk"""
    try:
        data = read_yaml_from_file(path)
    except yaml.YAMLError as ex:
        raise ManifestError("Manifest %s is not valid YAML: %s" % (path, ex)) from ex
    return Manifest.from_dict(data)


def manifest_from_games(games: Dict[str, List[SaveRule]]) -> Manifest:
    """Build a manifest from already constructed rules"""
    return Manifest({game_id: GameEntry(game_id, tuple(rules)) for game_id, rules in games.items()})
