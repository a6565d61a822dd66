"""Variable bindings for the platforms a game can run on

A game's save files live in different places depending on how it is run:
natively, inside a Wine prefix, or inside a Proton prefix managed by Steam.
Each variant produces a BindingContext: a flat mapping from the manifest's
placeholder names to real paths, consumed the same way by the resolver.

Locating Steam libraries or launcher prefixes on disk is up to the caller;
these functions only turn known locations into bindings.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class Platform(Enum):
    """How the game is executed on this machine"""

    NATIVE = "native"
    WINE = "wine"


@dataclass(frozen=True)
class BindingContext:
    """Placeholder values for one invocation, with the platform they describe.

    Attributes:
        platform: Native or Wine layout.
        variables: Placeholder name -> resolved value.
        launcher: Store or launcher the game was started from (steam, gog,
            heroic, umu...), or None.
    """

    platform: Platform
    variables: Mapping[str, str] = field(default_factory=dict)
    launcher: Optional[str] = None

    def __post_init__(self):
        # Freeze a private copy so callers can't alter a context in use
        object.__setattr__(
            self, "variables", MappingProxyType({k: v for k, v in self.variables.items() if v is not None})
        )

    def get(self, name: str) -> Optional[str]:
        return self.variables.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self.variables


def _game_bindings(install_dir, library_root, store_user_id):
    variables = {}
    if install_dir:
        variables["base"] = install_dir.rstrip("/")
        variables["game"] = os.path.basename(install_dir.rstrip("/"))
    if library_root:
        variables["root"] = library_root.rstrip("/")
    if store_user_id:
        variables["storeUserId"] = str(store_user_id)
    return variables


def native_bindings(
    install_dir: Optional[str] = None,
    home: Optional[str] = None,
    library_root: Optional[str] = None,
    store_user_id: Optional[str] = None,
    launcher: Optional[str] = None,
) -> BindingContext:
    """Bindings for a game running natively on Linux"""
    home = home or os.path.expanduser("~")
    variables = {
        "home": home,
        "osUserName": os.environ.get("USER") or os.path.basename(home),
        "xdgData": os.environ.get("XDG_DATA_HOME") or os.path.join(home, ".local", "share"),
        "xdgConfig": os.environ.get("XDG_CONFIG_HOME") or os.path.join(home, ".config"),
    }
    variables.update(_game_bindings(install_dir, library_root, store_user_id))
    return BindingContext(Platform.NATIVE, variables, launcher)


def wine_bindings(
    prefix: str,
    user: Optional[str] = None,
    install_dir: Optional[str] = None,
    library_root: Optional[str] = None,
    store_user_id: Optional[str] = None,
    launcher: Optional[str] = None,
) -> BindingContext:
    """Bindings for a Windows game running inside the Wine prefix at `prefix`.

    Wine names the profile folder after the current user, Proton always
    uses 'steamuser'.
    """
    prefix = os.path.expanduser(prefix).rstrip("/")
    user = user or os.environ.get("USER") or "steamuser"
    drive_c = os.path.join(prefix, "drive_c")
    user_dir = os.path.join(drive_c, "users", user)
    variables = {
        "winPrefix": prefix,
        "home": user_dir,
        "osUserName": user,
        "winAppData": os.path.join(user_dir, "AppData", "Roaming"),
        "winLocalAppData": os.path.join(user_dir, "AppData", "Local"),
        "winLocalAppDataLow": os.path.join(user_dir, "AppData", "LocalLow"),
        "winDocuments": os.path.join(user_dir, "Documents"),
        "winPublic": os.path.join(drive_c, "users", "Public"),
        "winProgramData": os.path.join(drive_c, "ProgramData"),
        "winDir": os.path.join(drive_c, "windows"),
    }
    variables.update(_game_bindings(install_dir, library_root, store_user_id))
    return BindingContext(Platform.WINE, variables, launcher)


def steam_proton_bindings(
    library_path: str,
    app_id,
    install_dir_name: Optional[str] = None,
    store_user_id: Optional[str] = None,
) -> BindingContext:
    """Bindings for a Windows game run by Steam through Proton.

    Params:
        library_path (str): Steam library folder holding the game
        app_id (int): Steam app id, names the compatdata folder
        install_dir_name (str): 'installdir' from the app manifest
        store_user_id (str): Steam id3 of the last user
    """
    library_path = library_path.rstrip("/")
    prefix = os.path.join(library_path, "steamapps", "compatdata", str(app_id), "pfx")
    install_dir = None
    if install_dir_name:
        install_dir = os.path.join(library_path, "steamapps", "common", install_dir_name)
    return wine_bindings(
        prefix,
        user="steamuser",
        install_dir=install_dir,
        library_root=library_path,
        store_user_id=store_user_id,
        launcher="steam",
    )


def launcher_bindings(
    launcher: str,
    prefix: Optional[str] = None,
    install_dir: Optional[str] = None,
    store_user_id: Optional[str] = None,
) -> BindingContext:
    """Bindings for games started by a third party launcher (Heroic, umu,
    Lutris...). Without a prefix the game is assumed to be native."""
    if not prefix:
        return native_bindings(install_dir=install_dir, store_user_id=store_user_id, launcher=launcher)
    user = "steamuser" if launcher == "umu" else None
    return wine_bindings(
        prefix,
        user=user,
        install_dir=install_dir,
        store_user_id=store_user_id,
        launcher=launcher,
    )
