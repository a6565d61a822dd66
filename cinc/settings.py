"""Internal settings."""

import os

from cinc.util.log import set_debug
from cinc.util.settings import SettingsIO

# Paths
XDG_CONFIG_HOME = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
XDG_DATA_HOME = os.environ.get("XDG_DATA_HOME") or os.path.expanduser("~/.local/share")
CONFIG_DIR = os.path.join(XDG_CONFIG_HOME, "cinc")
CONFIG_FILE = os.path.join(CONFIG_DIR, "cinc.conf")
sio = SettingsIO(CONFIG_FILE)

DATA_DIR = sio.read_setting("data_dir") or os.path.join(XDG_DATA_HOME, "cinc")
BACKENDS_FILE = os.path.join(CONFIG_DIR, "backends.yml")
LINEAGE_PATH = os.path.join(DATA_DIR, "sync-state.json")

# Sync tuning
SYNC_RETRIES = int(sio.read_float_setting("retries", default=3))
SYNC_BACKOFF = sio.read_float_setting("backoff", default=1.0)
NETWORK_TIMEOUT = sio.read_float_setting("network_timeout", default=30.0)
# Seconds by which local saves must predate the remote snapshot before a pull
# may overwrite them without a recorded lineage. Disabled unless set.
TIMESTAMP_SAFETY_MARGIN = sio.read_float_setting("timestamp_safety_margin", default=None)

KEYRING_SERVICE = "cinc"

if sio.read_bool_setting("debug"):
    set_debug()
