"""Cloud save synchronization for games that lack it"""

__version__ = "0.2.3"

# Bumped when the layout of objects stored on a backend changes.
# Clients refuse to write to a backend marked with a newer minor or a
# different major version.
PROTOCOL_VERSION = "1.0"
