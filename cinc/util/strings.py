"""String utilities"""
import hashlib
import re
import unicodedata
from typing import List, Tuple


def slugify(value: str) -> str:
    """Remove special characters from a string and slugify it.

    Normalizes string, converts to lowercase, removes non-alpha characters,
    and converts spaces to hyphens.
    """
    _value = str(value)
    _value = unicodedata.normalize("NFD", _value).encode("ascii", "ignore")
    _value = _value.decode("utf-8")
    _value = str(re.sub(r"[^\w\s-]", "", _value)).strip().lower()
    return re.sub(r"[-\s]+", "-", _value)


def get_storage_name(value: str) -> str:
    """Return a name usable as a single path component for `value`.

    Slugs alone can collide ("Foo: Bar" and "Foo Bar"), so a short hash of
    the original string is appended.
    """
    digest = hashlib.sha1(str(value).encode("utf-8")).hexdigest()[:8]
    slug = slugify(value)
    if not slug:
        # Only non-latin characters
        return digest
    return "%s-%s" % (slug, digest)


def parse_version(version: str) -> Tuple[List[int], str, str]:
    """Parse a version string

    Return a 3 element tuple containing:
     - The version number as a list of integers
     - The prefix (whatever characters before the version number)
     - The suffix (whatever comes after)

     Example::
        >>> parse_version("v1.2-beta")
        ([1, 2], 'v', '-beta')

    Returns:
        tuple: (version number as list, prefix, suffix)
    """
    version_match = re.search(r"(\d+(?:\.\d+)*)", version)
    if not version_match:
        return [], "", ""
    version_number = version_match.groups()[0]
    prefix = version[0 : version_match.span()[0]]
    suffix = version[version_match.span()[1] :]
    return [int(p) for p in version_number.split(".")], prefix, suffix


def human_size(size: int) -> str:
    """Shows a size in bytes in a more readable way"""
    units = ("bytes", "kB", "MB", "GB", "TB", "PB")
    unit_index = 0
    while size > 1024 and unit_index < len(units) - 1:
        size = size / 1024
        unit_index += 1
    return "%0.1f %s" % (size, units[unit_index])
