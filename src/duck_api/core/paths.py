"""
Conversions between file-style, dot-style and URL-style identifiers.

``convert_to_path`` turns a module path relative to a routes or entities
directory into a URL path; ``convert_to_dot`` turns it into the dotted key
used to nest the module into an in-memory route tree.
"""

from __future__ import annotations

import re

from duck_api.core.strings import kebab_case

_INDEX_AND_EXTENSION_RE = re.compile(r"((^|/)index)?\.(py|js|json)$", re.IGNORECASE)
_LEADING_UNDERSCORES_RE = re.compile(r"^_+")


def _segments(dir_path: str) -> list[str]:
    trimmed = dir_path.strip("/")
    return _INDEX_AND_EXTENSION_RE.sub("", trimmed).split("/")


def convert_to_path(dir_path: str) -> str:
    """
    Convert a directory-style path into a URL path.

    Segments are kebab-cased; a segment starting with ``_`` becomes a
    ``:param`` marker.

    Examples:
        >>> convert_to_path("users/_id.py")
        'users/:id'
        >>> convert_to_path("/blogPosts/index.py")
        'blog-posts'
    """
    converted = []
    for name in _segments(dir_path):
        prefix = ":" if name.startswith("_") else ""
        converted.append(prefix + kebab_case(name))
    return "/".join(converted)


def convert_to_dot(dir_path: str) -> str:
    """
    Convert a directory-style path into a dotted object path.

    Leading underscores are kept literally so parameter segments survive
    until ``convert_to_path`` turns them into URL markers.

    Examples:
        >>> convert_to_dot("users/_id.py")
        'users._id'
        >>> convert_to_dot("sandy/index.py")
        'sandy'
    """
    converted = []
    for name in _segments(dir_path):
        match = _LEADING_UNDERSCORES_RE.match(name)
        prefix = match.group(0) if match else ""
        converted.append(prefix + kebab_case(name))
    return ".".join(converted)
