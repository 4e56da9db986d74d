"""
String utility functions for duck-api.

Provides the identifier transformations used to derive URL segments and
display names from entity, method and file names.
"""

from __future__ import annotations

import re

# Splits identifiers the way lodash's ``words`` does for ASCII input:
# acronyms, capitalised words, lowercase runs and digit runs.
_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


def split_words(name: str) -> list[str]:
    """
    Split an identifier into its words.

    Examples:
        >>> split_words("doThing")
        ['do', 'Thing']
        >>> split_words("XMLHttpRequest")
        ['XML', 'Http', 'Request']
        >>> split_words("geo_point")
        ['geo', 'point']
    """
    return _WORD_RE.findall(name)


def kebab_case(name: str) -> str:
    """
    Convert an identifier into kebab-case.

    Separators (``_``, ``-``, spaces, dots) and leading underscores are
    dropped; camelCase boundaries become dashes.

    Examples:
        >>> kebab_case("doThing")
        'do-thing'
        >>> kebab_case("geo_point")
        'geo-point'
        >>> kebab_case("_id")
        'id'
    """
    return "-".join(word.lower() for word in split_words(name))


def title_case(name: str) -> str:
    """
    Convert an identifier into a human-readable title.

    Examples:
        >>> title_case("user")
        'User'
        >>> title_case("user-profile")
        'User Profile'
    """
    return " ".join(word.capitalize() for word in split_words(name))
