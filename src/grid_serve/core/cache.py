"""
Conditional re-validation of If-None-Match cache tags.

A tag is `<identity>_<md5>`. Validation costs at most one existence query and
never touches object data.
"""

from __future__ import annotations

import string
from enum import Enum
from typing import Any, Callable, NamedTuple, Optional

from loguru import logger

from grid_serve.models import TAG_SEPARATOR

_HEX = frozenset(string.hexdigits)


class CacheDecision(str, Enum):
    ABSENT = "absent"
    MALFORMED = "malformed"
    FRESH = "fresh"
    STALE = "stale"


class CacheTag(NamedTuple):
    object_id: Any
    content_hash: str


def parse_cache_tag(header: str, parse_identity: Callable[[str], Any]) -> Optional[CacheTag]:
    """Return the parsed tag, or None if it is malformed."""
    parts = header.split(TAG_SEPARATOR)
    if len(parts) != 2 or not all(parts):
        return None
    identity, content_hash = parts
    if not set(content_hash) <= _HEX:
        return None
    try:
        object_id = parse_identity(identity)
    except ValueError:
        return None
    return CacheTag(object_id, content_hash)


def validate(
    header: Optional[str],
    parse_identity: Callable[[str], Any],
    count_by_id_and_hash: Callable[[Any, str], int],
) -> CacheDecision:
    if not header:
        return CacheDecision.ABSENT

    tag = parse_cache_tag(header, parse_identity)
    if tag is None:
        logger.debug(f"Ignoring malformed cache tag {header!r}")
        return CacheDecision.MALFORMED

    try:
        count = count_by_id_and_hash(tag.object_id, tag.content_hash)
    except Exception as e:
        logger.warning(f"Cache tag check failed for {header!r}, serving full body: {e}")
        return CacheDecision.STALE

    return CacheDecision.FRESH if count == 1 else CacheDecision.STALE
