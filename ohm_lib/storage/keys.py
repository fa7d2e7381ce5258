"""Key naming for records, indexes and temporary query keys.

Layout:
- ``Type:<id>``                      record body (hash)
- ``Type:id``                        identity counter
- ``Type:all``                       enumeration set
- ``Type[:{tag}]:field:value``       equality index (set)
- ``Type[:{tag}]:field``             range index (sorted set)
- ``Type:<id>:field``                array / collection storage

A co-location tag has the form ``{field_value}``. Redis Cluster hashes only
the text between the first pair of braces, so every key carrying the same
tag maps to the same slot.
"""
from __future__ import annotations
import re
import uuid
from typing import Any, Iterable, Optional

SEPARATOR = ":"
ALL_SET = "all"
ID_COUNTER = "id"
TEMP_MARKER = "tmp"

_TAG_RE = re.compile(r"\{[^{}]+\}")


def hash_tag(field_name: str, value: Any) -> str:
    """Return the co-location tag for a tag field and its value."""
    return "{" + f"{field_name}_{value}" + "}"


def is_hash_tag(key: str) -> bool:
    return tag_of(key) is not None


def tag_of(key: str) -> Optional[str]:
    """Return the first ``{...}`` tag embedded in `key`, or None."""
    m = _TAG_RE.search(key)
    return m.group(0) if m else None


def slot_of(key: str) -> str:
    """Return the part of `key` a cluster would hash to pick a slot."""
    tag = tag_of(key)
    return tag[1:-1] if tag else key


def key(type_name: str, *segments: Any, tag: Optional[str] = None) -> str:
    parts = [type_name]
    if tag:
        parts.append(tag)
    parts.extend(str(s) for s in segments)
    return SEPARATOR.join(parts)


def body_key(type_name: str, record_id: Any) -> str:
    return key(type_name, record_id)


def counter_key(type_name: str) -> str:
    return key(type_name, ID_COUNTER)


def all_key(type_name: str) -> str:
    return key(type_name, ALL_SET)


def container_key(type_name: str, record_id: Any, field_name: str) -> str:
    return key(type_name, record_id, field_name)


def combined_key(parts: Iterable[str]) -> str:
    """Return a fresh temporary key named after the keys it combines.

    The first part leads the name so a tag it carries stays the first tag of
    the combined key. A random suffix keeps concurrent queries apart.
    """
    joined = "+".join(parts)
    return f"{joined}{SEPARATOR}{TEMP_MARKER}{SEPARATOR}{uuid.uuid4().hex}"
