"""Object-hash mapping for Redis with maintained secondary indexes.

Typical use::

    from ohm_lib import Ohm, MemoryStore, model, identity, attribute

    @model
    class Person:
        id: Optional[int] = identity()
        name: Optional[str] = attribute(indexed=True)

    ohm = Ohm(MemoryStore())
    ohm.save(Person(name="Alice"))
"""
from __future__ import annotations
from pathlib import Path
from typing import Optional

from ohm_lib.config import StoreConfig, load_config
from ohm_lib.engine.query import Condition, Predicate
from ohm_lib.errors import ErrorKind, OhmError
from ohm_lib.models import (
    array,
    attribute,
    collection_list,
    collection_map,
    collection_set,
    collection_sorted_set,
    identity,
    model,
    reference,
)
from ohm_lib.ohm import Ohm
from ohm_lib.storage import MemoryStore, RedisStore, create_store


def connect(config: Optional[StoreConfig | str | Path] = None) -> Ohm:
    """Return an `Ohm` bound to the store described by `config`.

    `config` is a `StoreConfig`, a path to a YAML config file, or None for
    the default config file location.
    """
    if not isinstance(config, StoreConfig):
        config = load_config(config)
    return Ohm(create_store(config))


__all__ = [
    "Condition",
    "ErrorKind",
    "MemoryStore",
    "Ohm",
    "OhmError",
    "Predicate",
    "RedisStore",
    "StoreConfig",
    "array",
    "attribute",
    "collection_list",
    "collection_map",
    "collection_set",
    "collection_sorted_set",
    "connect",
    "create_store",
    "identity",
    "load_config",
    "model",
    "reference",
]
