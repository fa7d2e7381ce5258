"""Persistence of fixed-length arrays and collection fields.

Each array or collection field of a record lives in its own key
``Type:<id>:field``, next to the record body:

- array, list: hash of position -> value
- map: hash of key -> value
- set: set of values
- sorted set: sorted set of numeric values scored by themselves

These keys are never indexed; the engine writes them after the record's
index plan succeeded and clears them on delete.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List

from ohm_lib.errors import InvalidArrayBounds, InvalidValue
from ohm_lib.models.convert import from_store_value, to_score, to_store_value
from ohm_lib.models.fields import Role
from ohm_lib.models.metadata import FieldRoleSet, FieldSpec
from ohm_lib.storage.interfaces import StoreProtocol
from ohm_lib.storage.keys import container_key

logger = logging.getLogger(__name__)


class ContainerPersistence:
    def __init__(self, store: StoreProtocol):
        self.store = store

    @staticmethod
    def check(spec: FieldSpec, values: Any) -> None:
        """Validate `values` for `spec` without touching the store."""
        if values is None:
            return
        if spec.has(Role.ARRAY):
            if not isinstance(values, (list, tuple)):
                raise InvalidValue(f"{spec.name}: array value must be a list or tuple")
            if len(values) > spec.length:
                raise InvalidArrayBounds(f"{spec.name}: {len(values)} values for an array of length {spec.length}")
        elif spec.has(Role.COLLECTION_MAP):
            if not isinstance(values, dict):
                raise InvalidValue(f"{spec.name}: map value must be a dict")
        elif spec.has(Role.COLLECTION_SORTED_SET):
            for v in values:
                to_score(v, spec.name)

    def write(self, roles: FieldRoleSet, record_id: Any, spec: FieldSpec, values: Any) -> None:
        """Replace the stored contents of one array/collection field."""
        self.check(spec, values)
        key = container_key(roles.model_name, record_id, spec.name)
        self.store.delete(key)
        if not values:
            return
        if spec.has(Role.ARRAY) or spec.has(Role.COLLECTION_LIST):
            mapping = {str(i): to_store_value(v) for i, v in enumerate(values) if v is not None}
            if mapping:
                self.store.hset(key, mapping)
        elif spec.has(Role.COLLECTION_MAP):
            self.store.hset(key, {to_store_value(k): to_store_value(v) for k, v in values.items()})
        elif spec.has(Role.COLLECTION_SET):
            self.store.sadd(key, *(to_store_value(v) for v in values))
        elif spec.has(Role.COLLECTION_SORTED_SET):
            self.store.zadd(key, {to_store_value(v): to_score(v, spec.name) for v in values})
        logger.debug("Wrote %s for %s:%s", spec.name, roles.model_name, record_id)

    def read(self, roles: FieldRoleSet, record_id: Any, spec: FieldSpec) -> Any:
        key = container_key(roles.model_name, record_id, spec.name)
        elem = spec.element_type
        if spec.has(Role.ARRAY):
            raw = self.store.hgetall(key)
            if not raw:
                return None
            out: List[Any] = [None] * spec.length
            for pos, v in raw.items():
                i = int(pos)
                if i < spec.length:
                    out[i] = from_store_value(elem, v)
            return out
        if spec.has(Role.COLLECTION_LIST):
            raw = self.store.hgetall(key)
            return [from_store_value(elem, raw[p]) for p in sorted(raw, key=int)]
        if spec.has(Role.COLLECTION_MAP):
            raw = self.store.hgetall(key)
            out_map: Dict[Any, Any] = {}
            for k, v in raw.items():
                out_map[from_store_value(spec.key_type, k)] = from_store_value(elem, v)
            return out_map
        if spec.has(Role.COLLECTION_SET):
            return {from_store_value(elem, v) for v in self.store.smembers(key)}
        if spec.has(Role.COLLECTION_SORTED_SET):
            return [from_store_value(elem, v) for v in self.store.zrangebyscore(key, "-inf", "+inf")]
        return None

    def clear(self, roles: FieldRoleSet, record_id: Any, spec: FieldSpec) -> None:
        self.store.delete(container_key(roles.model_name, record_id, spec.name))
