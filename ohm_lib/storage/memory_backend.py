"""In-process record store backend.

Holds strings, hashes, sets and sorted sets in one dict guarded by an
RLock and follows Redis command semantics closely enough to run the whole
engine without a server. With ``partitioned=True`` it enforces Redis
Cluster slot rules: multi-key commands and transactions may only touch
keys sharing one hash tag.
"""
from __future__ import annotations
import copy
import logging
import math
from contextlib import contextmanager
from threading import RLock
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from ohm_lib.errors import StoreUnavailable, TransactionAborted
from ohm_lib.storage.base import StoreBackend
from ohm_lib.storage.keys import slot_of

logger = logging.getLogger(__name__)

_MISSING = object()


class CrossSlotError(StoreUnavailable):
    """Keys in one command or transaction hash to different slots."""


def _parse_bound(bound: Any) -> Tuple[float, bool]:
    """Return (value, exclusive) for a ZRANGEBYSCORE bound."""
    text = str(bound).strip()
    exclusive = text.startswith("(")
    if exclusive:
        text = text[1:]
    if text in ("-inf", "+inf", "inf"):
        return (-math.inf if text == "-inf" else math.inf), exclusive
    try:
        return float(text), exclusive
    except ValueError as e:
        raise StoreUnavailable(f"min or max is not a float: {bound!r}", cause=e)


class MemoryBatch:
    """Commands queued against a `MemoryStore` until `execute`."""

    def __init__(self, store: "MemoryStore", atomic: bool = False, routing_key: Optional[str] = None):
        self._store = store
        self._atomic = atomic
        self._routing_key = routing_key
        self._ops: List[Tuple[str, tuple]] = []

    def sadd(self, key: str, *members: str) -> None:
        self._ops.append(("sadd", (key, *members)))

    def srem(self, key: str, *members: str) -> None:
        self._ops.append(("srem", (key, *members)))

    def zadd(self, key: str, mapping: Mapping[str, float]) -> None:
        self._ops.append(("zadd", (key, dict(mapping))))

    def zrem(self, key: str, *members: str) -> None:
        self._ops.append(("zrem", (key, *members)))

    def hset(self, key: str, mapping: Mapping[str, str]) -> None:
        self._ops.append(("hset", (key, dict(mapping))))

    def delete(self, *keys: str) -> None:
        self._ops.append(("delete", keys))

    def execute(self) -> List[Any]:
        ops, self._ops = self._ops, []
        if self._atomic:
            return self._store._run_transaction(ops, self._routing_key)
        return self._store._run_pipeline(ops)


class MemoryStore(StoreBackend):
    """Thread-safe in-memory store."""

    def __init__(self, partitioned: bool = False):
        self._lock = RLock()
        self._data: Dict[str, Any] = {}
        self.partitioned = partitioned
        self.closed = False

    # -- helpers -----------------------------------------------------------
    def _typed(self, key: str, kind: type, create: bool = False):
        value = self._data.get(key)
        if value is None:
            if not create:
                return None
            value = kind()
            self._data[key] = value
        elif not isinstance(value, kind) or (kind is dict and isinstance(value, _ZSet)):
            raise StoreUnavailable(f"WRONGTYPE operation against key {key!r} holding the wrong kind of value")
        return value

    def _drop_if_empty(self, key: str) -> None:
        value = self._data.get(key)
        if isinstance(value, (set, dict)) and not value:
            del self._data[key]

    def _check_slot(self, keys: Iterable[str], routing_key: Optional[str] = None) -> None:
        if not self.partitioned:
            return
        slots = {slot_of(k) for k in keys}
        if routing_key is not None:
            slots.add(slot_of(routing_key))
        if len(slots) > 1:
            raise CrossSlotError(f"CROSSSLOT keys in request don't hash to the same slot: {sorted(slots)}")

    # -- commands (caller holds the lock) ----------------------------------
    def _hset(self, key: str, mapping: Mapping[str, str]) -> int:
        h = self._typed(key, dict, create=True)
        added = sum(1 for f in mapping if f not in h)
        h.update({str(f): str(v) for f, v in mapping.items()})
        return added

    def _delete(self, *keys: str) -> int:
        return sum(1 for k in keys if self._data.pop(k, None) is not None)

    def _sadd(self, key: str, *members: str) -> int:
        s = self._typed(key, set, create=True)
        before = len(s)
        s.update(str(m) for m in members)
        return len(s) - before

    def _srem(self, key: str, *members: str) -> int:
        s = self._typed(key, set)
        if s is None:
            return 0
        before = len(s)
        s.difference_update(str(m) for m in members)
        removed = before - len(s)
        self._drop_if_empty(key)
        return removed

    # sorted sets are _ZSet dicts member -> score
    def _zadd(self, key: str, mapping: Mapping[str, float]) -> int:
        z = self._data.get(key)
        if z is None:
            z = _ZSet()
            self._data[key] = z
        elif not isinstance(z, _ZSet):
            raise StoreUnavailable(f"WRONGTYPE operation against key {key!r} holding the wrong kind of value")
        added = sum(1 for m in mapping if str(m) not in z)
        z.update({str(m): float(s) for m, s in mapping.items()})
        return added

    def _zrem(self, key: str, *members: str) -> int:
        z = self._data.get(key)
        if z is None:
            return 0
        if not isinstance(z, _ZSet):
            raise StoreUnavailable(f"WRONGTYPE operation against key {key!r} holding the wrong kind of value")
        removed = sum(1 for m in members if z.pop(str(m), None) is not None)
        self._drop_if_empty(key)
        return removed

    def _as_scores(self, key: str) -> Dict[str, float]:
        value = self._data.get(key)
        if value is None:
            return {}
        if isinstance(value, _ZSet):
            return dict(value)
        if isinstance(value, set):
            return {m: 1.0 for m in value}
        raise StoreUnavailable(f"WRONGTYPE operation against key {key!r} holding the wrong kind of value")

    def _run_pipeline(self, ops: List[Tuple[str, tuple]]) -> List[Any]:
        with self._lock:
            return [getattr(self, "_" + name)(*args) for name, args in ops]

    def _run_transaction(self, ops: List[Tuple[str, tuple]], routing_key: Optional[str]) -> List[Any]:
        keys: List[str] = []
        for name, args in ops:
            keys.extend(args if name == "delete" else args[:1])
        with self._lock:
            try:
                self._check_slot(keys, routing_key)
            except CrossSlotError as e:
                raise TransactionAborted("EXECABORT transaction discarded", cause=e)
            backup = {k: (copy.deepcopy(self._data[k]) if k in self._data else _MISSING) for k in set(keys)}
            try:
                return [getattr(self, "_" + name)(*args) for name, args in ops]
            except StoreUnavailable as e:
                for k, v in backup.items():
                    if v is _MISSING:
                        self._data.pop(k, None)
                    else:
                        self._data[k] = v
                raise TransactionAborted("transaction discarded", cause=e)

    # -- StoreBackend ------------------------------------------------------
    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._data.get(key)
            return value if isinstance(value, str) else None

    def hgetall(self, key: str) -> Dict[str, str]:
        with self._lock:
            h = self._typed(key, dict)
            return dict(h) if h else {}

    def hset(self, key: str, mapping: Mapping[str, str]) -> None:
        with self._lock:
            self._hset(key, mapping)

    def delete(self, *keys: str) -> int:
        with self._lock:
            return self._delete(*keys)

    def incr(self, key: str) -> int:
        with self._lock:
            current = self._data.get(key, "0")
            try:
                value = int(current) + 1
            except (TypeError, ValueError) as e:
                raise StoreUnavailable("value is not an integer or out of range", cause=e)
            self._data[key] = str(value)
            return value

    def smembers(self, key: str) -> Set[str]:
        with self._lock:
            s = self._typed(key, set)
            return set(s) if s else set()

    def sismember(self, key: str, member: str) -> bool:
        with self._lock:
            s = self._typed(key, set)
            return bool(s) and str(member) in s

    def sadd(self, key: str, *members: str) -> int:
        with self._lock:
            return self._sadd(key, *members)

    def srem(self, key: str, *members: str) -> int:
        with self._lock:
            return self._srem(key, *members)

    def sinterstore(self, dest: str, keys: Iterable[str]) -> int:
        keys = list(keys)
        with self._lock:
            self._check_slot([dest, *keys])
            result: Optional[Set[str]] = None
            for k in keys:
                members = set(self._typed(k, set) or ())
                result = members if result is None else result & members
            self._data.pop(dest, None)
            if result:
                self._data[dest] = result
            return len(result or ())

    def zadd(self, key: str, mapping: Mapping[str, float]) -> int:
        with self._lock:
            return self._zadd(key, mapping)

    def zrem(self, key: str, *members: str) -> int:
        with self._lock:
            return self._zrem(key, *members)

    def zscore(self, key: str, member: str) -> Optional[float]:
        with self._lock:
            return self._as_scores(key).get(str(member))

    def zrangebyscore(self, key: str, min: str, max: str) -> List[str]:
        lo, lo_excl = _parse_bound(min)
        hi, hi_excl = _parse_bound(max)
        with self._lock:
            scores = self._as_scores(key)
        hits = []
        for member, score in scores.items():
            if score < lo or (lo_excl and score == lo):
                continue
            if score > hi or (hi_excl and score == hi):
                continue
            hits.append((score, member))
        return [m for _, m in sorted(hits)]

    def zinterstore(self, dest: str, weights: Mapping[str, float]) -> int:
        with self._lock:
            self._check_slot([dest, *weights])
            result: Optional[Dict[str, float]] = None
            for k, w in weights.items():
                scores = self._as_scores(k)
                if result is None:
                    result = {m: s * w for m, s in scores.items()}
                else:
                    result = {m: result[m] + s * w for m, s in scores.items() if m in result}
            self._data.pop(dest, None)
            if result:
                self._data[dest] = _ZSet(result)
            return len(result or ())

    @contextmanager
    def pipeline(self) -> Iterator[MemoryBatch]:
        yield MemoryBatch(self)

    @contextmanager
    def transaction(self, routing_key: str) -> Iterator[MemoryBatch]:
        yield MemoryBatch(self, atomic=True, routing_key=routing_key)

    def keys(self) -> List[str]:
        """Snapshot of every key currently held."""
        with self._lock:
            return list(self._data)

    def flush(self) -> None:
        with self._lock:
            self._data.clear()

    def close(self) -> None:
        self.closed = True


class _ZSet(dict):
    """Sorted set payload: member -> score."""
