"""Record store backend interface definitions.

Defines the StoreBackend abstract class used by the engine to talk to a
Redis-like key-value store. Commands follow Redis semantics: missing keys
read as empty, emptied sets and sorted sets disappear, scores are floats.
Implementations translate their own failures into `ohm_lib.errors`:
`StoreUnavailable` for connection and command failures,
`TransactionAborted` when a transaction is discarded.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import ContextManager, Dict, Iterable, List, Mapping, Set

from .interfaces import StoreBatch


class StoreBackend(ABC):
    """Abstract record store client.

    Implementations must be thread-safe. `partitioned` is fixed at
    construction: True when keys are spread across shards and only keys
    sharing a hash tag may appear in one multi-key command or transaction.
    """

    partitioned: bool = False

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return True if `key` exists."""

    @abstractmethod
    def hgetall(self, key: str) -> Dict[str, str]:
        """Return the hash at `key`, or an empty dict when missing."""

    @abstractmethod
    def hset(self, key: str, mapping: Mapping[str, str]) -> None:
        """Set the given fields of the hash at `key`."""

    @abstractmethod
    def delete(self, *keys: str) -> int:
        """Delete keys and return how many existed."""

    @abstractmethod
    def incr(self, key: str) -> int:
        """Atomically increment the integer at `key` and return the new value."""

    @abstractmethod
    def smembers(self, key: str) -> Set[str]:
        """Return the members of the set at `key`."""

    @abstractmethod
    def sismember(self, key: str, member: str) -> bool:
        """Return True if `member` belongs to the set at `key`."""

    @abstractmethod
    def sadd(self, key: str, *members: str) -> int:
        """Add members to the set at `key`."""

    @abstractmethod
    def srem(self, key: str, *members: str) -> int:
        """Remove members from the set at `key`."""

    @abstractmethod
    def sinterstore(self, dest: str, keys: Iterable[str]) -> int:
        """Store the intersection of the sets at `keys` in `dest`."""

    @abstractmethod
    def zadd(self, key: str, mapping: Mapping[str, float]) -> int:
        """Add member/score pairs to the sorted set at `key`."""

    @abstractmethod
    def zrem(self, key: str, *members: str) -> int:
        """Remove members from the sorted set at `key`."""

    @abstractmethod
    def zrangebyscore(self, key: str, min: str, max: str) -> List[str]:
        """Return members with scores between `min` and `max`.

        Bounds use Redis syntax: ``-inf``, ``+inf``, ``5`` (inclusive) and
        ``(5`` (exclusive). Members come back ordered by score.
        """

    @abstractmethod
    def zinterstore(self, dest: str, weights: Mapping[str, float]) -> int:
        """Store the weighted intersection of `weights` keys in `dest`.

        Plain sets take part with score 1; scores are summed.
        """

    @abstractmethod
    def pipeline(self) -> ContextManager[StoreBatch]:
        """Return a batch flushed in one round trip, ordered but not atomic."""

    @abstractmethod
    def transaction(self, routing_key: str) -> ContextManager[StoreBatch]:
        """Return a MULTI/EXEC batch on the shard owning `routing_key`.

        On a partitioned store every key queued must share the routing
        key's hash tag.
        """

    def close(self) -> None:
        """Release pooled connections."""
        return
