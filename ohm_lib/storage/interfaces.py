from typing import Protocol, Any, ContextManager, Dict, Iterable, List, Mapping, Set, runtime_checkable


@runtime_checkable
class StoreBatch(Protocol):
    """Queued commands flushed together by `execute`.

    Obtained from `StoreProtocol.pipeline()` (ordered, not atomic) or
    `StoreProtocol.transaction()` (MULTI/EXEC, all or nothing).
    """

    def sadd(self, key: str, *members: str) -> None: ...

    def srem(self, key: str, *members: str) -> None: ...

    def zadd(self, key: str, mapping: Mapping[str, float]) -> None: ...

    def zrem(self, key: str, *members: str) -> None: ...

    def hset(self, key: str, mapping: Mapping[str, str]) -> None: ...

    def delete(self, *keys: str) -> None: ...

    def execute(self) -> List[Any]: ...


@runtime_checkable
class StoreProtocol(Protocol):
    """Record store client protocol mirroring `ohm_lib.storage.base.StoreBackend`.

    Implementations follow the semantics documented on the abstract base
    class (Redis command semantics, `OhmError` subclasses for failures).
    """

    partitioned: bool

    def exists(self, key: str) -> bool: ...

    def hgetall(self, key: str) -> Dict[str, str]: ...

    def hset(self, key: str, mapping: Mapping[str, str]) -> None: ...

    def delete(self, *keys: str) -> int: ...

    def incr(self, key: str) -> int: ...

    def smembers(self, key: str) -> Set[str]: ...

    def sismember(self, key: str, member: str) -> bool: ...

    def sadd(self, key: str, *members: str) -> int: ...

    def srem(self, key: str, *members: str) -> int: ...

    def sinterstore(self, dest: str, keys: Iterable[str]) -> int: ...

    def zadd(self, key: str, mapping: Mapping[str, float]) -> int: ...

    def zrem(self, key: str, *members: str) -> int: ...

    def zrangebyscore(self, key: str, min: str, max: str) -> List[str]: ...

    def zinterstore(self, dest: str, weights: Mapping[str, float]) -> int: ...

    def pipeline(self) -> ContextManager[StoreBatch]: ...

    def transaction(self, routing_key: str) -> ContextManager[StoreBatch]: ...

    def close(self) -> None: ...
