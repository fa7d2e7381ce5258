"""Record store backed by redis-py.

Wraps either a single-node ``redis.Redis`` or a ``redis.cluster.RedisCluster``
client. Connection pooling is redis-py's own: pipelines are used as context
managers so their connection goes back to the pool (or is disconnected
after a failure) on every exit path.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Set

import redis
from redis import exceptions as redis_errors
from redis.cluster import RedisCluster

from ohm_lib.errors import StoreUnavailable, TransactionAborted
from ohm_lib.storage.base import StoreBackend

logger = logging.getLogger(__name__)


@contextmanager
def translate_errors(operation: str, in_transaction: bool = False) -> Iterator[None]:
    """Re-raise redis-py failures as `StoreUnavailable` / `TransactionAborted`."""
    try:
        yield
    except (redis_errors.ExecAbortError, redis_errors.WatchError) as e:
        raise TransactionAborted(f"{operation} discarded by the store", cause=e)
    except (redis_errors.ConnectionError, redis_errors.TimeoutError) as e:
        raise StoreUnavailable(f"{operation}: store unreachable", cause=e)
    except redis_errors.ResponseError as e:
        if in_transaction:
            raise TransactionAborted(f"{operation} failed inside EXEC", cause=e)
        raise StoreUnavailable(f"{operation} rejected by the store", cause=e)
    except (redis_errors.RedisError, redis_errors.RedisClusterException) as e:
        raise StoreUnavailable(f"{operation} failed", cause=e)


class RedisBatch:
    """`StoreBatch` over a redis-py pipeline."""

    def __init__(self, pipe: Any, in_transaction: bool = False):
        self._pipe = pipe
        self._in_transaction = in_transaction

    def sadd(self, key: str, *members: str) -> None:
        self._pipe.sadd(key, *members)

    def srem(self, key: str, *members: str) -> None:
        self._pipe.srem(key, *members)

    def zadd(self, key: str, mapping: Mapping[str, float]) -> None:
        self._pipe.zadd(key, dict(mapping))

    def zrem(self, key: str, *members: str) -> None:
        self._pipe.zrem(key, *members)

    def hset(self, key: str, mapping: Mapping[str, str]) -> None:
        self._pipe.hset(key, mapping=dict(mapping))

    def delete(self, *keys: str) -> None:
        self._pipe.delete(*keys)

    def execute(self) -> List[Any]:
        op = "EXEC" if self._in_transaction else "pipeline"
        with translate_errors(op, in_transaction=self._in_transaction):
            return self._pipe.execute()


class RedisStore(StoreBackend):
    def __init__(self, client: Any, partitioned: Optional[bool] = None):
        self._client = client
        self.partitioned = isinstance(client, RedisCluster) if partitioned is None else partitioned

    @classmethod
    def from_config(cls, config: Any) -> "RedisStore":
        """Build a client from a `StoreConfig`."""
        kwargs: Dict[str, Any] = {"decode_responses": True}
        if config.max_connections:
            kwargs["max_connections"] = config.max_connections
        if config.socket_timeout is not None:
            kwargs["socket_timeout"] = config.socket_timeout
        if config.cluster:
            client = RedisCluster.from_url(config.url, **kwargs)
        else:
            client = redis.Redis.from_url(config.url, **kwargs)
        logger.info("Connected redis store at %s (cluster=%s)", config.url, config.cluster)
        return cls(client, partitioned=config.cluster)

    @property
    def client(self) -> Any:
        return self._client

    def exists(self, key: str) -> bool:
        with translate_errors("EXISTS"):
            return bool(self._client.exists(key))

    def hgetall(self, key: str) -> Dict[str, str]:
        with translate_errors("HGETALL"):
            return self._client.hgetall(key) or {}

    def hset(self, key: str, mapping: Mapping[str, str]) -> None:
        with translate_errors("HSET"):
            self._client.hset(key, mapping=dict(mapping))

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with translate_errors("DEL"):
            return int(self._client.delete(*keys))

    def incr(self, key: str) -> int:
        with translate_errors("INCR"):
            return int(self._client.incr(key))

    def smembers(self, key: str) -> Set[str]:
        with translate_errors("SMEMBERS"):
            return set(self._client.smembers(key))

    def sismember(self, key: str, member: str) -> bool:
        with translate_errors("SISMEMBER"):
            return bool(self._client.sismember(key, member))

    def sadd(self, key: str, *members: str) -> int:
        with translate_errors("SADD"):
            return int(self._client.sadd(key, *members))

    def srem(self, key: str, *members: str) -> int:
        with translate_errors("SREM"):
            return int(self._client.srem(key, *members))

    def sinterstore(self, dest: str, keys: Iterable[str]) -> int:
        with translate_errors("SINTERSTORE"):
            return int(self._client.sinterstore(dest, list(keys)))

    def zadd(self, key: str, mapping: Mapping[str, float]) -> int:
        with translate_errors("ZADD"):
            return int(self._client.zadd(key, dict(mapping)))

    def zrem(self, key: str, *members: str) -> int:
        with translate_errors("ZREM"):
            return int(self._client.zrem(key, *members))

    def zrangebyscore(self, key: str, min: str, max: str) -> List[str]:
        with translate_errors("ZRANGEBYSCORE"):
            return list(self._client.zrangebyscore(key, min, max))

    def zinterstore(self, dest: str, weights: Mapping[str, float]) -> int:
        with translate_errors("ZINTERSTORE"):
            return int(self._client.zinterstore(dest, dict(weights)))

    @contextmanager
    def pipeline(self) -> Iterator[RedisBatch]:
        with self._client.pipeline(transaction=False) as pipe:
            yield RedisBatch(pipe)

    @contextmanager
    def transaction(self, routing_key: str) -> Iterator[RedisBatch]:
        if self.partitioned:
            # MULTI/EXEC goes to the node owning the routing key's slot
            with translate_errors("MULTI"):
                node = self._client.get_node_from_key(routing_key)
                conn = self._client.get_redis_connection(node)
        else:
            conn = self._client
        with conn.pipeline(transaction=True) as pipe:
            yield RedisBatch(pipe, in_transaction=True)

    def close(self) -> None:
        with translate_errors("close"):
            self._client.close()
