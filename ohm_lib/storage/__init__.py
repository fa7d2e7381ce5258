"""Record store clients for ohm_lib."""
from __future__ import annotations
import logging
from typing import Any

from .base import StoreBackend
from .interfaces import StoreBatch, StoreProtocol
from .memory_backend import MemoryStore
from .redis_backend import RedisStore

logger = logging.getLogger(__name__)


def create_store(config: Any) -> StoreBackend:
    """Build the store backend described by a `StoreConfig`."""
    if config.backend == "memory":
        logger.debug("Using in-memory store (partitioned=%s)", config.cluster)
        return MemoryStore(partitioned=config.cluster)
    if config.backend == "redis":
        return RedisStore.from_config(config)
    raise ValueError(f"Unknown store backend: {config.backend!r}")


__all__ = ["StoreBackend", "StoreBatch", "StoreProtocol", "MemoryStore", "RedisStore", "create_store"]
