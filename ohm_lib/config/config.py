from __future__ import annotations
import logging
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/ohm.yml")


class StoreConfig(BaseModel):
    """Connection settings for the record store.

    `cluster` marks the store as partitioned: a Redis Cluster for the
    ``redis`` backend, slot emulation for the ``memory`` backend.
    """

    backend: Literal["redis", "memory"] = "redis"
    url: str = "redis://localhost:6379/0"
    cluster: bool = False
    max_connections: Optional[int] = None
    socket_timeout: Optional[float] = 5.0
    log_level: Optional[str] = None


def load_yaml_file(path: Path) -> dict:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: Optional[str | Path] = None) -> StoreConfig:
    """Load `StoreConfig` from YAML; a missing file yields the defaults.

    The settings may sit at the top level or under a ``store:`` key.
    """
    cfg_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    data = load_yaml_file(cfg_path)
    if isinstance(data.get("store"), dict):
        section = dict(data["store"])
        section.setdefault("log_level", data.get("log_level"))
        data = section
    config = StoreConfig(**data)
    logger.debug("Loaded store config from %s: backend=%s cluster=%s", cfg_path, config.backend, config.cluster)
    return config
