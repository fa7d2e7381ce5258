from .config import DEFAULT_CONFIG_PATH, StoreConfig, load_config

__all__ = ["DEFAULT_CONFIG_PATH", "StoreConfig", "load_config"]
