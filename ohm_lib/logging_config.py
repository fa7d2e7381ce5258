from __future__ import annotations
import logging
from pathlib import Path
import yaml
from typing import Optional

from ohm_lib.config.config import DEFAULT_CONFIG_PATH


def configure_logging(config_path: Optional[str | Path] = None) -> logging.Logger:
    """Configure root logging for applications embedding ohm_lib.

    Reads `log_level` from the YAML store config (top level or under
    ``store:``), defaulting to WARNING when the file is missing, unreadable
    or names no level. Returns a module logger for the caller.
    """
    level = logging.WARNING

    cfg_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    if cfg_path.exists():
        try:
            with cfg_path.open('r', encoding='utf-8') as _f:
                _cfg = yaml.safe_load(_f) or {}
            _lvl = _cfg.get('log_level') or (_cfg.get('store') or {}).get('log_level')
            if _lvl:
                level = getattr(logging, str(_lvl).upper(), logging.WARNING)
        except (OSError, yaml.YAMLError, AttributeError):
            level = logging.WARNING

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s [%(name)s]: %(message)s')
    logger = logging.getLogger(__name__)

    # Keep known noisy libraries quiet by default
    logging.getLogger('redis').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logger.debug("Log level set to: %s", logging.getLevelName(level))

    return logger
