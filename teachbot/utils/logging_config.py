"""
Logging setup: one stdout handler on the root logger, module loggers via get_logger().
"""

import logging
import sys
from typing import Optional

from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that flood DEBUG output with wire-level detail
NOISY_LOGGERS = ('botocore', 'boto3', 'urllib3', 'httpx')


def _configured(config: Optional[AppConfig]) -> AppConfig:
    if config is not None:
        return config
    from .config import config as default_config
    return default_config


def resolve_level(name: str) -> int:
    """Numeric level for a LOG_LEVEL value; unknown names fall back to INFO."""
    level = logging.getLevelName((name or '').strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Configure the root logger from LOG_LEVEL.

    Args:
        config: AppConfig instance, uses default if None
    """
    level = resolve_level(_configured(config).log_level)
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """Module logger at the configured level, usually ``get_logger(__name__)``."""
    logger = logging.getLogger(name)
    logger.setLevel(resolve_level(_configured(config).log_level))
    return logger
