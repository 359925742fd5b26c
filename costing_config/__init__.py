"""
costing_config -- single public entrypoint for costing configuration.

``get_active_config()`` is the only way runtime code obtains
configuration.  Services receive the returned ``CostingConfig`` through
their constructor and never read files or environment variables
themselves.

Every successful call emits a ``COSTING_CONFIG_TRACE`` log record with the
config id, version and checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from costing_config.loader import load_costing_config
from costing_config.schema import CostingConfig, FeeDistributionConfig, ZeroBasisPolicy

_logger = logging.getLogger("costing_kernel.config")

CONFIG_PATH_ENV = "COSTING_CONFIG_PATH"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> CostingConfig:
    """
    Load the active costing configuration.

    Resolution order: ``path`` argument, then ``$COSTING_CONFIG_PATH``,
    then the bundled ``sets/default.yaml``.

    Raises:
        FileNotFoundError: the resolved file does not exist.
        ValueError: the file fails schema validation.
    """
    resolved = Path(path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_PATH)
    config = load_costing_config(resolved)

    _logger.info(
        "COSTING_CONFIG_TRACE",
        extra={
            "trace_type": "COSTING_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(resolved),
            "base_currency": config.base_currency,
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "CostingConfig",
    "FeeDistributionConfig",
    "ZeroBasisPolicy",
    "get_active_config",
]
