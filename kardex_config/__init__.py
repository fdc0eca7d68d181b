"""
kardex_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_engine_config()``.  Returns a frozen ``EngineConfig``.  YAML
    loading is internal and never exposed to callers.

Architecture position:
    Configuration.  Sits above ``kardex_kernel`` and below
    ``kardex_services``.  The kernel MUST NEVER import from
    ``kardex_config``; orchestrators pass the values the kernel needs
    (default cost method, depth limit) as plain arguments.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- unknown cost method or invalid limit.

Audit relevance:
    Every successful ``get_engine_config()`` call emits a
    ``KARDEX_CONFIG_TRACE`` log entry with the config_id, version and
    checksum, tying recalculations to the configuration that governed them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from kardex_config.loader import load_engine_config
from kardex_config.schema import EngineConfig, LotConfig, RetroactiveConfig

_logger = logging.getLogger("kardex_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_engine_config(config_path: Path | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a YAML configuration file.
            Defaults to kardex_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    path = config_path or _DEFAULT_CONFIG_PATH
    config = load_engine_config(path)

    _logger.info(
        "KARDEX_CONFIG_TRACE",
        extra={
            "trace_type": "KARDEX_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "default_cost_method": config.default_cost_method,
            "max_depth_days": config.retroactive.max_depth_days,
        },
    )
    return config


__all__ = [
    "get_engine_config",
    "EngineConfig",
    "RetroactiveConfig",
    "LotConfig",
]
