"""
Configuration Loader (``kardex_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``kardex_config.schema`` dataclasses.  Runtime callers go through
``kardex_config.get_engine_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with descriptive messages; no silent
  fallback for an unknown cost method or a negative limit.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from kardex_config.schema import EngineConfig, LotConfig, RetroactiveConfig

COST_METHODS = frozenset({"weighted_average", "fifo"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _non_negative_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"{name} cannot be negative, got {value}")
    return value


def parse_retroactive(data: dict[str, Any]) -> RetroactiveConfig:
    depth = data.get("max_depth_days", 90)
    isolate = data.get("isolate_unit_failures", True)
    if not isinstance(isolate, bool):
        raise ValueError(f"retroactive.isolate_unit_failures must be a boolean, got {isolate!r}")
    return RetroactiveConfig(
        max_depth_days=None if depth is None else _non_negative_int(
            depth, "retroactive.max_depth_days"
        ),
        isolate_unit_failures=isolate,
    )


def parse_lots(data: dict[str, Any]) -> LotConfig:
    return LotConfig(
        expiry_warning_days=_non_negative_int(
            data.get("expiry_warning_days", 30), "lots.expiry_warning_days"
        ),
    )


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse a configuration dict into an ``EngineConfig``.

    ``config_id`` and ``version`` are required; everything else has a
    default.
    """
    method = data.get("default_cost_method", "weighted_average")
    if method not in COST_METHODS:
        raise ValueError(
            f"Unknown default_cost_method {method!r}; expected one of {sorted(COST_METHODS)}"
        )
    return EngineConfig(
        config_id=str(data["config_id"]),
        version=_non_negative_int(data["version"], "version"),
        default_cost_method=method,
        retroactive=parse_retroactive(data.get("retroactive") or {}),
        lots=parse_lots(data.get("lots") or {}),
        checksum=compute_checksum(data),
    )


def load_engine_config(path: Path) -> EngineConfig:
    """Load and parse one configuration file."""
    return parse_engine_config(load_yaml_file(path))
