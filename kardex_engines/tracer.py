"""
kardex_engines.tracer -- KARDEX_ENGINE_TRACE records for costing calls.

Responsibility:
    ``@traced_engine`` wraps a pure costing call and logs one
    KARDEX_ENGINE_TRACE record per invocation: engine name and version, a
    fingerprint of the chosen arguments, the outcome and duration_ms.  Two
    cascades that feed a strategy the same lots and quantity produce the
    same fingerprint, which is how a replay is matched to the original
    costing in the logs.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    only; uses the ``kardex_kernel.engines.tracer`` logger name so records
    reach the kernel's structured handler without importing the kernel.

Invariants enforced:
    - Arguments are fingerprinted by parameter name whether they were
      passed positionally or by keyword.
    - Decimals are normalized (10 and 10.0000 fingerprint alike); lot
      value objects are fingerprinted field by field.
    - A refused call (the engine raised) is traced with outcome "refused"
      and the error code, then the error propagates unchanged.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any

_logger = logging.getLogger("kardex_kernel.engines.tracer")

_FINGERPRINT_LENGTH = 16


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Decimal):
        return str(value.normalize())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _canonicalize(
            {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        )
    if isinstance(value, Mapping):
        return "{" + ",".join(
            f"{k}:{_canonicalize(v)}" for k, v in sorted(value.items())
        ) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """SHA-256 prefix over ``name=value`` for each field; absent fields are "null"."""
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:_FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """
    Decorator emitting KARDEX_ENGINE_TRACE around a costing call.

    Args:
        engine_name: e.g. "costing.fifo".
        engine_version: bumped when the costing arithmetic changes.
        fingerprint_fields: parameter names hashed into input_fingerprint.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            trace: dict[str, Any] = {
                "trace_type": "KARDEX_ENGINE_TRACE",
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": fingerprint,
                "function": func.__qualname__,
            }
            t0 = time.monotonic()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                trace["outcome"] = "refused"
                trace["error_code"] = getattr(exc, "code", type(exc).__name__)
                trace["duration_ms"] = round((time.monotonic() - t0) * 1000, 2)
                _logger.info("KARDEX_ENGINE_TRACE", extra=trace)
                raise

            trace["outcome"] = "ok"
            trace["duration_ms"] = round((time.monotonic() - t0) * 1000, 2)
            _logger.info("KARDEX_ENGINE_TRACE", extra=trace)
            return result

        return wrapper

    return decorator
