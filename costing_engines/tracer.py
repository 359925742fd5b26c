"""
costing_engines.tracer -- COSTING_ENGINE_TRACE records for engine calls.

Each decorated call logs one record: engine name and version, a 16-char
fingerprint of the chosen keyword inputs, how long the call took, and
whether it returned or raised.  Lot inputs (``FifoLot``, ``FeeBasisLot``)
are fingerprinted field by field, so two plans over the same stock hash
alike no matter how their Decimals were scaled.

Usage:
    @traced_engine("fifo", "1.0", fingerprint_fields=("quantity", "lots"))
    def plan_fifo_drawdown(*, lots, quantity):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import logging
import time
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# Engines log here directly; the kernel's formatter picks it up via the
# costing_kernel namespace.
_logger = logging.getLogger("costing_kernel.engines.tracer")

TRACE_MESSAGE = "COSTING_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Decimal):
        # 100 and 100.00 are the same quantity
        return format(value.normalize(), "f") if value else "0"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (bool, int, str, UUID, date)):
        return str(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        body = ",".join(
            f"{f.name}:{_canonicalize(getattr(value, f.name))}"
            for f in dataclasses.fields(value)
        )
        return f"{type(value).__name__}({body})"
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return repr(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """SHA-256 prefix over the named kwargs; absent ones hash as ``null``."""
    canonical = "|".join(
        f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorate a pure engine function so each call logs a trace record.

    A call that raises still logs, with ``outcome`` set to the exception
    class name, and the exception propagates unchanged.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs)
                if fingerprint_fields
                else ""
            )
            outcome = "ok"
            started = time.monotonic()
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                outcome = type(exc).__name__
                raise
            finally:
                _logger.info(
                    TRACE_MESSAGE,
                    extra={
                        "trace_type": TRACE_MESSAGE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.monotonic() - started) * 1000, 2),
                        "outcome": outcome,
                        "function": func.__qualname__,
                    },
                )

        return wrapper

    return decorator
