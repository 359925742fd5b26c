"""
Configuration loader (``costing_config.loader``).

Reads one YAML file and parses it into the frozen dataclasses of
``costing_config.schema``.  Runtime callers go through
``costing_config.get_active_config()`` instead of calling this directly.

Failure modes:
    * Missing file -> ``FileNotFoundError`` propagates.
    * Malformed YAML -> ``yaml.YAMLError`` propagates.
    * Unknown storage location or policy -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from costing_config.schema import CostingConfig, FeeDistributionConfig, ZeroBasisPolicy
from costing_kernel.domain.values import StorageLocation


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file. An empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_fee_distribution(data: dict[str, Any]) -> FeeDistributionConfig:
    kwargs: dict[str, Any] = {}
    if "eligible_locations" in data:
        kwargs["eligible_locations"] = tuple(
            StorageLocation(str(loc).upper()) for loc in data["eligible_locations"]
        )
    if "require_receipt_by_month_end" in data:
        kwargs["require_receipt_by_month_end"] = bool(data["require_receipt_by_month_end"])
    if "zero_basis_policy" in data:
        kwargs["zero_basis_policy"] = ZeroBasisPolicy(data["zero_basis_policy"])
    if "ratio_decimal_places" in data:
        kwargs["ratio_decimal_places"] = int(data["ratio_decimal_places"])
    return FeeDistributionConfig(**kwargs)


def parse_costing_config(data: dict[str, Any]) -> CostingConfig:
    """Build a CostingConfig from a parsed YAML mapping."""
    kwargs: dict[str, Any] = {"checksum": compute_checksum(data)}
    for key in ("config_id", "base_currency"):
        if key in data:
            kwargs[key] = str(data[key])
    for key in ("version", "money_decimal_places", "unit_cost_decimal_places"):
        if key in data:
            kwargs[key] = int(data[key])
    kwargs["fee_distribution"] = parse_fee_distribution(data.get("fee_distribution") or {})
    return CostingConfig(**kwargs)


def load_costing_config(path: Path) -> CostingConfig:
    return parse_costing_config(load_yaml_file(path))
