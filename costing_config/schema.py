"""
Configuration schema for the costing core.

Frozen dataclasses parsed from YAML by ``costing_config.loader``.  Field
defaults match the bundled ``sets/default.yaml``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from costing_kernel.domain.values import StorageLocation


class ZeroBasisPolicy(str, Enum):
    """What distribute() does when there is no inventory value to spread over."""

    REJECT = "reject"
    MARK_DISTRIBUTED = "mark_distributed"


@dataclass(frozen=True)
class FeeDistributionConfig:
    eligible_locations: tuple[StorageLocation, ...] = tuple(StorageLocation)
    require_receipt_by_month_end: bool = False
    zero_basis_policy: ZeroBasisPolicy = ZeroBasisPolicy.REJECT
    ratio_decimal_places: int = 6

    def __post_init__(self) -> None:
        if not self.eligible_locations:
            raise ValueError("fee_distribution.eligible_locations must not be empty")
        if not 0 <= self.ratio_decimal_places <= 9:
            raise ValueError("fee_distribution.ratio_decimal_places must be between 0 and 9")


@dataclass(frozen=True)
class CostingConfig:
    """
    Runtime configuration for the costing services.

    ``checksum`` identifies the YAML content the config was parsed from.
    """

    config_id: str = "default"
    version: int = 1
    base_currency: str = "KRW"

    # Rounding unit for distributed fees (KRW has no minor unit)
    money_decimal_places: int = 0

    # Landed unit cost precision
    unit_cost_decimal_places: int = 6

    fee_distribution: FeeDistributionConfig = field(default_factory=FeeDistributionConfig)
    checksum: str = ""

    def __post_init__(self) -> None:
        if len(self.base_currency) != 3 or not self.base_currency.isalpha():
            raise ValueError(f"base_currency must be an ISO 4217 code, got '{self.base_currency}'")
        if not 0 <= self.money_decimal_places <= 9:
            raise ValueError("money_decimal_places must be between 0 and 9")
        if not 0 <= self.unit_cost_decimal_places <= 9:
            raise ValueError("unit_cost_decimal_places must be between 0 and 9")
