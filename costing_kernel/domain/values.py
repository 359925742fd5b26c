"""
Value objects shared by the costing kernel, engines and services.

Pure: no I/O, no SQLAlchemy.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from costing_kernel.exceptions import InvalidYearMonthError


class StorageLocation(str, Enum):
    """Where a lot is physically held."""

    WAREHOUSE = "WAREHOUSE"
    OFFICE = "OFFICE"
    DIRECT_DELIVERY = "DIRECT_DELIVERY"
    OTHER = "OTHER"


class MovementType(str, Enum):
    IN = "IN"
    OUT = "OUT"


_YEAR_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True, order=True)
class YearMonth:
    """A calendar month, the unique key of a warehouse fee."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12 or not 1 <= self.year <= 9999:
            raise InvalidYearMonthError(f"{self.year:04d}-{self.month:02d}")

    @classmethod
    def parse(cls, value: str | YearMonth) -> YearMonth:
        """Parse ``YYYY-MM``. Passing a YearMonth returns it unchanged."""
        if isinstance(value, YearMonth):
            return value
        match = _YEAR_MONTH_RE.match(str(value).strip())
        if match is None:
            raise InvalidYearMonthError(str(value))
        return cls(int(match.group(1)), int(match.group(2)))

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = ROUND_HALF_UP,
) -> Decimal:
    """
    Round to ``decimal_places`` using ``rounding`` (half-up by default).

    The single rounding entry point for money, unit costs and ratios.
    ``decimal_places`` of 0 yields whole units (KRW has no minor unit).
    """
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)
