"""
costing_services.receipt_service -- Multi-line import receipts.

One import declaration brings in several products at once.  Each line
becomes its own lot: goods amount = unit price x exchange rate x quantity,
and the declaration's shared duty, freight and other costs are split
across the lines pro-rata by quantity.  Lot codes follow
``IE-{source_transaction_id}-{n}`` with n counting lines from 1.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from costing_config import CostingConfig
from costing_engines.allocation import AllocationEngine, AllocationTarget
from costing_kernel.domain.dtos import LotDTO
from costing_kernel.domain.values import StorageLocation
from costing_kernel.exceptions import (
    CostingValidationError,
    InvalidExchangeRateError,
    InvalidQuantityError,
    ReceiptAlreadyRegisteredError,
)
from costing_kernel.logging_config import get_logger
from costing_kernel.selectors.inventory_selector import LotFilter
from costing_services.lot_ledger import LotLedgerService

logger = get_logger("services.receipt")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ReceiptLine:
    """One product line of an import declaration, priced in the foreign currency."""

    product_id: UUID
    quantity: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class SharedCostSplit:
    duty_amount: Decimal
    domestic_freight: Decimal
    other_cost: Decimal


def lot_code_for(source_transaction_id: str, line_number: int) -> str:
    return f"IE-{source_transaction_id}-{line_number}"


class ReceiptService:
    """Registers import receipts through the Lot Ledger."""

    def __init__(
        self,
        session: Session,
        ledger: LotLedgerService,
        config: CostingConfig | None = None,
    ):
        self.session = session
        self._ledger = ledger
        self._config = config or CostingConfig()
        self._allocation = AllocationEngine()

    def register_import_receipt(
        self,
        *,
        source_transaction_id: str,
        received_date: date,
        lines: Sequence[ReceiptLine],
        exchange_rate: Decimal = Decimal("1"),
        duty_amount: Decimal = _ZERO,
        domestic_freight: Decimal = _ZERO,
        other_cost: Decimal = _ZERO,
        storage_location: StorageLocation = StorageLocation.WAREHOUSE,
    ) -> tuple[LotDTO, ...]:
        """
        Create one lot per line.

        Registering the same source transaction again with the same
        (product, quantity) lines returns the existing lots unchanged.
        Different lines raise ReceiptAlreadyRegisteredError.
        """
        existing = self._ledger.list_lots(LotFilter(source_transaction_id=source_transaction_id))
        if existing:
            if _same_lines(existing, lines):
                logger.info(
                    "import_receipt_already_registered",
                    extra={
                        "source_transaction_id": source_transaction_id,
                        "lot_count": len(existing),
                    },
                )
                return existing
            raise ReceiptAlreadyRegisteredError(source_transaction_id, len(existing))

        if not lines:
            raise CostingValidationError(
                f"Receipt {source_transaction_id} has no lines"
            )
        if exchange_rate <= _ZERO:
            raise InvalidExchangeRateError(exchange_rate)
        for line in lines:
            if line.quantity <= _ZERO:
                raise InvalidQuantityError("quantity", line.quantity)

        splits = self.split_shared_costs(
            quantities=[line.quantity for line in lines],
            duty_amount=duty_amount,
            domestic_freight=domestic_freight,
            other_cost=other_cost,
        )

        lots: list[LotDTO] = []
        with self.session.begin_nested():
            for number, (line, split) in enumerate(zip(lines, splits, strict=True), start=1):
                lots.append(
                    self._ledger.create_lot(
                        product_id=line.product_id,
                        received_date=received_date,
                        quantity_received=line.quantity,
                        goods_amount=line.unit_price * exchange_rate * line.quantity,
                        duty_amount=split.duty_amount,
                        domestic_freight=split.domestic_freight,
                        other_cost=split.other_cost,
                        storage_location=storage_location,
                        lot_code=lot_code_for(source_transaction_id, number),
                        source_transaction_id=source_transaction_id,
                    )
                )

        logger.info(
            "import_receipt_registered",
            extra={
                "source_transaction_id": source_transaction_id,
                "lot_count": len(lots),
                "exchange_rate": str(exchange_rate),
            },
        )
        return tuple(lots)

    def split_shared_costs(
        self,
        *,
        quantities: Sequence[Decimal],
        duty_amount: Decimal,
        domestic_freight: Decimal,
        other_cost: Decimal,
    ) -> list[SharedCostSplit]:
        """Split each shared cost across lines by quantity share; parts add back exactly."""
        targets = [AllocationTarget(target_id=i, weight=q) for i, q in enumerate(quantities)]

        def split(amount: Decimal) -> list[Decimal]:
            if amount == _ZERO:
                return [_ZERO] * len(targets)
            result = self._allocation.allocate_prorata(
                amount=amount,
                targets=targets,
                decimal_places=self._config.money_decimal_places,
            )
            return [line.allocated for line in result.lines]

        duty = split(duty_amount)
        freight = split(domestic_freight)
        other = split(other_cost)
        return [
            SharedCostSplit(duty_amount=d, domestic_freight=f, other_cost=o)
            for d, f, o in zip(duty, freight, other, strict=True)
        ]


def _same_lines(existing: Sequence[LotDTO], lines: Sequence[ReceiptLine]) -> bool:
    if len(existing) != len(lines):
        return False
    have = sorted((str(lot.product_id), lot.quantity_received) for lot in existing)
    want = sorted((str(line.product_id), line.quantity) for line in lines)
    return have == want
