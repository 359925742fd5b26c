"""
costing_services.warehouse_fee_service -- Monthly warehouse fees and their distribution.

Responsibility:
    Register, edit and delete monthly fee declarations while they are
    PENDING, and run the one-shot distribution that apportions a month's
    fee across the lots on hand, weighted by landed value.

Architecture position:
    Services -- stateful orchestration.  The arithmetic is
    costing_engines.fee_distribution; this module snapshots lots, writes
    the plan and performs the PENDING -> DISTRIBUTED transition.

Invariants enforced:
    - One fee per year-month.
    - PENDING -> DISTRIBUTED happens at most once.  The fee row is locked
      FOR UPDATE and versioned, so of two concurrent distribute() calls for
      the same month exactly one succeeds; the other raises
      WarehouseFeeAlreadyDistributedError.
    - Distribution is atomic.  Plan first, then write every line, every
      lot increment and the fee transition inside one SAVEPOINT.  Any
      failure leaves the fee PENDING with no lines.
    - sum(distributed_fee) == total_fee exactly.
    - DISTRIBUTED fees cannot be edited or deleted.

Failure modes:
    - InvalidYearMonthError for a malformed month.
    - WarehouseFeeNotFoundError / WarehouseFeeAlreadyExistsError.
    - WarehouseFeeAlreadyDistributedError on a second distribute().
    - WarehouseFeeImmutableError on editing or deleting a distributed fee.
    - NoEligibleInventoryError when there is no value basis and the zero
      basis policy is ``reject``.

None of these are retried here.  Re-running a distribution is an operator
decision.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from costing_config import CostingConfig, ZeroBasisPolicy
from costing_engines.fee_distribution import (
    FeeBasisLot,
    FeeDistributionPlan,
    plan_fee_distribution,
)
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import (
    DistributionLineDTO,
    DistributionResult,
    WarehouseFeeDTO,
)
from costing_kernel.domain.events import EventPublisher, WarehouseFeeDistributed
from costing_kernel.domain.values import YearMonth
from costing_kernel.exceptions import (
    NegativeFeeError,
    NoEligibleInventoryError,
    WarehouseFeeAlreadyDistributedError,
    WarehouseFeeAlreadyExistsError,
    WarehouseFeeImmutableError,
    WarehouseFeeNotFoundError,
)
from costing_kernel.logging_config import get_logger
from costing_kernel.models.lot import InventoryLotModel
from costing_kernel.models.warehouse_fee import (
    FeeStatus,
    WarehouseFeeDistributionModel,
    WarehouseFeeModel,
)

logger = get_logger("services.warehouse_fee")

_ZERO = Decimal("0")


class WarehouseFeeService:
    """
    Warehouse Fee Distributor.

    Contract:
        Receives Session, Clock and CostingConfig through the constructor.
        Flushes, never commits.  ``distributed_at`` comes from the clock.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: CostingConfig | None = None,
        publisher: EventPublisher | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._config = config or CostingConfig()
        self._publisher = publisher

    # =========================================================================
    # Fee administration
    # =========================================================================

    def register_fee(
        self,
        year_month: str | YearMonth,
        total_fee: Decimal,
        memo: str | None = None,
    ) -> WarehouseFeeDTO:
        key = str(YearMonth.parse(year_month))
        if total_fee < _ZERO:
            raise NegativeFeeError(total_fee)
        if self._get_fee(key) is not None:
            raise WarehouseFeeAlreadyExistsError(key)

        fee = WarehouseFeeModel(
            year_month=key,
            total_fee=total_fee,
            status=FeeStatus.PENDING,
            memo=memo,
        )
        # A concurrent registration for the same month trips the unique constraint
        savepoint = self.session.begin_nested()
        try:
            self.session.add(fee)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise WarehouseFeeAlreadyExistsError(key) from None

        logger.info(
            "warehouse_fee_registered",
            extra={"year_month": key, "total_fee": str(total_fee)},
        )
        return WarehouseFeeDTO.from_model(fee)

    def update_fee(
        self,
        year_month: str | YearMonth,
        total_fee: Decimal | None = None,
        memo: str | None = None,
    ) -> WarehouseFeeDTO:
        """Change a PENDING fee's amount and/or memo."""
        key = str(YearMonth.parse(year_month))
        fee = self._require_pending(key, "update")
        if total_fee is not None:
            if total_fee < _ZERO:
                raise NegativeFeeError(total_fee)
            fee.total_fee = total_fee
        if memo is not None:
            fee.memo = memo

        try:
            self.session.flush()
        except StaleDataError:
            raise WarehouseFeeImmutableError(key, "update") from None

        logger.info(
            "warehouse_fee_updated",
            extra={"year_month": key, "total_fee": str(fee.total_fee)},
        )
        return WarehouseFeeDTO.from_model(fee)

    def delete_fee(self, year_month: str | YearMonth) -> None:
        key = str(YearMonth.parse(year_month))
        fee = self._require_pending(key, "delete")
        self.session.delete(fee)
        try:
            self.session.flush()
        except StaleDataError:
            raise WarehouseFeeImmutableError(key, "delete") from None

        logger.info("warehouse_fee_deleted", extra={"year_month": key})

    def get_fee(self, year_month: str | YearMonth) -> WarehouseFeeDTO:
        """The fee with its distribution lines, largest fee first."""
        key = str(YearMonth.parse(year_month))
        fee = self.session.execute(
            select(WarehouseFeeModel)
            .where(WarehouseFeeModel.year_month == key)
            .options(selectinload(WarehouseFeeModel.distributions))
        ).scalar_one_or_none()
        if fee is None:
            raise WarehouseFeeNotFoundError(key)
        return WarehouseFeeDTO.from_model(fee, include_distributions=True)

    def list_fees(self) -> tuple[WarehouseFeeDTO, ...]:
        """All fees, most recent month first."""
        fees = self.session.scalars(
            select(WarehouseFeeModel).order_by(WarehouseFeeModel.year_month.desc())
        )
        return tuple(WarehouseFeeDTO.from_model(f) for f in fees)

    # =========================================================================
    # Distribution
    # =========================================================================

    def distribute(self, year_month: str | YearMonth) -> DistributionResult:
        """
        Apportion the month's fee across lots on hand, weighted by landed value.

        Steps:
            1. Lock the fee row; fail if missing or already distributed.
            2. Lock eligible lots (stock on hand, eligible location, and
               optionally received by month end), in FIFO order.
            3. Plan the split with the pure engine.
            4. Inside one SAVEPOINT write a line per lot, add each lot's
               share to its accumulated fee, and move the fee to
               DISTRIBUTED with its snapshot totals.
        """
        ym = YearMonth.parse(year_month)
        key = str(ym)

        fee = self._get_fee_for_update(key)
        if fee is None:
            raise WarehouseFeeNotFoundError(key)
        if fee.is_distributed:
            logger.warning(
                "warehouse_fee_distribution_rejected",
                extra={"year_month": key, "reason": "already_distributed"},
            )
            raise WarehouseFeeAlreadyDistributedError(key, _iso(fee.distributed_at))

        lots = self._lock_eligible_lots(ym)
        plan = plan_fee_distribution(
            year_month=key,
            total_fee=fee.total_fee,
            lots=[
                FeeBasisLot(
                    lot_id=lot.id,
                    quantity_remaining=lot.quantity_remaining,
                    unit_cost=lot.unit_cost,
                )
                for lot in lots
            ],
            fee_decimal_places=self._config.money_decimal_places,
            value_decimal_places=self._config.unit_cost_decimal_places,
            ratio_decimal_places=self._config.fee_distribution.ratio_decimal_places,
        )

        if not plan.has_basis and (
            self._config.fee_distribution.zero_basis_policy == ZeroBasisPolicy.REJECT
        ):
            logger.warning(
                "warehouse_fee_distribution_rejected",
                extra={"year_month": key, "reason": "no_value_basis", "lot_count": len(lots)},
            )
            raise NoEligibleInventoryError(key, len(lots))

        distributed_at = self._clock.now()
        self._apply_plan(fee, plan, lots, distributed_at)

        lines = tuple(
            DistributionLineDTO(
                lot_id=line.lot_id,
                quantity_at_time=line.quantity_at_time,
                value_at_time=line.value_at_time,
                value_ratio=line.value_ratio,
                distributed_fee=line.distributed_fee,
            )
            for line in plan.lines
        )
        result = DistributionResult(
            year_month=key,
            total_fee=plan.total_fee,
            total_value=plan.total_value,
            lot_count=plan.lot_count,
            distributed_at=distributed_at,
            lines=lines,
            rounding_adjustment=plan.rounding_adjustment,
        )

        logger.info(
            "warehouse_fee_distributed",
            extra={
                "year_month": key,
                "total_fee": str(plan.total_fee),
                "total_value": str(plan.total_value),
                "lot_count": plan.lot_count,
                "rounding_adjustment": str(plan.rounding_adjustment),
            },
        )
        if self._publisher is not None:
            self._publisher.publish(
                WarehouseFeeDistributed(
                    year_month=ym,
                    total_fee=plan.total_fee,
                    total_value=plan.total_value,
                    lot_count=plan.lot_count,
                    distributed_at=distributed_at,
                )
            )
        return result

    def _apply_plan(
        self,
        fee: WarehouseFeeModel,
        plan: FeeDistributionPlan,
        lots: list[InventoryLotModel],
        distributed_at: datetime,
    ) -> None:
        lots_by_id = {lot.id: lot for lot in lots}
        try:
            with self.session.begin_nested():
                for line in plan.lines:
                    self.session.add(
                        WarehouseFeeDistributionModel(
                            warehouse_fee_id=fee.id,
                            lot_id=line.lot_id,
                            quantity_at_time=line.quantity_at_time,
                            value_at_time=line.value_at_time,
                            value_ratio=line.value_ratio,
                            distributed_fee=line.distributed_fee,
                        )
                    )
                    lot = lots_by_id[line.lot_id]
                    # lots were read FOR UPDATE in _lock_eligible_lots
                    lot.accumulated_warehouse_fee = lot.accumulated_warehouse_fee + line.distributed_fee
                fee.mark_distributed(distributed_at, plan.total_value, plan.lot_count)
                self.session.flush()
        except (StaleDataError, IntegrityError):
            # Another transaction distributed this fee after we read it
            logger.warning(
                "warehouse_fee_distribution_rejected",
                extra={"year_month": plan.year_month, "reason": "concurrent_distribution"},
            )
            raise WarehouseFeeAlreadyDistributedError(plan.year_month) from None

    # =========================================================================
    # Internals
    # =========================================================================

    def _get_fee(self, key: str) -> WarehouseFeeModel | None:
        return self.session.execute(
            select(WarehouseFeeModel).where(WarehouseFeeModel.year_month == key)
        ).scalar_one_or_none()

    def _get_fee_for_update(self, key: str) -> WarehouseFeeModel | None:
        return self.session.execute(
            select(WarehouseFeeModel)
            .where(WarehouseFeeModel.year_month == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _require_pending(self, key: str, operation: str) -> WarehouseFeeModel:
        fee = self._get_fee_for_update(key)
        if fee is None:
            raise WarehouseFeeNotFoundError(key)
        if fee.is_distributed:
            logger.warning(
                "warehouse_fee_change_rejected",
                extra={"year_month": key, "operation": operation},
            )
            raise WarehouseFeeImmutableError(key, operation)
        return fee

    def _lock_eligible_lots(self, ym: YearMonth) -> list[InventoryLotModel]:
        settings = self._config.fee_distribution
        stmt = (
            select(InventoryLotModel)
            .where(
                InventoryLotModel.quantity_remaining > 0,
                InventoryLotModel.storage_location.in_(settings.eligible_locations),
            )
            .order_by(InventoryLotModel.received_date.asc(), InventoryLotModel.id.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if settings.require_receipt_by_month_end:
            stmt = stmt.where(InventoryLotModel.received_date <= ym.last_day)
        return list(self.session.scalars(stmt))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
