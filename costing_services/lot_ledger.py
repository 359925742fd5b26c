"""
costing_services.lot_ledger -- Lot Ledger: receipts, drawdowns and lot upkeep.

Responsibility:
    Persist receipts as inventory lots with their landed unit cost, decrement
    remaining quantities on outbound (single lot or FIFO across a product),
    and handle lot deletion and relocation.  Every quantity change writes an
    inventory movement row.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Unit cost
    and FIFO planning come from costing_engines; persistence goes through
    costing_kernel.models.

Invariants enforced:
    - quantity_remaining never goes below zero.  The new value is computed
      in Python from the value read under FOR UPDATE, and the UPDATE is
      guarded on that value (``WHERE quantity_remaining = :read``), so two
      concurrent consumptions cannot overdraw a lot.
    - FIFO order is (received_date, id) ascending.
    - A lot with warehouse fee distributions is never deleted.
    - Each mutating call runs inside a SAVEPOINT; on error nothing it wrote
      survives in the caller's transaction.  The service flushes, the
      caller commits.

Failure modes:
    - InvalidQuantityError / NegativeCostError on bad receipt input.
    - ProductNotFoundError for an unknown product.
    - LotNotFoundError for an unknown lot id.
    - InsufficientQuantityError when stock on hand is short.
    - LotHasDistributionsError on deleting a lot with fee history.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from costing_config import CostingConfig
from costing_engines.fifo import FifoLot, plan_fifo_drawdown
from costing_engines.unit_cost import compute_unit_cost
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import ConsumptionDetail, ConsumptionResult, LotDTO
from costing_kernel.domain.events import EventPublisher, LotCreated, StockConsumedFromLots
from costing_kernel.domain.values import MovementType, StorageLocation, round_money
from costing_kernel.exceptions import (
    InsufficientQuantityError,
    InvalidQuantityError,
    LotHasDistributionsError,
    LotNotFoundError,
)
from costing_kernel.logging_config import get_logger
from costing_kernel.models.lot import InventoryLotModel
from costing_kernel.models.movement import InventoryMovementModel
from costing_kernel.models.warehouse_fee import WarehouseFeeDistributionModel
from costing_kernel.selectors.inventory_selector import InventorySelector, LotFilter
from costing_services.product_catalog import (
    ProductCatalog,
    SqlProductCatalog,
    require_product,
)

logger = get_logger("services.lot_ledger")

_ZERO = Decimal("0")


class LotLedgerService:
    """
    The Lot Ledger.

    Contract:
        Receives a Session, Clock and CostingConfig through the constructor.
        Flushes, never commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: CostingConfig | None = None,
        catalog: ProductCatalog | None = None,
        publisher: EventPublisher | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._config = config or CostingConfig()
        self._catalog = catalog or SqlProductCatalog(session)
        self._publisher = publisher
        self._selector = InventorySelector(session)

    # =========================================================================
    # Receipt
    # =========================================================================

    def create_lot(
        self,
        *,
        product_id: UUID,
        received_date: date,
        quantity_received: Decimal,
        goods_amount: Decimal,
        duty_amount: Decimal = _ZERO,
        domestic_freight: Decimal = _ZERO,
        other_cost: Decimal = _ZERO,
        storage_location: StorageLocation = StorageLocation.WAREHOUSE,
        lot_code: str | None = None,
        source_transaction_id: str | None = None,
        lot_id: UUID | None = None,
    ) -> LotDTO:
        """
        Register one receipt as a lot.

        unit_cost is computed once here and never changes afterwards.
        quantity_remaining starts equal to quantity_received and the
        accumulated warehouse fee at zero.  An IN movement is recorded.
        """
        # Validates quantity and costs before anything touches the session
        unit_cost = compute_unit_cost(
            goods_amount=goods_amount,
            duty_amount=duty_amount,
            domestic_freight=domestic_freight,
            other_cost=other_cost,
            quantity_received=quantity_received,
            decimal_places=self._config.unit_cost_decimal_places,
        )
        require_product(self._catalog, product_id)

        lot = InventoryLotModel(
            id=lot_id or uuid4(),
            product_id=product_id,
            lot_code=lot_code,
            received_date=received_date,
            quantity_received=quantity_received,
            quantity_remaining=quantity_received,
            goods_amount=goods_amount,
            duty_amount=duty_amount,
            domestic_freight=domestic_freight,
            other_cost=other_cost,
            unit_cost=unit_cost,
            accumulated_warehouse_fee=_ZERO,
            storage_location=StorageLocation(storage_location),
            source_transaction_id=source_transaction_id,
        )

        with self.session.begin_nested():
            self.session.add(lot)
            self.session.flush()
            self.session.add(
                InventoryMovementModel(
                    product_id=product_id,
                    lot_id=lot.id,
                    movement_type=MovementType.IN,
                    movement_date=received_date,
                    quantity=quantity_received,
                    unit_cost=unit_cost,
                    total_cost=goods_amount + duty_amount + domestic_freight + other_cost,
                    reference=source_transaction_id or lot_code,
                )
            )
            self.session.flush()

        logger.info(
            "lot_created",
            extra={
                "lot_id": str(lot.id),
                "product_id": str(product_id),
                "lot_code": lot_code,
                "received_date": received_date.isoformat(),
                "quantity_received": str(quantity_received),
                "unit_cost": str(unit_cost),
                "storage_location": lot.storage_location.value,
            },
        )
        self._publish(
            LotCreated(
                lot_id=lot.id,
                product_id=product_id,
                quantity=quantity_received,
                unit_cost=unit_cost,
            )
        )
        return LotDTO.from_model(lot)

    # =========================================================================
    # Consumption
    # =========================================================================

    def consume(
        self,
        lot_id: UUID,
        quantity: Decimal,
        movement_date: date | None = None,
        reference: str | None = None,
    ) -> ConsumptionResult:
        """
        Draw ``quantity`` from one specific lot.

        Raises InsufficientQuantityError, leaving the lot untouched, when
        the lot holds less than ``quantity``.
        """
        if quantity <= _ZERO:
            raise InvalidQuantityError("quantity", quantity)
        movement_date = movement_date or self._clock.now().date()

        lot = self._get_lot_for_update(lot_id)
        with self.session.begin_nested():
            self._decrement(lot, quantity)
            detail = self._record_outbound(lot, quantity, movement_date, reference)
            self.session.flush()

        logger.info(
            "lot_consumed",
            extra={
                "lot_id": str(lot.id),
                "product_id": str(lot.product_id),
                "quantity": str(quantity),
                "reference": reference,
            },
        )
        self._publish(
            StockConsumedFromLots(
                product_id=lot.product_id,
                quantity=quantity,
                total_cost=detail.total_cost,
                lot_ids=(lot.id,),
            )
        )
        return ConsumptionResult(
            product_id=lot.product_id,
            quantity=quantity,
            total_cost=detail.total_cost,
            details=(detail,),
            outbound_date=movement_date,
            reference=reference,
        )

    def consume_fifo(
        self,
        product_id: UUID,
        quantity: Decimal,
        outbound_date: date | None = None,
        reference: str | None = None,
    ) -> ConsumptionResult:
        """
        Draw ``quantity`` of a product from its oldest lots first.

        Availability across all lots is checked before any lot is touched;
        a shortfall raises InsufficientQuantityError and consumes nothing.
        """
        require_product(self._catalog, product_id)
        if quantity <= _ZERO:
            raise InvalidQuantityError("quantity", quantity)
        outbound_date = outbound_date or self._clock.now().date()

        lots = self.session.scalars(
            select(InventoryLotModel)
            .where(
                InventoryLotModel.product_id == product_id,
                InventoryLotModel.quantity_remaining > 0,
            )
            .order_by(InventoryLotModel.received_date.asc(), InventoryLotModel.id.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        ).all()

        try:
            plan = plan_fifo_drawdown(
                lots=[
                    FifoLot(
                        lot_id=lot.id,
                        received_date=lot.received_date,
                        quantity_remaining=lot.quantity_remaining,
                        unit_cost=lot.unit_cost,
                        lot_code=lot.lot_code,
                    )
                    for lot in lots
                ],
                quantity=quantity,
                cost_decimal_places=self._config.unit_cost_decimal_places,
                product_id=str(product_id),
            )
        except InsufficientQuantityError as exc:
            logger.warning(
                "fifo_consumption_rejected",
                extra={
                    "product_id": str(product_id),
                    "requested": exc.requested,
                    "available": exc.available,
                },
            )
            raise

        lots_by_id = {lot.id: lot for lot in lots}
        details: list[ConsumptionDetail] = []
        with self.session.begin_nested():
            for draw in plan.draws:
                lot = lots_by_id[draw.lot_id]
                self._decrement(lot, draw.quantity)
                details.append(self._record_outbound(lot, draw.quantity, outbound_date, reference))
            self.session.flush()

        result = ConsumptionResult(
            product_id=product_id,
            quantity=quantity,
            total_cost=sum((d.total_cost for d in details), _ZERO),
            details=tuple(details),
            outbound_date=outbound_date,
            reference=reference,
        )
        logger.info(
            "fifo_consumption_completed",
            extra={
                "product_id": str(product_id),
                "quantity": str(quantity),
                "lot_count": len(details),
                "total_cost": str(result.total_cost),
                "reference": reference,
            },
        )
        self._publish(
            StockConsumedFromLots(
                product_id=product_id,
                quantity=quantity,
                total_cost=result.total_cost,
                lot_ids=tuple(d.lot_id for d in details),
            )
        )
        return result

    # =========================================================================
    # Lot upkeep
    # =========================================================================

    def delete_lot(self, lot_id: UUID) -> None:
        """
        Delete a lot and its movement history.

        Raises LotHasDistributionsError when the lot has absorbed any
        warehouse fee; its distribution lines would otherwise stop adding up.
        """
        lot = self._get_lot_for_update(lot_id)
        distribution_count = self.session.scalar(
            select(func.count())
            .select_from(WarehouseFeeDistributionModel)
            .where(WarehouseFeeDistributionModel.lot_id == lot.id)
        )
        if distribution_count:
            logger.warning(
                "lot_delete_rejected",
                extra={"lot_id": str(lot_id), "distribution_count": distribution_count},
            )
            raise LotHasDistributionsError(str(lot_id), distribution_count)

        with self.session.begin_nested():
            self.session.execute(
                delete(InventoryMovementModel).where(InventoryMovementModel.lot_id == lot.id)
            )
            self.session.delete(lot)
            self.session.flush()

        logger.info("lot_deleted", extra={"lot_id": str(lot_id)})

    def change_storage_location(
        self,
        lot_id: UUID,
        new_location: StorageLocation,
    ) -> LotDTO:
        lot = self._get_lot_for_update(lot_id)
        previous = lot.storage_location
        lot.storage_location = StorageLocation(new_location)
        self.session.flush()

        logger.info(
            "lot_storage_location_changed",
            extra={
                "lot_id": str(lot_id),
                "from_location": StorageLocation(previous).value,
                "to_location": lot.storage_location.value,
            },
        )
        return LotDTO.from_model(lot)

    def change_storage_location_for_source(
        self,
        source_transaction_id: str,
        new_location: StorageLocation,
    ) -> int:
        """Relocate every lot a source transaction produced. Returns the lot count."""
        lots = self.session.scalars(
            select(InventoryLotModel)
            .where(InventoryLotModel.source_transaction_id == source_transaction_id)
            .with_for_update()
        ).all()
        for lot in lots:
            lot.storage_location = StorageLocation(new_location)
        self.session.flush()

        logger.info(
            "source_storage_location_changed",
            extra={
                "source_transaction_id": source_transaction_id,
                "to_location": StorageLocation(new_location).value,
                "lot_count": len(lots),
            },
        )
        return len(lots)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_lot(self, lot_id: UUID) -> LotDTO:
        lot = self.session.get(InventoryLotModel, lot_id)
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        return LotDTO.from_model(lot)

    def list_lots(self, filters: LotFilter | None = None) -> tuple[LotDTO, ...]:
        """Lots matching ``filters``, oldest received first (ties by id)."""
        return self._selector.list_lots(filters)

    # =========================================================================
    # Internals
    # =========================================================================

    def _get_lot_for_update(self, lot_id: UUID) -> InventoryLotModel:
        lot = self.session.execute(
            select(InventoryLotModel)
            .where(InventoryLotModel.id == lot_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        return lot

    def _decrement(self, lot: InventoryLotModel, quantity: Decimal) -> None:
        """
        Take ``quantity`` off the lot, or raise InsufficientQuantityError.

        The new remaining quantity is computed here from the value last
        read, and the UPDATE only matches while the row still holds that
        value.  A miss re-reads the row and tries again; quantity_remaining
        only ever decreases, so the loop ends.
        """
        current = lot.quantity_remaining
        while current >= quantity:
            result = self.session.execute(
                update(InventoryLotModel)
                .where(
                    InventoryLotModel.id == lot.id,
                    InventoryLotModel.quantity_remaining == current,
                )
                .values(quantity_remaining=current - quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self.session.expire(lot, ["quantity_remaining"])
                return
            current = self.session.scalar(
                select(InventoryLotModel.quantity_remaining).where(InventoryLotModel.id == lot.id)
            )
            if current is None:
                raise LotNotFoundError(str(lot.id))

        self.session.expire(lot, ["quantity_remaining"])
        logger.warning(
            "lot_consumption_rejected",
            extra={
                "lot_id": str(lot.id),
                "requested": str(quantity),
                "available": str(current),
            },
        )
        raise InsufficientQuantityError(quantity, current, lot_id=str(lot.id))

    def _record_outbound(
        self,
        lot: InventoryLotModel,
        quantity: Decimal,
        movement_date: date,
        reference: str | None,
    ) -> ConsumptionDetail:
        total_cost = round_money(quantity * lot.unit_cost, self._config.unit_cost_decimal_places)
        self.session.add(
            InventoryMovementModel(
                product_id=lot.product_id,
                lot_id=lot.id,
                movement_type=MovementType.OUT,
                movement_date=movement_date,
                quantity=quantity,
                unit_cost=lot.unit_cost,
                total_cost=total_cost,
                reference=reference,
            )
        )
        return ConsumptionDetail(
            lot_id=lot.id,
            lot_code=lot.lot_code,
            received_date=lot.received_date,
            quantity=quantity,
            unit_cost=lot.unit_cost,
            total_cost=total_cost,
        )

    def _publish(self, event: object) -> None:
        if self._publisher is not None:
            self._publisher.publish(event)
