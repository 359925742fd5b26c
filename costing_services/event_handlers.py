"""
costing_services.event_handlers -- Inbound event wiring for the Lot Ledger.

The trade module raises ``LotReceived`` when a receipt is registered and
the sales module raises ``StockConsumed`` when goods ship.  This handler
turns both into Lot Ledger calls.  It runs in the publisher's transaction:
a failing handler propagates and the caller's unit of work rolls back.
"""

from __future__ import annotations

from costing_kernel.domain.dtos import ConsumptionResult, LotDTO
from costing_kernel.domain.events import EventPublisher, LotReceived, StockConsumed
from costing_kernel.logging_config import get_logger
from costing_services.lot_ledger import LotLedgerService

logger = get_logger("services.event_handlers")


class CostingEventHandler:
    def __init__(self, ledger: LotLedgerService):
        self._ledger = ledger

    def register(self, publisher: EventPublisher) -> None:
        publisher.subscribe(LotReceived, self.on_lot_received)
        publisher.subscribe(StockConsumed, self.on_stock_consumed)

    def on_lot_received(self, event: LotReceived) -> LotDTO:
        logger.debug(
            "lot_received_event",
            extra={
                "product_id": str(event.product_id),
                "source_transaction_id": event.source_transaction_id,
            },
        )
        return self._ledger.create_lot(
            product_id=event.product_id,
            received_date=event.received_date,
            quantity_received=event.quantity,
            goods_amount=event.goods_amount,
            duty_amount=event.duty_amount,
            domestic_freight=event.domestic_freight,
            other_cost=event.other_cost,
            storage_location=event.storage_location,
            lot_code=event.lot_code,
            source_transaction_id=event.source_transaction_id,
        )

    def on_stock_consumed(self, event: StockConsumed) -> ConsumptionResult:
        logger.debug(
            "stock_consumed_event",
            extra={"product_id": str(event.product_id), "reference": event.reference},
        )
        return self._ledger.consume_fifo(
            event.product_id,
            event.quantity,
            outbound_date=event.outbound_date,
            reference=event.reference,
        )
