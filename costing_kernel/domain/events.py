"""
Domain events crossing the costing boundary.

Inbound events (``LotReceived``, ``StockConsumed``) are raised by the
trade and sales modules and handled by the costing services.  Outbound
events are published by the costing services after a successful flush so
other modules can react without the services knowing about them.

``EventPublisher`` is a synchronous in-process dispatcher: handlers run
in the publisher's thread and transaction, and a handler exception
propagates to the publisher's caller.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from costing_kernel.domain.values import StorageLocation, YearMonth
from costing_kernel.logging_config import get_logger

logger = get_logger("domain.events")


# =============================================================================
# Inbound
# =============================================================================


@dataclass(frozen=True)
class LotReceived:
    """Stock arrived: an import/export or purchase registered a receipt."""

    product_id: UUID
    received_date: date
    quantity: Decimal
    goods_amount: Decimal
    duty_amount: Decimal = Decimal("0")
    domestic_freight: Decimal = Decimal("0")
    other_cost: Decimal = Decimal("0")
    storage_location: StorageLocation = StorageLocation.WAREHOUSE
    lot_code: str | None = None
    source_transaction_id: str | None = None


@dataclass(frozen=True)
class StockConsumed:
    """Stock left: a sale or outbound shipment drew down a product."""

    product_id: UUID
    quantity: Decimal
    outbound_date: date
    reference: str | None = None


# =============================================================================
# Outbound
# =============================================================================


@dataclass(frozen=True)
class LotCreated:
    lot_id: UUID
    product_id: UUID
    quantity: Decimal
    unit_cost: Decimal


@dataclass(frozen=True)
class StockConsumedFromLots:
    product_id: UUID
    quantity: Decimal
    total_cost: Decimal
    lot_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class WarehouseFeeDistributed:
    year_month: YearMonth
    total_fee: Decimal
    total_value: Decimal
    lot_count: int
    distributed_at: datetime


Handler = Callable[[Any], None]


@dataclass
class EventPublisher:
    """Maps event types to subscribed handlers, called in subscription order."""

    _handlers: dict[type, list[Handler]] = field(default_factory=dict)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def publish(self, event: object) -> None:
        handlers = self._handlers.get(type(event), ())
        logger.debug(
            "domain_event_published",
            extra={"event_type": type(event).__name__, "handler_count": len(handlers)},
        )
        for handler in handlers:
            handler(event)
