"""
Typed exception hierarchy for the costing kernel.

Every error carries a machine-readable ``code`` class attribute and keeps
its context as attributes, so callers catch by type and report by field
instead of parsing messages.

    CostingKernelError
    |
    +-- CostingValidationError
    |   +-- InvalidQuantityError
    |   +-- NegativeCostError
    |   +-- InvalidYearMonthError
    |   +-- NegativeFeeError
    |   +-- InvalidExchangeRateError
    |   +-- ProductNotFoundError
    |
    +-- ReceiptAlreadyRegisteredError
    |
    +-- LotError
    |   +-- LotNotFoundError
    |   +-- InsufficientQuantityError
    |   +-- LotHasDistributionsError
    |
    +-- WarehouseFeeError
        +-- WarehouseFeeNotFoundError
        +-- WarehouseFeeAlreadyExistsError
        +-- WarehouseFeeAlreadyDistributedError
        +-- WarehouseFeeImmutableError
        +-- InvalidFeeTransitionError
        +-- NoEligibleInventoryError

Handling:

    try:
        result = fee_service.distribute(YearMonth.parse("2024-03"))
    except WarehouseFeeAlreadyDistributedError as e:
        return {"error": e.code, "year_month": e.year_month}
    except NoEligibleInventoryError as e:
        alert_operator(e.year_month, e.lot_count)

None of these errors is retried inside the kernel. Retrying a fee
distribution is an operator action.
"""

from decimal import Decimal


class CostingKernelError(Exception):
    """Base exception for all costing kernel errors."""

    code: str = "COSTING_KERNEL_ERROR"


# =============================================================================
# Validation
# =============================================================================


class CostingValidationError(CostingKernelError):
    """Input rejected before anything was persisted."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(CostingValidationError):
    """A quantity that must be strictly positive was zero or negative."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, quantity: Decimal):
        self.field = field
        self.quantity = str(quantity)
        super().__init__(f"{field} must be greater than zero, got {quantity}")


class NegativeCostError(CostingValidationError):
    """A monetary cost component was negative."""

    code: str = "NEGATIVE_COST"

    def __init__(self, field: str, amount: Decimal):
        self.field = field
        self.amount = str(amount)
        super().__init__(f"{field} must not be negative, got {amount}")


class InvalidYearMonthError(CostingValidationError):
    """A year-month value did not parse as YYYY-MM."""

    code: str = "INVALID_YEAR_MONTH"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid year-month {value!r}, expected YYYY-MM")


class NegativeFeeError(CostingValidationError):
    code: str = "NEGATIVE_FEE"

    def __init__(self, total_fee: Decimal):
        self.total_fee = str(total_fee)
        super().__init__(f"Warehouse fee must not be negative, got {total_fee}")


class InvalidExchangeRateError(CostingValidationError):
    code: str = "INVALID_EXCHANGE_RATE"

    def __init__(self, exchange_rate: Decimal):
        self.exchange_rate = str(exchange_rate)
        super().__init__(f"Exchange rate must be greater than zero, got {exchange_rate}")


class ProductNotFoundError(CostingValidationError):
    """The referenced product does not exist in the catalog."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


# =============================================================================
# Lots
# =============================================================================


class LotError(CostingKernelError):
    code: str = "LOT_ERROR"


class LotNotFoundError(LotError):
    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: str):
        self.lot_id = lot_id
        super().__init__(f"Lot not found: {lot_id}")


class InsufficientQuantityError(LotError):
    """
    A consumption asked for more than is on hand.

    ``lot_id`` is set when a single lot was targeted, ``product_id`` when
    the request was a FIFO drawdown across a product's lots.
    """

    code: str = "INSUFFICIENT_QUANTITY"

    def __init__(
        self,
        requested: Decimal,
        available: Decimal,
        lot_id: str | None = None,
        product_id: str | None = None,
    ):
        self.requested = str(requested)
        self.available = str(available)
        self.lot_id = lot_id
        self.product_id = product_id
        target = f"lot {lot_id}" if lot_id else f"product {product_id}"
        super().__init__(
            f"Insufficient quantity for {target}: "
            f"requested {requested}, available {available}"
        )


class LotHasDistributionsError(LotError):
    """Deleting a lot that has already absorbed warehouse fee allocations."""

    code: str = "LOT_HAS_DISTRIBUTIONS"

    def __init__(self, lot_id: str, distribution_count: int):
        self.lot_id = lot_id
        self.distribution_count = distribution_count
        super().__init__(
            f"Lot {lot_id} has {distribution_count} warehouse fee "
            f"distribution(s) and cannot be deleted"
        )


# =============================================================================
# Warehouse fees
# =============================================================================


class WarehouseFeeError(CostingKernelError):
    code: str = "WAREHOUSE_FEE_ERROR"


class WarehouseFeeNotFoundError(WarehouseFeeError):
    code: str = "WAREHOUSE_FEE_NOT_FOUND"

    def __init__(self, year_month: str):
        self.year_month = year_month
        super().__init__(f"No warehouse fee registered for {year_month}")


class WarehouseFeeAlreadyExistsError(WarehouseFeeError):
    code: str = "WAREHOUSE_FEE_ALREADY_EXISTS"

    def __init__(self, year_month: str):
        self.year_month = year_month
        super().__init__(f"A warehouse fee for {year_month} is already registered")


class WarehouseFeeAlreadyDistributedError(WarehouseFeeError):
    """The month's fee has been distributed; distribution is one-way."""

    code: str = "WAREHOUSE_FEE_ALREADY_DISTRIBUTED"

    def __init__(self, year_month: str, distributed_at: str | None = None):
        self.year_month = year_month
        self.distributed_at = distributed_at
        super().__init__(f"Warehouse fee for {year_month} is already distributed")


class WarehouseFeeImmutableError(WarehouseFeeError):
    """Attempt to edit or delete a distributed fee."""

    code: str = "WAREHOUSE_FEE_IMMUTABLE"

    def __init__(self, year_month: str, operation: str):
        self.year_month = year_month
        self.operation = operation
        super().__init__(
            f"Cannot {operation} warehouse fee for {year_month}: already distributed"
        )


class InvalidFeeTransitionError(WarehouseFeeError):
    code: str = "INVALID_FEE_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Illegal fee status transition {from_status} -> {to_status}")


class NoEligibleInventoryError(WarehouseFeeError):
    """There is no inventory value to spread the fee over."""

    code: str = "NO_ELIGIBLE_INVENTORY"

    def __init__(self, year_month: str, lot_count: int):
        self.year_month = year_month
        self.lot_count = lot_count
        super().__init__(
            f"No inventory value to absorb the {year_month} warehouse fee "
            f"({lot_count} eligible lot(s), total value 0)"
        )


# =============================================================================
# Receipts
# =============================================================================


class ReceiptAlreadyRegisteredError(CostingKernelError):
    """
    The source transaction already produced lots with different lines.

    Re-registering identical lines is a no-op; changed lines require the
    earlier lots to be deleted first.
    """

    code: str = "RECEIPT_ALREADY_REGISTERED"

    def __init__(self, source_transaction_id: str, lot_count: int):
        self.source_transaction_id = source_transaction_id
        self.lot_count = lot_count
        super().__init__(
            f"Receipt {source_transaction_id} is already registered with "
            f"{lot_count} lot(s) and different lines"
        )
