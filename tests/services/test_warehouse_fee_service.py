"""
Tests for the Warehouse Fee service.

Covers:
- Fee registration, update and deletion while PENDING
- Value-weighted distribution with exact conservation
- PENDING -> DISTRIBUTED at most once
- Eligibility rules from configuration
- Zero value basis policies
- All-or-nothing distribution writes
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from costing_config import CostingConfig, FeeDistributionConfig, ZeroBasisPolicy
from costing_kernel.domain.events import WarehouseFeeDistributed
from costing_kernel.domain.values import StorageLocation, YearMonth
from costing_kernel.exceptions import (
    InvalidYearMonthError,
    NegativeFeeError,
    NoEligibleInventoryError,
    WarehouseFeeAlreadyDistributedError,
    WarehouseFeeAlreadyExistsError,
    WarehouseFeeImmutableError,
    WarehouseFeeNotFoundError,
)
from costing_kernel.models.warehouse_fee import (
    WarehouseFeeDistributionModel,
    WarehouseFeeModel,
)
from costing_services.warehouse_fee_service import WarehouseFeeService


def _distribution_count(session) -> int:
    return session.scalar(select(func.count()).select_from(WarehouseFeeDistributionModel))


def _service(session, clock, **fee_settings) -> WarehouseFeeService:
    config = CostingConfig(fee_distribution=FeeDistributionConfig(**fee_settings))
    return WarehouseFeeService(session, clock=clock, config=config)


class TestFeeAdministration:
    def test_register_fee(self, fee_service):
        fee = fee_service.register_fee("2024-03", Decimal("500000"), memo="March rent")
        assert fee.year_month == "2024-03"
        assert fee.total_fee == Decimal("500000")
        assert fee.status == "PENDING"
        assert not fee.is_distributed
        assert fee.memo == "March rent"

    def test_register_accepts_year_month(self, fee_service):
        fee = fee_service.register_fee(YearMonth(2024, 4), Decimal("1"))
        assert fee.year_month == "2024-04"

    def test_duplicate_month_rejected(self, fee_service):
        fee_service.register_fee("2024-03", Decimal("500000"))
        with pytest.raises(WarehouseFeeAlreadyExistsError) as exc_info:
            fee_service.register_fee("2024-03", Decimal("1"))
        assert exc_info.value.year_month == "2024-03"

    def test_negative_fee_rejected(self, fee_service):
        with pytest.raises(NegativeFeeError):
            fee_service.register_fee("2024-03", Decimal("-1"))

    @pytest.mark.parametrize("bad", ["2024-13", "2024-3", "24-03", "March"])
    def test_malformed_month_rejected(self, fee_service, bad):
        with pytest.raises(InvalidYearMonthError):
            fee_service.register_fee(bad, Decimal("1"))

    def test_update_pending_fee(self, fee_service):
        fee_service.register_fee("2024-03", Decimal("500000"))
        updated = fee_service.update_fee("2024-03", total_fee=Decimal("450000"), memo="revised")
        assert updated.total_fee == Decimal("450000")
        assert updated.memo == "revised"
        assert fee_service.get_fee("2024-03").total_fee == Decimal("450000")

    def test_update_rejects_negative(self, fee_service):
        fee_service.register_fee("2024-03", Decimal("500000"))
        with pytest.raises(NegativeFeeError):
            fee_service.update_fee("2024-03", total_fee=Decimal("-5"))

    def test_delete_pending_fee(self, fee_service):
        fee_service.register_fee("2024-03", Decimal("500000"))
        fee_service.delete_fee("2024-03")
        with pytest.raises(WarehouseFeeNotFoundError):
            fee_service.get_fee("2024-03")

    def test_missing_fee(self, fee_service):
        with pytest.raises(WarehouseFeeNotFoundError):
            fee_service.get_fee("2024-03")
        with pytest.raises(WarehouseFeeNotFoundError):
            fee_service.update_fee("2024-03", memo="x")
        with pytest.raises(WarehouseFeeNotFoundError):
            fee_service.delete_fee("2024-03")

    def test_list_fees_newest_first(self, fee_service):
        for month in ("2024-01", "2024-03", "2024-02"):
            fee_service.register_fee(month, Decimal("1000"))
        assert [f.year_month for f in fee_service.list_fees()] == ["2024-03", "2024-02", "2024-01"]


class TestDistribute:
    def test_value_weighted_distribution(self, fee_service, ledger, product, make_lot):
        """500,000 over lots worth 300,000 and 700,000 splits 150,000 / 350,000."""
        lot_a = make_lot(product.id, "30", "10000", received_date=date(2024, 1, 5))
        lot_b = make_lot(product.id, "70", "10000", received_date=date(2024, 2, 5))
        fee_service.register_fee("2024-03", Decimal("500000"))

        result = fee_service.distribute("2024-03")

        assert result.total_value == Decimal("1000000")
        assert result.lot_count == 2
        assert result.total_distributed == Decimal("500000")
        fees = {line.lot_id: line.distributed_fee for line in result.lines}
        assert fees == {lot_a.id: Decimal("150000"), lot_b.id: Decimal("350000")}

        assert ledger.get_lot(lot_a.id).accumulated_warehouse_fee == Decimal("150000")
        assert ledger.get_lot(lot_b.id).accumulated_warehouse_fee == Decimal("350000")

    def test_fee_marked_distributed_with_snapshot(
        self, fee_service, deterministic_clock, product, make_lot
    ):
        make_lot(product.id, "30", "10000")
        make_lot(product.id, "70", "10000")
        fee_service.register_fee("2024-03", Decimal("500000"))

        result = fee_service.distribute("2024-03")
        fee = fee_service.get_fee("2024-03")

        assert result.distributed_at == deterministic_clock.now()
        assert fee.is_distributed
        assert fee.distributed_at is not None
        assert fee.total_value_at_distribution == Decimal("1000000")
        assert fee.lot_count_at_distribution == 2
        # Largest fee first
        assert [line.distributed_fee for line in fee.distributions] == [
            Decimal("350000"),
            Decimal("150000"),
        ]

    def test_distribution_lines_record_basis(self, fee_service, product, make_lot):
        lot = make_lot(product.id, "30", "10000")
        make_lot(product.id, "70", "10000")
        fee_service.register_fee("2024-03", Decimal("500000"))
        fee_service.distribute("2024-03")

        line = next(d for d in fee_service.get_fee("2024-03").distributions if d.lot_id == lot.id)
        assert line.quantity_at_time == Decimal("30")
        assert line.value_at_time == Decimal("300000")
        assert line.value_ratio == Decimal("30")

    def test_conservation_with_rounding(self, fee_service, make_product, make_lot):
        product = make_product()
        lots = [make_lot(product.id, "1", "100") for _ in range(3)]
        fee_service.register_fee("2024-03", Decimal("100000"))

        result = fee_service.distribute("2024-03")

        assert result.total_distributed == Decimal("100000")
        assert sorted(line.distributed_fee for line in result.lines) == [
            Decimal("33333"),
            Decimal("33333"),
            Decimal("33334"),
        ]
        assert {line.lot_id for line in result.lines} == {lot.id for lot in lots}

    def test_basis_excludes_absorbed_fees(self, fee_service, product, make_lot):
        make_lot(product.id, "10", "100")
        fee_service.register_fee("2024-01", Decimal("1000"))
        fee_service.distribute("2024-01")
        fee_service.register_fee("2024-02", Decimal("500"))

        result = fee_service.distribute("2024-02")

        assert result.total_value == Decimal("1000")
        assert result.lines[0].value_at_time == Decimal("1000")

    def test_fees_accumulate_across_months(self, fee_service, ledger, product, make_lot):
        lot = make_lot(product.id, "10", "100")
        fee_service.register_fee("2024-01", Decimal("1000"))
        fee_service.distribute("2024-01")
        fee_service.register_fee("2024-02", Decimal("500"))
        fee_service.distribute("2024-02")
        assert ledger.get_lot(lot.id).accumulated_warehouse_fee == Decimal("1500")

    def test_empty_lots_excluded(self, fee_service, ledger, product, make_lot):
        sold = make_lot(product.id, "10", "100", received_date=date(2024, 1, 1))
        kept = make_lot(product.id, "10", "100", received_date=date(2024, 2, 1))
        ledger.consume_fifo(product.id, Decimal("10"))
        fee_service.register_fee("2024-03", Decimal("9000"))

        result = fee_service.distribute("2024-03")

        assert [line.lot_id for line in result.lines] == [kept.id]
        assert ledger.get_lot(sold.id).accumulated_warehouse_fee == Decimal("0")

    def test_publishes_event(self, fee_service, publisher, product, make_lot):
        events = []
        publisher.subscribe(WarehouseFeeDistributed, events.append)
        make_lot(product.id, "10", "100")
        fee_service.register_fee("2024-03", Decimal("1000"))
        fee_service.distribute("2024-03")

        assert len(events) == 1
        assert events[0].year_month == YearMonth(2024, 3)
        assert events[0].lot_count == 1

    def test_logs_distribution(self, fee_service, captured_logs, product, make_lot):
        make_lot(product.id, "10", "100")
        fee_service.register_fee("2024-03", Decimal("1000"))
        fee_service.distribute("2024-03")
        records = [r for r in captured_logs() if r["message"] == "warehouse_fee_distributed"]
        assert len(records) == 1
        assert records[0]["year_month"] == "2024-03"
        assert records[0]["lot_count"] == 1

    def test_missing_fee(self, fee_service):
        with pytest.raises(WarehouseFeeNotFoundError):
            fee_service.distribute("2024-03")


class TestDistributeOnce:
    def test_second_distribution_rejected(self, fee_service, ledger, product, make_lot):
        lot = make_lot(product.id, "10", "100")
        fee_service.register_fee("2024-03", Decimal("1000"))
        fee_service.distribute("2024-03")

        with pytest.raises(WarehouseFeeAlreadyDistributedError) as exc_info:
            fee_service.distribute("2024-03")

        assert exc_info.value.year_month == "2024-03"
        assert exc_info.value.distributed_at is not None
        assert ledger.get_lot(lot.id).accumulated_warehouse_fee == Decimal("1000")
        assert len(fee_service.get_fee("2024-03").distributions) == 1

    def test_distributed_fee_cannot_be_updated(self, fee_service, product, make_lot):
        make_lot(product.id, "10", "100")
        fee_service.register_fee("2024-03", Decimal("1000"))
        fee_service.distribute("2024-03")

        with pytest.raises(WarehouseFeeImmutableError) as exc_info:
            fee_service.update_fee("2024-03", total_fee=Decimal("2000"))
        assert exc_info.value.operation == "update"
        assert fee_service.get_fee("2024-03").total_fee == Decimal("1000")

    def test_distributed_fee_cannot_be_deleted(self, fee_service, product, make_lot):
        make_lot(product.id, "10", "100")
        fee_service.register_fee("2024-03", Decimal("1000"))
        fee_service.distribute("2024-03")

        with pytest.raises(WarehouseFeeImmutableError) as exc_info:
            fee_service.delete_fee("2024-03")
        assert exc_info.value.operation == "delete"


class TestEligibility:
    def test_all_locations_eligible_by_default(self, fee_service, product, make_lot):
        make_lot(product.id, "10", "100", storage_location=StorageLocation.WAREHOUSE)
        make_lot(product.id, "10", "100", storage_location=StorageLocation.OFFICE)
        fee_service.register_fee("2024-03", Decimal("1000"))
        assert fee_service.distribute("2024-03").lot_count == 2

    def test_restricted_locations(self, session, deterministic_clock, product, make_lot):
        service = _service(
            session,
            deterministic_clock,
            eligible_locations=(StorageLocation.WAREHOUSE,),
        )
        in_warehouse = make_lot(product.id, "10", "100", storage_location=StorageLocation.WAREHOUSE)
        make_lot(product.id, "10", "100", storage_location=StorageLocation.OFFICE)
        service.register_fee("2024-03", Decimal("1000"))

        result = service.distribute("2024-03")

        assert [line.lot_id for line in result.lines] == [in_warehouse.id]
        assert result.lines[0].distributed_fee == Decimal("1000")

    def test_receipt_by_month_end(self, session, deterministic_clock, product, make_lot):
        service = _service(session, deterministic_clock, require_receipt_by_month_end=True)
        on_time = make_lot(product.id, "10", "100", received_date=date(2024, 3, 31))
        make_lot(product.id, "10", "100", received_date=date(2024, 4, 1))
        service.register_fee("2024-03", Decimal("1000"))

        result = service.distribute("2024-03")

        assert [line.lot_id for line in result.lines] == [on_time.id]


class TestZeroBasis:
    def test_rejected_by_default(self, fee_service, session):
        fee_service.register_fee("2024-03", Decimal("1000"))

        with pytest.raises(NoEligibleInventoryError) as exc_info:
            fee_service.distribute("2024-03")

        assert exc_info.value.lot_count == 0
        assert not fee_service.get_fee("2024-03").is_distributed
        assert _distribution_count(session) == 0

    def test_worthless_stock_rejected(self, fee_service, product, make_lot):
        make_lot(product.id, "10", "0")
        fee_service.register_fee("2024-03", Decimal("1000"))
        with pytest.raises(NoEligibleInventoryError) as exc_info:
            fee_service.distribute("2024-03")
        assert exc_info.value.lot_count == 1

    def test_mark_distributed_policy(self, session, deterministic_clock):
        service = _service(
            session,
            deterministic_clock,
            zero_basis_policy=ZeroBasisPolicy.MARK_DISTRIBUTED,
        )
        service.register_fee("2024-03", Decimal("1000"))

        result = service.distribute("2024-03")

        assert result.lines == ()
        assert result.lot_count == 0
        fee = service.get_fee("2024-03")
        assert fee.is_distributed
        assert fee.lot_count_at_distribution == 0


class TestAtomicity:
    def test_failure_mid_distribution_writes_nothing(
        self, fee_service, ledger, session, monkeypatch, product, make_lot
    ):
        lot = make_lot(product.id, "10", "100")
        fee_service.register_fee("2024-03", Decimal("1000"))

        def _boom(self, *args, **kwargs):
            raise RuntimeError("transition failed")

        monkeypatch.setattr(WarehouseFeeModel, "mark_distributed", _boom)
        with pytest.raises(RuntimeError):
            fee_service.distribute("2024-03")
        monkeypatch.undo()

        assert _distribution_count(session) == 0
        assert ledger.get_lot(lot.id).accumulated_warehouse_fee == Decimal("0")
        assert not fee_service.get_fee("2024-03").is_distributed

        # The month can still be distributed afterwards
        assert fee_service.distribute("2024-03").total_distributed == Decimal("1000")


class TestConfigDefaults:
    def test_money_places_drive_fee_rounding(self, session, deterministic_clock, make_product, make_lot):
        config = replace(CostingConfig(), base_currency="USD", money_decimal_places=2)
        service = WarehouseFeeService(session, clock=deterministic_clock, config=config)
        product = make_product()
        for _ in range(3):
            make_lot(product.id, "1", "1")
        service.register_fee("2024-03", Decimal("10.00"))

        result = service.distribute("2024-03")

        assert sorted(line.distributed_fee for line in result.lines) == [
            Decimal("3.33"),
            Decimal("3.33"),
            Decimal("3.34"),
        ]
