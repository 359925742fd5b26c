"""
End-to-end tests for scripts/warehouse_costing.py.

The CLI runs against a file-backed SQLite database and really commits, so
each test gets its own database under tmp_path.
"""

import importlib.util
import json
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

from costing_kernel.db.engine import create_engine_from_url, reset_engine
from costing_kernel.models.product import ProductModel
from costing_services.lot_ledger import LotLedgerService

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "warehouse_costing.py"


def _load_cli():
    spec = importlib.util.spec_from_file_location("warehouse_costing_cli", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


cli = _load_cli()


@pytest.fixture
def database_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    yield url
    reset_engine()


@pytest.fixture
def run(database_url, capsys):
    """Run the CLI and return (exit_code, stdout_json, stderr_json)."""

    def _run(*args):
        code = cli.main(["--database-url", database_url, *args])
        out, err = capsys.readouterr()
        out_json = json.loads(out) if out.strip() else None
        err_json = None
        if err.strip().startswith("{"):
            err_json = json.loads(err)
        return code, out_json, err_json

    return _run


def _seed_lots(database_url, lots):
    """Commit a product and its lots through a separate engine."""
    engine = create_engine_from_url(database_url)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    try:
        with factory() as session:
            product = ProductModel(code="SKU-CLI", name="Linen Towel", unit="EA")
            session.add(product)
            session.flush()
            ledger = LotLedgerService(session)
            for quantity, goods in lots:
                ledger.create_lot(
                    product_id=product.id,
                    received_date=date(2024, 1, 10),
                    quantity_received=Decimal(quantity),
                    goods_amount=Decimal(goods),
                )
            session.commit()
            return product.id
    finally:
        engine.dispose()


class TestInitDb:
    def test_init_db_reports_ok(self, run):
        code, out, _ = run("init-db")

        assert code == 0
        assert out == {"status": "ok", "command": "init-db"}

    def test_missing_database_url_exits_2(self, monkeypatch, capsys):
        monkeypatch.delenv(cli.DATABASE_URL_ENV, raising=False)

        assert cli.main(["fees"]) == 2
        assert "no database URL" in capsys.readouterr().err


class TestFeeCommands:
    def test_register_then_list(self, run):
        run("init-db")

        code, fee, _ = run("register-fee", "2024-03", "500000", "--memo", "March rent")
        assert code == 0
        assert fee["year_month"] == "2024-03"
        assert fee["status"] == "PENDING"
        assert fee["memo"] == "March rent"

        code, fees, _ = run("fees")
        assert code == 0
        assert [f["year_month"] for f in fees] == ["2024-03"]

    def test_duplicate_month_is_reported_on_stderr(self, run):
        run("init-db")
        run("register-fee", "2024-03", "100")

        code, out, err = run("register-fee", "2024-03", "200")

        assert code == 1
        assert out is None
        assert err["error"] == "WAREHOUSE_FEE_ALREADY_EXISTS"

    def test_distribute_writes_lines_and_blocks_rerun(self, run, database_url):
        run("init-db")
        _seed_lots(database_url, [("10", "1000"), ("30", "3000")])
        run("register-fee", "2024-03", "500")

        code, result, _ = run("distribute", "2024-03")
        assert code == 0
        assert result["lot_count"] == 2
        assert Decimal(result["total_value"]) == Decimal("4000")
        assert Decimal(result["total_distributed"]) == Decimal("500")
        assert sorted(Decimal(line["distributed_fee"]) for line in result["lines"]) == [
            Decimal("125"),
            Decimal("375"),
        ]

        code, _, err = run("distribute", "2024-03")
        assert code == 1
        assert err["error"] == "WAREHOUSE_FEE_ALREADY_DISTRIBUTED"

    def test_distribute_without_stock_is_rejected(self, run):
        run("init-db")
        run("register-fee", "2024-04", "500")

        code, _, err = run("distribute", "2024-04")

        assert code == 1
        assert err["error"] == "NO_ELIGIBLE_INVENTORY"

        _, fees, _ = run("fees")
        assert fees[0]["status"] == "PENDING"


class TestSummaryCommand:
    def test_product_summary_includes_distributed_fee(self, run, database_url):
        run("init-db")
        product_id = _seed_lots(database_url, [("10", "1000")])
        run("register-fee", "2024-03", "100")
        run("distribute", "2024-03")

        code, summary, _ = run("summary", "--product-id", str(product_id))

        assert code == 0
        assert Decimal(summary["quantity"]) == Decimal("10")
        assert Decimal(summary["accumulated_warehouse_fee"]) == Decimal("100")
        assert Decimal(summary["current_value"]) == Decimal("1100")

    def test_overview_lists_products(self, run, database_url):
        run("init-db")
        _seed_lots(database_url, [("5", "50")])

        code, rows, _ = run("summary")

        assert code == 0
        assert len(rows) == 1
