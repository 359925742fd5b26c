"""
Module: costing_kernel.db.base
Responsibility: Declarative base classes for the costing ORM models.  Provides
    the UUID primary key convention, the exact decimal column type, the type
    annotation map that pins column types, and the TrackedBase mixin for row
    timestamps.
Architecture position: Kernel > DB.  Lowest-level import target in the kernel;
    must not import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - UUID primary keys generated with uuid4.
    - Decimal maps to ExactDecimal(38, 9): NUMERIC(38, 9) on PostgreSQL, a
      fixed-width decimal string on SQLite.  Quantities and money never pass
      through a float on either backend.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as String(36) so SQLite and PostgreSQL share one schema."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class ExactDecimal(TypeDecorator):
    """
    Fixed-point decimal that round-trips exactly on every backend.

    PostgreSQL gets a native NUMERIC(precision, scale).  SQLite has no exact
    numeric storage (NUMERIC affinity converts to REAL), so there the value
    is stored as text zero-padded to ``precision - scale`` integer digits and
    exactly ``scale`` fraction digits, e.g. ``"00...0012.500000000"``.

    Padding makes text order equal numeric order for non-negative values,
    so ``col > 0``, ``col = :value`` and ``col_a <= col_b`` compare
    correctly in SQL.  Arithmetic in SQL (``col - :x``, ``SUM(col)``) is
    not exact on SQLite; do it in Python on loaded values.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 38, scale: int = 9):
        super().__init__(precision=precision, scale=scale, asdecimal=True)
        self.precision = precision
        self.scale = scale
        self._quantum = Decimal(1).scaleb(-scale)

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            # sign + integer digits + point
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(Numeric(self.precision, self.scale, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        quantized = Decimal(value).quantize(self._quantum, rounding=ROUND_HALF_UP)
        if dialect.name != "sqlite":
            return quantized
        return self._encode(quantized)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, Decimal):
            return value
        if isinstance(value, float):
            return Decimal(repr(value))
        return Decimal(value)

    def _encode(self, value: Decimal) -> str:
        sign = "-" if value < 0 else ""
        whole, _, fraction = format(abs(value), "f").partition(".")
        whole = whole.zfill(self.precision - self.scale)
        if self.scale:
            return f"{sign}{whole}.{fraction}"
        return f"{sign}{whole}"


class Base(DeclarativeBase):
    """
    Declarative base for all costing models.

    Guarantees:
        - id is a uuid4 UUID stored as String(36).
        - Decimal maps to ExactDecimal(38, 9).
        - datetime maps to DateTime(timezone=True).
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: ExactDecimal(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """Abstract base adding server-side created_at / updated_at timestamps."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


UUID = PyUUID
