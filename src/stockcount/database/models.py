"""SQLAlchemy database models."""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..variance import compute_variance, compute_variance_percent


class CountType(str, enum.Enum):
    CYCLE = "cycle"
    FULL = "full"
    SPOT = "spot"


class CountStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PENDING_APPROVAL = "pending_approval"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Location(Base):
    """Model for warehouse locations (buildings, sites)."""

    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    sublocations = relationship("Sublocation", back_populates="location", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Location(id={self.id}, name='{self.name}')>"


class Sublocation(Base):
    """Model for bins/shelves within a location."""

    __tablename__ = "sublocations"
    __table_args__ = (
        UniqueConstraint("location_id", "code", name="uq_sublocation_location_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    location_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    location = relationship("Location", back_populates="sublocations")

    def __repr__(self) -> str:
        return f"<Sublocation(id={self.id}, code='{self.code}')>"


class Product(Base):
    """Model for catalog products."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    sku: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    barcode: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    abc_class: Mapped[Optional[str]] = mapped_column(String(1), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, sku='{self.sku}')>"


class InventoryRecord(Base):
    """On-hand and reserved quantity of one product at one location/sublocation."""

    __tablename__ = "inventory"
    __table_args__ = (
        UniqueConstraint("product_id", "location_id", "sublocation_id", name="uq_inventory_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    location_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sublocation_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("sublocations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    qty_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    qty_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    if TYPE_CHECKING:
        product: Mapped["Product"]
    else:
        product = relationship("Product")

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord(product_id={self.product_id}, location_id={self.location_id}, "
            f"qty_on_hand={self.qty_on_hand})>"
        )


class InventoryTransaction(Base):
    """Audit row for every quantity change applied to the inventory."""

    __tablename__ = "inventory_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    location_id: Mapped[int] = mapped_column(Integer, ForeignKey("locations.id"), nullable=False, index=True)
    sublocation_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("sublocations.id"), nullable=True)
    transaction_type: Mapped[str] = mapped_column(String, nullable=False)
    qty_before: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_change: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    reference_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryTransaction(id={self.id}, type='{self.transaction_type}', "
            f"qty_change={self.qty_change})>"
        )


class CycleCount(Base):
    """Model for one counting exercise."""

    __tablename__ = "cycle_counts"
    __table_args__ = (
        CheckConstraint("location_id IS NOT NULL OR count_type = 'full'", name="ck_cycle_counts_location_scope"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    count_number: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    count_type: Mapped[str] = mapped_column(String(10), nullable=False)
    # NULL spans every location; only valid for full counts
    location_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("locations.id"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CountStatus.PENDING.value, index=True
    )
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    assigned_to: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    blind_count: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    if TYPE_CHECKING:
        items: Mapped[list["CycleCountItem"]]
        location: Mapped[Optional["Location"]]
    else:
        items = relationship(
            "CycleCountItem",
            back_populates="count",
            cascade="all, delete-orphan",
            order_by="CycleCountItem.id",
        )
        location = relationship("Location")

    def __repr__(self) -> str:
        return f"<CycleCount(id={self.id}, number='{self.count_number}', status='{self.status}')>"


class CycleCountItem(Base):
    """One product line within a cycle count.

    ``variance`` is derived from ``counted_qty`` and ``expected_qty`` on every
    access and in SQL expressions; it has no column of its own.
    """

    __tablename__ = "cycle_count_items"
    __table_args__ = (
        CheckConstraint("counted_qty IS NULL OR counted_qty >= 0", name="ck_cycle_count_items_counted_qty"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    count_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("cycle_counts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    location_id: Mapped[int] = mapped_column(Integer, ForeignKey("locations.id"), nullable=False)
    sublocation_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("sublocations.id", ondelete="SET NULL"), nullable=True
    )
    expected_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    counted_qty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    counted_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    counted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    adjustment_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    if TYPE_CHECKING:
        count: Mapped["CycleCount"]
        product: Mapped["Product"]
        sublocation: Mapped[Optional["Sublocation"]]
    else:
        count = relationship("CycleCount", back_populates="items")
        product = relationship("Product")
        sublocation = relationship("Sublocation")

    @hybrid_property
    def variance(self) -> Optional[int]:
        return compute_variance(self.expected_qty, self.counted_qty)

    @variance.inplace.expression
    @classmethod
    def _variance_expression(cls):
        return cls.counted_qty - cls.expected_qty

    @property
    def variance_percent(self) -> Optional[float]:
        return compute_variance_percent(self.expected_qty, self.counted_qty)

    @property
    def unit_cost(self) -> Decimal:
        return self.product.unit_cost if self.product is not None else Decimal("0")

    def __repr__(self) -> str:
        return (
            f"<CycleCountItem(id={self.id}, product_id={self.product_id}, "
            f"expected={self.expected_qty}, counted={self.counted_qty})>"
        )
