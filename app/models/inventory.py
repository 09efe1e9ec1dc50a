"""Inventory models: materials, lots and inventory transactions."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Float, Text
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


CUBIC_INCHES_PER_CUBIC_FOOT = 1728.0


class TransactionType(str, Enum):
    """Inventory transaction type enumeration."""
    RECEIPT = "RECEIPT"          # Inbound receipt
    PUTAWAY = "PUTAWAY"          # Move from dock to storage
    ISSUE = "ISSUE"              # Issue against a sales order (pick)
    TRANSFER = "TRANSFER"        # Location to location
    ADJUSTMENT = "ADJUSTMENT"    # Cycle count / manual adjustment


class Material(Base):
    """
    Material (SKU) master.
    Unit dimensions and handling requirements used for slotting.
    """
    __tablename__ = "materials"
    __table_args__ = (
        UniqueConstraint("tenant_id", "material_code", name="uq_material_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        nullable=False,
        index=True,
        comment="Facility that stocks this material"
    )

    material_code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Unit dimensions (in inches)
    length_inches: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    width_inches: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    height_inches: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weight_lbs_per_unit: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    cubic_feet: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Unit cubic feet override; derived from dimensions when null"
    )

    # Slotting requirements
    abc_classification: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)
    temperature_controlled: Mapped[bool] = mapped_column(Boolean, default=False)
    security_zone: Mapped[str] = mapped_column(String(20), default="STANDARD", nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def unit_cubic_feet(self) -> Optional[float]:
        """Per-unit cubic feet from the override or the dimensions."""
        if self.cubic_feet:
            return self.cubic_feet
        if self.length_inches and self.width_inches and self.height_inches:
            return (self.length_inches * self.width_inches * self.height_inches) / CUBIC_INCHES_PER_CUBIC_FOOT
        return None

    def __repr__(self) -> str:
        return f"<Material(code='{self.material_code}')>"


class Lot(Base):
    """
    Lot stored in a location.
    Quantity on hand of one material in one bin.
    """
    __tablename__ = "lots"
    __table_args__ = (
        Index("ix_lots_location_material", "location_id", "material_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    lot_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    material_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("materials.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("inventory_locations.id", ondelete="SET NULL"),
        nullable=True
    )
    quantity_on_hand: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    quality_status: Mapped[str] = mapped_column(
        String(20),
        default="RELEASED",
        nullable=False,
        comment="RELEASED, QUARANTINE, HOLD, REJECTED"
    )

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Lot(lot_number='{self.lot_number}', qty={self.quantity_on_hand})>"


class InventoryTransaction(Base):
    """
    Inventory transaction ledger.
    ISSUE rows linked to a sales order are the co-pick source for SKU affinity.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        Index("ix_inv_txn_type_date", "transaction_type", "transaction_date"),
        Index("ix_inv_txn_sales_order", "sales_order_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    transaction_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="RECEIPT, PUTAWAY, ISSUE, TRANSFER, ADJUSTMENT"
    )
    material_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("materials.id", ondelete="CASCADE"),
        nullable=False
    )
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    sales_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<InventoryTransaction(type='{self.transaction_type}', qty={self.quantity})>"
