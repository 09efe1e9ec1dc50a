"""WMS (Warehouse Management System) models for storage locations used by putaway."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Float
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


class LocationType(str, Enum):
    """Storage location type enumeration."""
    PICK_FACE = "PICK_FACE"      # Forward pick location
    RESERVE = "RESERVE"          # Reserve storage above/behind pick faces
    BULK = "BULK"                # Floor/bulk storage
    STAGING = "STAGING"          # Dock staging for cross-dock flow


class SecurityZone(str, Enum):
    """Security zone enumeration."""
    STANDARD = "STANDARD"        # No restriction
    RESTRICTED = "RESTRICTED"    # Controlled access
    SECURE = "SECURE"            # High value cage
    VAULT = "VAULT"              # Vault storage


class ABCClass(str, Enum):
    """ABC velocity classification."""
    A = "A"    # Fast movers
    B = "B"    # Medium movers
    C = "C"    # Slow movers


class InventoryLocation(Base):
    """
    Storage location (bin) model.
    Physical slot with finite cubic and weight capacity.
    """
    __tablename__ = "inventory_locations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "facility_id", "location_code", name="uq_location_code"),
        Index("ix_locations_facility_aisle", "facility_id", "aisle_code"),
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
        comment="Owning facility (warehouse)"
    )

    # Location identification
    location_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Location code e.g., A-01-02-03"
    )
    location_type: Mapped[str] = mapped_column(
        String(20),
        default="RESERVE",
        nullable=False,
        comment="PICK_FACE, RESERVE, BULK, STAGING"
    )
    zone_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    aisle_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Capacity
    cubic_feet: Mapped[float] = mapped_column(
        Float,
        default=0.0,
        nullable=False,
        comment="Total cubic capacity"
    )
    used_cubic_feet: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    max_weight_lbs: Mapped[float] = mapped_column(
        Float,
        default=0.0,
        nullable=False,
        comment="Total weight capacity"
    )
    current_weight_lbs: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # Dimensions (in inches) - optional, checked only when all three are set
    length_inches: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    width_inches: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    height_inches: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Slotting attributes
    abc_classification: Mapped[Optional[str]] = mapped_column(
        String(1),
        nullable=True,
        comment="A, B, C velocity class this slot is intended for"
    )
    pick_sequence: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Walk order in pick path, lower is closer"
    )
    security_zone: Mapped[str] = mapped_column(String(20), default="STANDARD", nullable=False)
    temperature_controlled: Mapped[bool] = mapped_column(Boolean, default=False)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_available: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        comment="Open for putaway"
    )

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
    def available_cubic_feet(self) -> float:
        """Remaining cubic capacity."""
        return max((self.cubic_feet or 0.0) - (self.used_cubic_feet or 0.0), 0.0)

    @property
    def available_weight_lbs(self) -> float:
        """Remaining weight capacity."""
        return max((self.max_weight_lbs or 0.0) - (self.current_weight_lbs or 0.0), 0.0)

    @property
    def utilization_percent(self) -> float:
        """Calculate cubic utilization percentage."""
        if self.cubic_feet and self.cubic_feet > 0:
            return ((self.used_cubic_feet or 0.0) / self.cubic_feet) * 100
        return 0.0

    def __repr__(self) -> str:
        return f"<InventoryLocation(code='{self.location_code}', type='{self.location_type}')>"
