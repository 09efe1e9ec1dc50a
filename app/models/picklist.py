"""Picklist models: active picking work used to measure aisle congestion."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Float
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


class PickListStatus(str, Enum):
    """Pick list status enumeration."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PickList(Base):
    """Pick list header assigned to a picker."""
    __tablename__ = "pick_lists"

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
    facility_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    pick_list_number: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default="PENDING",
        nullable=False,
        comment="PENDING, IN_PROGRESS, COMPLETED, CANCELLED"
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<PickList(number='{self.pick_list_number}', status='{self.status}')>"


class PickListLine(Base):
    """Pick list line pointing at the location being picked."""
    __tablename__ = "pick_list_lines"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    pick_list_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("pick_lists.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    location_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("inventory_locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    material_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    quantity: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    def __repr__(self) -> str:
        return f"<PickListLine(pick_list_id='{self.pick_list_id}', qty={self.quantity})>"
