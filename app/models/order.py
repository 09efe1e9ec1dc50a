"""Sales order models: open outbound demand consumed by cross-dock detection."""
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Date, DateTime, ForeignKey, Float, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


class OrderPriority(str, Enum):
    """Sales order priority enumeration."""
    URGENT = "URGENT"
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


class SalesOrderStatus(str, Enum):
    """Sales order status enumeration."""
    DRAFT = "DRAFT"
    RELEASED = "RELEASED"        # Released to warehouse
    PICKING = "PICKING"          # Picking in progress
    SHIPPED = "SHIPPED"
    CANCELLED = "CANCELLED"


class SalesOrder(Base):
    """Sales order header."""
    __tablename__ = "sales_orders"

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
    order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[str] = mapped_column(
        String(20),
        default="NORMAL",
        nullable=False,
        comment="URGENT, HIGH, NORMAL, LOW"
    )
    status: Mapped[str] = mapped_column(String(20), default="DRAFT", nullable=False)
    requested_ship_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<SalesOrder(number='{self.order_number}', status='{self.status}')>"


class SalesOrderLine(Base):
    """Sales order line for a single material."""
    __tablename__ = "sales_order_lines"

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
    sales_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    material_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("materials.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    quantity_ordered: Mapped[float] = mapped_column(Float, nullable=False)
    quantity_allocated: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    @property
    def short_quantity(self) -> float:
        """Quantity still waiting on supply."""
        return max((self.quantity_ordered or 0.0) - (self.quantity_allocated or 0.0), 0.0)

    def __repr__(self) -> str:
        return f"<SalesOrderLine(line={self.line_number}, ordered={self.quantity_ordered})>"
