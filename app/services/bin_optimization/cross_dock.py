"""
Cross-Dock Detector

Checks whether a received lot has open outbound demand shipping soon
enough to skip storage and go straight to a dock staging location.

Urgency (only when the received quantity covers the open demand):
- CRITICAL: ships on or before the receipt date
- HIGH: ships in 1 day, or URGENT priority shipping within 2 days
- MEDIUM: ships in 2 days
- NONE: anything else
"""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, and_, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.order import SalesOrder, SalesOrderLine, SalesOrderStatus, OrderPriority
from app.schemas.bin_optimization import (
    BinCapacity,
    CapacityValidation,
    CrossDockOpportunity,
    CrossDockUrgency,
    ItemDimensions,
)
from app.services.bin_optimization.capacity import validate_capacity
from app.services.bin_optimization.query_timeout import execute_with_timeout

logger = logging.getLogger(__name__)

CROSS_DOCK_WINDOW_DAYS = 2
OPEN_ORDER_STATUSES = (SalesOrderStatus.RELEASED.value, SalesOrderStatus.PICKING.value)

_priority_rank = case(
    (SalesOrder.priority == OrderPriority.URGENT.value, 1),
    (SalesOrder.priority == OrderPriority.HIGH.value, 2),
    (SalesOrder.priority == OrderPriority.NORMAL.value, 3),
    else_=4,
)


def classify_urgency(days_until_ship: int, priority: Optional[str]) -> CrossDockUrgency:
    """Urgency for demand shipping in days_until_ship days."""
    if days_until_ship > CROSS_DOCK_WINDOW_DAYS:
        return CrossDockUrgency.NONE
    if days_until_ship <= 0:
        return CrossDockUrgency.CRITICAL
    if days_until_ship == 1 or priority == OrderPriority.URGENT.value:
        return CrossDockUrgency.HIGH
    return CrossDockUrgency.MEDIUM


class CrossDockDetector:
    """
    Detects cross-dock opportunities from open sales demand.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def detect(
        self,
        material_id: UUID,
        quantity: float,
        tenant_id: UUID,
        received_at: Optional[date] = None,
    ) -> CrossDockOpportunity:
        """
        Classify cross-dock urgency for a received lot.

        Query failures degrade to NONE and only roll back their savepoint;
        the lot is slotted normally.
        """
        receipt_date = received_at or datetime.now(timezone.utc).date()
        try:
            async with self.db.begin_nested():
                demand = await self._most_urgent_demand(material_id, tenant_id)
        except Exception as e:
            logger.warning(f"Cross-dock check failed for material {material_id}: {e}")
            return CrossDockOpportunity(
                should_cross_dock=False,
                urgency=CrossDockUrgency.NONE,
                reason="Cross-dock check unavailable",
            )

        if demand is None:
            return CrossDockOpportunity(
                should_cross_dock=False,
                urgency=CrossDockUrgency.NONE,
                reason="No pending orders",
            )

        short_quantity = max((demand.quantity_ordered or 0.0) - (demand.quantity_allocated or 0.0), 0.0)
        if demand.requested_ship_date is None:
            return CrossDockOpportunity(
                should_cross_dock=False,
                urgency=CrossDockUrgency.NONE,
                reason="No urgent demand",
                sales_order_id=demand.sales_order_id,
                order_number=demand.order_number,
                demand_quantity=short_quantity,
            )

        days_until_ship = (demand.requested_ship_date - receipt_date).days
        urgency = classify_urgency(days_until_ship, demand.priority)

        if urgency != CrossDockUrgency.NONE and quantity < short_quantity:
            return CrossDockOpportunity(
                should_cross_dock=False,
                urgency=CrossDockUrgency.NONE,
                reason=f"Open demand {short_quantity:g} exceeds received quantity {quantity:g}",
                sales_order_id=demand.sales_order_id,
                order_number=demand.order_number,
                days_until_ship=days_until_ship,
                demand_quantity=short_quantity,
            )

        if urgency == CrossDockUrgency.NONE:
            return CrossDockOpportunity(
                should_cross_dock=False,
                urgency=CrossDockUrgency.NONE,
                reason="No urgent demand",
                sales_order_id=demand.sales_order_id,
                order_number=demand.order_number,
                days_until_ship=days_until_ship,
                demand_quantity=short_quantity,
            )

        return CrossDockOpportunity(
            should_cross_dock=True,
            urgency=urgency,
            reason=f"Urgent order {demand.order_number} ships in {max(days_until_ship, 0)} day(s)",
            sales_order_id=demand.sales_order_id,
            order_number=demand.order_number,
            days_until_ship=days_until_ship,
            demand_quantity=short_quantity,
        )

    async def _most_urgent_demand(self, material_id: UUID, tenant_id: UUID):
        """Most urgent open line with unallocated quantity, or None."""
        query = (
            select(
                SalesOrder.id.label("sales_order_id"),
                SalesOrder.order_number,
                SalesOrder.priority,
                SalesOrder.requested_ship_date,
                SalesOrderLine.quantity_ordered,
                SalesOrderLine.quantity_allocated,
            )
            .join(SalesOrder, SalesOrder.id == SalesOrderLine.sales_order_id)
            .where(
                and_(
                    SalesOrderLine.tenant_id == tenant_id,
                    SalesOrder.tenant_id == tenant_id,
                    SalesOrderLine.material_id == material_id,
                    SalesOrder.status.in_(OPEN_ORDER_STATUSES),
                    SalesOrderLine.quantity_ordered > SalesOrderLine.quantity_allocated,
                )
            )
            .order_by(
                _priority_rank,
                SalesOrder.requested_ship_date.is_(None),  # undated orders last
                SalesOrder.requested_ship_date,
                SalesOrder.order_number,
            )
            .limit(1)
        )
        result = await execute_with_timeout(self.db, query, label="cross_dock_demand")
        return result.first()

    @staticmethod
    def select_staging_location(
        staging_bins: List[BinCapacity],
        item: ItemDimensions,
        quantity: float,
    ) -> Optional[Tuple[BinCapacity, CapacityValidation]]:
        """Staging location with the most free space that passes validation."""
        ordered = sorted(staging_bins, key=lambda b: (-b.available_cubic_feet, b.location_code))
        for staging in ordered:
            validation = validate_capacity(staging, item, quantity)
            if validation.can_fit:
                return staging, validation
        return None
