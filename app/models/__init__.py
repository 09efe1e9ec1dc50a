"""
SQLAlchemy models for putaway bin optimization.

Importing this package registers every table with Base.metadata.
"""

from app.models.tenant import Tenant
from app.models.wms import InventoryLocation, LocationType, SecurityZone, ABCClass
from app.models.inventory import Material, Lot, InventoryTransaction, TransactionType
from app.models.order import SalesOrder, SalesOrderLine, OrderPriority, SalesOrderStatus
from app.models.picklist import PickList, PickListLine, PickListStatus
from app.models.bin_optimization import (
    PutawayRecommendationHistory,
    MLModelWeights,
    BinUtilizationSnapshot,
    BinUtilizationHistory,
    BinUtilizationPrediction,
    CapacityValidationFailureRecord,
    BinFragmentationHistory,
    RemediationLog,
)

__all__ = [
    "Tenant",
    "InventoryLocation",
    "LocationType",
    "SecurityZone",
    "ABCClass",
    "Material",
    "Lot",
    "InventoryTransaction",
    "TransactionType",
    "SalesOrder",
    "SalesOrderLine",
    "OrderPriority",
    "SalesOrderStatus",
    "PickList",
    "PickListLine",
    "PickListStatus",
    "PutawayRecommendationHistory",
    "MLModelWeights",
    "BinUtilizationSnapshot",
    "BinUtilizationHistory",
    "BinUtilizationPrediction",
    "CapacityValidationFailureRecord",
    "BinFragmentationHistory",
    "RemediationLog",
]
