"""
Bin Optimization Services for Putaway

This module provides warehouse putaway slotting:
- Batch Putaway (FFD / BFD / HYBRID bin packing)
- Capacity and 3D fit validation
- Cross-dock fast path, aisle congestion and SKU affinity
- ML confidence adjustment with a feedback loop
- Statistics, fragmentation monitoring and health checks
- Velocity-based ABC re-slotting and utilization forecasting
"""

from app.services.bin_optimization.putaway import BatchPutawayService
from app.services.bin_optimization.congestion import AisleCongestionTracker
from app.services.bin_optimization.cross_dock import CrossDockDetector
from app.services.bin_optimization.affinity import SKUAffinityScorer
from app.services.bin_optimization.ml_confidence import MLConfidenceAdjuster, PutawayFeedbackLoop
from app.services.bin_optimization.statistics import BinOptimizationStatisticsService
from app.services.bin_optimization.fragmentation import BinFragmentationMonitor
from app.services.bin_optimization.health import BinOptimizationHealthMonitor
from app.services.bin_optimization.utilization import BinUtilizationCacheService
from app.services.bin_optimization.prediction import UtilizationPredictionService
from app.services.bin_optimization.data_quality import DataQualityService

__all__ = [
    "BatchPutawayService",
    "AisleCongestionTracker",
    "CrossDockDetector",
    "SKUAffinityScorer",
    "MLConfidenceAdjuster",
    "PutawayFeedbackLoop",
    "BinOptimizationStatisticsService",
    "BinFragmentationMonitor",
    "BinOptimizationHealthMonitor",
    "BinUtilizationCacheService",
    "UtilizationPredictionService",
    "DataQualityService",
]
