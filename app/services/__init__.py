# Services module
from app.services.bin_optimization import (
    BatchPutawayService,
    PutawayFeedbackLoop,
    BinOptimizationHealthMonitor,
)

__all__ = [
    "BatchPutawayService",
    "PutawayFeedbackLoop",
    "BinOptimizationHealthMonitor",
]
