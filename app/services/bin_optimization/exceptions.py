"""Exceptions raised by the bin optimization services."""
from typing import List, Optional


class BinOptimizationError(Exception):
    """Base exception for bin optimization errors."""
    pass


class PutawayValidationError(BinOptimizationError):
    """Batch rejected before any query was issued."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Input validation failed: " + "; ".join(self.errors))


class CrossTenantMaterialError(PutawayValidationError):
    """A referenced material does not belong to the requesting tenant."""
    pass


class PutawayQueryTimeoutError(BinOptimizationError):
    """A query on the placement path exceeded its timeout."""

    def __init__(self, label: str, timeout: float):
        self.label = label
        self.timeout = timeout
        super().__init__(f"Query '{label}' timed out after {timeout}s")


class ModelTrainingError(BinOptimizationError):
    """Retraining failed; the prior weight vector is still in effect."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


class InsufficientHistoryError(BinOptimizationError):
    """Not enough daily utilization history to forecast from."""

    def __init__(self, required: int, found: int):
        self.required = required
        self.found = found
        super().__init__(
            f"Insufficient utilization history: need at least {required} days, found {found}"
        )
