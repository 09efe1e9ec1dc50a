"""Bin optimization models: recommendation history, ML weights and monitoring tables."""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Float, Integer, Text
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType


class PutawayRecommendationHistory(Base):
    """
    Putaway recommendation history.
    One row per advisory recommendation; decided_at/accepted are filled in
    when an operator confirms or overrides the placement.
    """
    __tablename__ = "putaway_recommendations"
    __table_args__ = (
        Index("ix_putaway_rec_tenant_decided", "tenant_id", "decided_at"),
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
    material_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    lot_number: Mapped[str] = mapped_column(String(50), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)

    recommended_location_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    actual_location_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Scoring
    algorithm_used: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="e.g., FFD_ENHANCED_V3, CROSS_DOCK_FAST_PATH"
    )
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    ml_adjusted_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    utilization_after: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    congestion_penalty: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    is_cross_dock: Mapped[bool] = mapped_column(Boolean, default=False)
    features: Mapped[dict] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
        comment="ML feature flags active when the recommendation was made"
    )

    # Outcome
    accepted: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PutawayRecommendationHistory(lot='{self.lot_number}', algo='{self.algorithm_used}')>"


class MLModelWeights(Base):
    """
    Persisted ML weight vector.
    Serialized feature weights for one model per tenant.
    """
    __tablename__ = "ml_model_weights"
    __table_args__ = (
        UniqueConstraint("tenant_id", "model_name", name="uq_ml_model_weights"),
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
    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    weights: Mapped[dict] = mapped_column(JSONType, nullable=False)
    accuracy_pct: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_samples: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<MLModelWeights(model='{self.model_name}', accuracy={self.accuracy_pct})>"


class BinUtilizationSnapshot(Base):
    """
    Cached per-location utilization.
    Refreshed periodically; health checks measure its age.
    """
    __tablename__ = "bin_utilization_snapshots"
    __table_args__ = (
        Index("ix_bin_util_tenant_facility", "tenant_id", "facility_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    location_code: Mapped[str] = mapped_column(String(50), nullable=False)
    location_type: Mapped[str] = mapped_column(String(20), nullable=False)
    zone_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    aisle_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    total_cubic_feet: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    used_cubic_feet: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    available_cubic_feet: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    utilization_pct: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    lot_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<BinUtilizationSnapshot(code='{self.location_code}', util={self.utilization_pct:.1f})>"


class BinUtilizationHistory(Base):
    """Facility-level utilization captured on every cache refresh; the prediction input."""
    __tablename__ = "bin_utilization_history"
    __table_args__ = (
        Index("ix_bin_util_history_facility_time", "tenant_id", "facility_id", "captured_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False
    )
    facility_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)

    avg_utilization: Mapped[float] = mapped_column(Float, nullable=False)
    locations_optimal: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Locations between the optimal utilization bounds"
    )
    location_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<BinUtilizationHistory(avg={self.avg_utilization:.1f}, optimal={self.locations_optimal})>"


class BinUtilizationPrediction(Base):
    """Stored utilization forecasts, one row per horizon."""
    __tablename__ = "bin_utilization_predictions"

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

    prediction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    horizon_days: Mapped[int] = mapped_column(Integer, nullable=False)
    predicted_avg_utilization: Mapped[float] = mapped_column(Float, nullable=False)
    predicted_locations_optimal: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    confidence_level: Mapped[float] = mapped_column(Float, nullable=False)
    model_version: Mapped[str] = mapped_column(String(30), nullable=False)
    trend: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="INCREASING, DECREASING, STABLE"
    )
    seasonality_detected: Mapped[bool] = mapped_column(Boolean, default=False)
    recommended_actions: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<BinUtilizationPrediction(horizon={self.horizon_days}, predicted={self.predicted_avg_utilization:.1f})>"


class CapacityValidationFailureRecord(Base):
    """
    Capacity validation failure.
    Written when no location could take a lot or a chosen bin failed validation.
    """
    __tablename__ = "capacity_validation_failures"

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
    facility_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    material_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    lot_number: Mapped[str] = mapped_column(String(50), nullable=False)

    failure_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="CUBIC_FEET_EXCEEDED, WEIGHT_EXCEEDED, BOTH_EXCEEDED, DIMENSION_MISMATCH, NO_CANDIDATES"
    )
    required_cubic_feet: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    available_cubic_feet: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    required_weight_lbs: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    available_weight_lbs: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    cubic_overflow_pct: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    weight_overflow_pct: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    reasons: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<CapacityValidationFailureRecord(lot='{self.lot_number}', type='{self.failure_type}')>"


class BinFragmentationHistory(Base):
    """Fragmentation index trend storage per facility (and optional zone)."""
    __tablename__ = "bin_fragmentation_history"

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
    zone_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    total_available_cubic_feet: Mapped[float] = mapped_column(Float, nullable=False)
    largest_available_cubic_feet: Mapped[float] = mapped_column(Float, nullable=False)
    fragmentation_index: Mapped[float] = mapped_column(Float, nullable=False)
    fragmentation_level: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="LOW, MODERATE, HIGH, SEVERE"
    )
    requires_consolidation: Mapped[bool] = mapped_column(Boolean, default=False)
    location_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<BinFragmentationHistory(index={self.fragmentation_index:.2f}, level='{self.fragmentation_level}')>"


class RemediationLog(Base):
    """Audit trail of health-check auto-remediation attempts."""
    __tablename__ = "bin_optimization_remediation_log"

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
    health_check: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="CACHE_REFRESHED, ML_RETRAIN_SCHEDULED, ALERT_SENT"
    )
    successful: Mapped[bool] = mapped_column(Boolean, nullable=False)
    pre_action_metric: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    post_action_metric: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<RemediationLog(check='{self.health_check}', action='{self.action}', ok={self.successful})>"
