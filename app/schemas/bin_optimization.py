"""Pydantic schemas for putaway bin optimization inputs and results."""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import date, datetime
from enum import Enum
import uuid

from app.schemas.base import BaseResponseSchema, BaseResultSchema


# ==================== ENUMERATIONS ====================

class AlgorithmType(str, Enum):
    """Bin packing algorithm enumeration."""
    FFD = "FFD"          # First Fit Decreasing
    BFD = "BFD"          # Best Fit Decreasing
    HYBRID = "HYBRID"    # FFD ordering with slack-aware scoring


class CrossDockUrgency(str, Enum):
    """Cross-dock urgency enumeration."""
    CRITICAL = "CRITICAL"    # Ships today
    HIGH = "HIGH"            # Ships tomorrow or URGENT priority
    MEDIUM = "MEDIUM"        # Ships in two days
    NONE = "NONE"


class CapacityFailureType(str, Enum):
    """Capacity validation failure classification."""
    CUBIC_FEET_EXCEEDED = "CUBIC_FEET_EXCEEDED"
    WEIGHT_EXCEEDED = "WEIGHT_EXCEEDED"
    BOTH_EXCEEDED = "BOTH_EXCEEDED"
    DIMENSION_MISMATCH = "DIMENSION_MISMATCH"
    NO_CANDIDATES = "NO_CANDIDATES"


class OutlierMethod(str, Enum):
    """Outlier detection method enumeration."""
    IQR = "IQR"
    Z_SCORE = "Z_SCORE"
    MODIFIED_Z_SCORE = "MODIFIED_Z_SCORE"


class OutlierSeverity(str, Enum):
    """Outlier severity enumeration."""
    MODERATE = "MODERATE"
    SEVERE = "SEVERE"
    EXTREME = "EXTREME"


class CorrelationStrength(str, Enum):
    """Correlation strength classification."""
    VERY_WEAK = "VERY_WEAK"
    WEAK = "WEAK"
    MODERATE = "MODERATE"
    STRONG = "STRONG"
    VERY_STRONG = "VERY_STRONG"


class FragmentationLevel(str, Enum):
    """Fragmentation level classification."""
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    SEVERE = "SEVERE"


class UtilizationTrend(str, Enum):
    """Direction of facility utilization, EMA against SMA."""
    INCREASING = "INCREASING"
    DECREASING = "DECREASING"
    STABLE = "STABLE"


class HealthStatus(str, Enum):
    """Health check status, ordered from best to worst."""
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    UNHEALTHY = "UNHEALTHY"


# ==================== INPUT SCHEMAS ====================

class ItemDimensions(BaseModel):
    """Per-unit item dimensions (inches, cubic feet, lbs)."""
    length_inches: float
    width_inches: float
    height_inches: float
    cubic_feet: float
    weight_lbs_per_unit: float = 0.0


class PlacementRequest(BaseModel):
    """
    One lot to put away.

    Numeric fields are checked by the batch orchestrator, which rejects
    the whole batch on any violation.
    """
    material_id: uuid.UUID
    lot_number: str = Field(..., min_length=1, max_length=50)
    quantity: float
    dimensions: Optional[ItemDimensions] = None


class PlacementItem(BaseModel):
    """A validated request joined to its material snapshot."""
    material_id: uuid.UUID
    material_code: str
    facility_id: uuid.UUID
    lot_number: str
    quantity: float
    dimensions: ItemDimensions
    abc_classification: str = "C"
    temperature_controlled: bool = False
    security_zone: str = "STANDARD"

    @property
    def total_cubic_feet(self) -> float:
        return self.dimensions.cubic_feet * self.quantity

    @property
    def total_weight_lbs(self) -> float:
        return self.dimensions.weight_lbs_per_unit * self.quantity


# ==================== PLACEMENT STATE ====================

class BinCapacity(BaseResponseSchema):
    """
    In-memory capacity view of a location.

    Mutated during a batch run so later items see space claimed by earlier ones.
    """
    location_id: uuid.UUID
    facility_id: uuid.UUID
    location_code: str
    location_type: str
    zone_code: Optional[str] = None
    aisle_code: Optional[str] = None
    total_cubic_feet: float
    used_cubic_feet: float
    available_cubic_feet: float
    max_weight_lbs: float
    current_weight_lbs: float
    available_weight_lbs: float
    utilization_percentage: float
    length_inches: Optional[float] = None
    width_inches: Optional[float] = None
    height_inches: Optional[float] = None
    abc_classification: Optional[str] = None
    pick_sequence: Optional[int] = None
    security_zone: str = "STANDARD"
    temperature_controlled: bool = False

    @classmethod
    def from_location(cls, location) -> "BinCapacity":
        """Build a capacity view from an InventoryLocation row."""
        total = location.cubic_feet or 0.0
        used = location.used_cubic_feet or 0.0
        max_weight = location.max_weight_lbs or 0.0
        current_weight = location.current_weight_lbs or 0.0
        return cls(
            location_id=location.id,
            facility_id=location.facility_id,
            location_code=location.location_code,
            location_type=location.location_type,
            zone_code=location.zone_code,
            aisle_code=location.aisle_code,
            total_cubic_feet=total,
            used_cubic_feet=used,
            available_cubic_feet=max(total - used, 0.0),
            max_weight_lbs=max_weight,
            current_weight_lbs=current_weight,
            available_weight_lbs=max(max_weight - current_weight, 0.0),
            utilization_percentage=(used / total * 100) if total > 0 else 0.0,
            length_inches=location.length_inches,
            width_inches=location.width_inches,
            height_inches=location.height_inches,
            abc_classification=location.abc_classification,
            pick_sequence=location.pick_sequence,
            security_zone=location.security_zone or "STANDARD",
            temperature_controlled=bool(location.temperature_controlled),
        )

    def apply_placement(self, cubic_feet: float, weight_lbs: float) -> None:
        """Claim capacity for a placed lot."""
        self.used_cubic_feet += cubic_feet
        self.current_weight_lbs += weight_lbs
        self.available_cubic_feet = max(self.total_cubic_feet - self.used_cubic_feet, 0.0)
        self.available_weight_lbs = max(self.max_weight_lbs - self.current_weight_lbs, 0.0)
        if self.total_cubic_feet > 0:
            self.utilization_percentage = self.used_cubic_feet / self.total_cubic_feet * 100

    def utilization_after(self, cubic_feet: float) -> float:
        """Utilization % if cubic_feet more were placed here."""
        if self.total_cubic_feet <= 0:
            return 0.0
        return (self.used_cubic_feet + cubic_feet) / self.total_cubic_feet * 100


class CapacityValidation(BaseResultSchema):
    """Result of validating one lot against one location."""
    can_fit: bool
    dimension_check: bool
    cubic_check: bool
    weight_check: bool
    violation_reasons: List[str] = []
    required_cubic_feet: float = 0.0
    required_weight_lbs: float = 0.0
    available_cubic_feet: float = 0.0
    available_weight_lbs: float = 0.0


class CrossDockOpportunity(BaseResultSchema):
    """Cross-dock fast-path decision for a received lot."""
    should_cross_dock: bool
    urgency: CrossDockUrgency = CrossDockUrgency.NONE
    reason: str
    sales_order_id: Optional[uuid.UUID] = None
    order_number: Optional[str] = None
    days_until_ship: Optional[int] = None
    demand_quantity: float = 0.0


class AlgorithmStrategy(BaseResultSchema):
    """Batch-level packing algorithm choice."""
    algorithm: AlgorithmType
    reason: str
    volume_variance: float
    avg_bin_utilization: float
    item_count: int = 0


# ==================== ML ====================

class MLFeatures(BaseModel):
    """Boolean signals fed to the confidence adjuster."""
    abc_match: bool = False
    utilization_optimal: bool = False
    pick_sequence_low: bool = False
    location_type_match: bool = False
    congestion_low: bool = False


class MLWeights(BaseModel):
    """Feature weight vector for the confidence adjuster."""
    abc_match: float = 0.35
    utilization_optimal: float = 0.25
    pick_sequence_low: float = 0.20
    location_type_match: float = 0.15
    congestion_low: float = 0.05


class FeedbackRecord(BaseResultSchema):
    """A decided recommendation joined to its outcome."""
    recommendation_id: uuid.UUID
    material_id: uuid.UUID
    recommended_location_id: uuid.UUID
    actual_location_id: Optional[uuid.UUID] = None
    accepted: bool
    algorithm_used: str
    confidence_score: float
    ml_adjusted_confidence: Optional[float] = None
    features: MLFeatures
    decided_at: datetime


class AlgorithmAccuracy(BaseResultSchema):
    """Acceptance rate for one algorithm tag."""
    algorithm: str
    accuracy: float
    count: int


class AccuracyMetrics(BaseResultSchema):
    """Acceptance-rate accuracy of past recommendations."""
    overall_accuracy: float
    total_recommendations: int
    accepted_recommendations: int = 0
    by_algorithm: List[AlgorithmAccuracy] = []


class ModelHealth(BaseResultSchema):
    """ML accuracy mapped to a health status."""
    status: HealthStatus
    accuracy: float
    sample_count: int
    needs_retrain: bool
    needs_alert: bool
    message: str


# ==================== PUTAWAY RESULTS ====================

class AlternativeLocation(BaseResultSchema):
    """Runner-up location for a recommendation."""
    location_id: uuid.UUID
    location_code: str
    score: float
    confidence_score: float
    utilization_after: float
    reason: str


class PutawayRecommendation(BaseResultSchema):
    """Advisory placement for one lot."""
    lot_number: str
    material_id: uuid.UUID
    facility_id: uuid.UUID
    quantity: float
    location_id: uuid.UUID
    location_code: str
    location_type: str
    zone_code: Optional[str] = None
    aisle_code: Optional[str] = None
    algorithm: str
    score: float
    confidence_score: float
    ml_adjusted_confidence: float
    reason: str
    utilization_after: float
    congestion_penalty: float = 0.0
    affinity_score: float = 0.0
    features: MLFeatures = Field(default_factory=MLFeatures)
    cross_dock: Optional[CrossDockOpportunity] = None
    alternatives: List[AlternativeLocation] = []
    capacity_check: CapacityValidation


class PutawayFailure(BaseResultSchema):
    """A lot for which no feasible location exists."""
    lot_number: str
    material_id: uuid.UUID
    quantity: float
    reason: str
    failure_type: CapacityFailureType
    required_cubic_feet: float
    required_weight_lbs: float
    candidates_evaluated: int = 0


class BatchPutawayResult(BaseResultSchema):
    """Result of one batch putaway call."""
    recommendations: Dict[str, PutawayRecommendation] = {}
    failures: List[PutawayFailure] = []
    strategy: Optional[AlgorithmStrategy] = None
    processing_order: List[str] = []


# ==================== STATISTICS ====================

class DescriptiveStats(BaseResultSchema):
    """Descriptive statistics for a metric."""
    metric: str
    n: int
    mean: float
    std_dev: float
    median: float
    p25: float
    p75: float
    p95: float
    min: float
    max: float
    is_significant: bool


class ProportionEstimate(BaseResultSchema):
    """A proportion with its 95% confidence interval."""
    proportion: float
    n: int
    ci_lower: float
    ci_upper: float
    is_significant: bool


class OutlierRecord(BaseResultSchema):
    """A single flagged outlier."""
    key: str
    value: float
    method: OutlierMethod
    outlier_type: str  # HIGH / LOW
    severity: OutlierSeverity
    score: float
    lower_bound: Optional[float] = None
    upper_bound: Optional[float] = None
    requires_investigation: bool


class OutlierAnalysis(BaseResultSchema):
    """Outlier detection run over a metric."""
    metric: str
    method: OutlierMethod
    n: int
    outliers: List[OutlierRecord] = []
    lower_bound: Optional[float] = None
    upper_bound: Optional[float] = None


class CorrelationResult(BaseResultSchema):
    """Pearson/Spearman correlation with linear fit."""
    metric_x: str
    metric_y: str
    n: int
    pearson: float
    spearman: float
    slope: float
    intercept: float
    r_squared: float
    t_statistic: float
    strength: CorrelationStrength
    relationship: str  # POSITIVE / NEGATIVE / NONE
    is_significant: bool


# ==================== FRAGMENTATION ====================

class FragmentationMetrics(BaseResultSchema):
    """Fragmentation snapshot for a facility or zone."""
    facility_id: uuid.UUID
    zone_code: Optional[str] = None
    total_available_cubic_feet: float
    largest_available_cubic_feet: float
    fragmentation_index: float
    fragmentation_level: FragmentationLevel
    requires_consolidation: bool
    location_count: int
    recorded_at: Optional[datetime] = None


class ConsolidationOpportunity(BaseResultSchema):
    """Suggested move set that merges a split material into one bin."""
    material_id: uuid.UUID
    material_code: str
    source_location_ids: List[uuid.UUID]
    source_location_codes: List[str]
    target_location_id: uuid.UUID
    target_location_code: str
    quantity_to_move: float
    total_cubic_feet: float
    space_recovered_cubic_feet: float
    estimated_labor_hours: float
    priority: str  # HIGH / MEDIUM / LOW


# ==================== HEALTH ====================

class HealthCheckResult(BaseResultSchema):
    """Outcome of one health check."""
    name: str
    status: HealthStatus
    message: str
    metric: Optional[float] = None


class RemediationAction(BaseResultSchema):
    """One auto-remediation attempt."""
    health_check: str
    action: str
    successful: bool
    pre_action_metric: Optional[float] = None
    post_action_metric: Optional[float] = None
    error_message: Optional[str] = None


class BinOptimizationHealth(BaseResultSchema):
    """Aggregate health report."""
    status: HealthStatus
    checks: Dict[str, HealthCheckResult]
    remediation_actions: List[RemediationAction] = []
    timestamp: datetime


# ==================== DATA QUALITY / UTILIZATION ====================

class CapacityValidationFailure(BaseResultSchema):
    """Capacity failure handed to the data-quality tracker."""
    tenant_id: uuid.UUID
    facility_id: Optional[uuid.UUID] = None
    location_id: Optional[uuid.UUID] = None
    material_id: uuid.UUID
    lot_number: str
    failure_type: CapacityFailureType
    required_cubic_feet: float
    available_cubic_feet: float
    required_weight_lbs: float
    available_weight_lbs: float
    cubic_overflow_pct: float = 0.0
    weight_overflow_pct: float = 0.0
    reasons: List[str] = []


class CapacityFailureSummary(BaseResultSchema):
    """Failure rate over a period with alert level."""
    period_days: int
    failure_count: int
    recommendation_count: int
    failure_rate: float
    alert_level: str  # NONE / WARNING / CRITICAL
    by_type: Dict[str, int] = {}


class MaterialDataQuality(BaseResultSchema):
    """Data quality verdict for one material."""
    material_id: uuid.UUID
    material_code: Optional[str] = None
    is_valid: bool
    errors: List[str] = []
    warnings: List[str] = []
    effective_abc_classification: str = "C"


class OptimizationRecommendation(BaseResultSchema):
    """Re-slotting recommendation from utilization analysis."""
    type: str  # CONSOLIDATE / REBALANCE / RESLOT
    location_id: Optional[uuid.UUID] = None
    location_code: Optional[str] = None
    current_utilization: Optional[float] = None
    priority: str
    reason: str
    # RESLOT only
    material_id: Optional[uuid.UUID] = None
    material_code: Optional[str] = None
    current_abc: Optional[str] = None
    recommended_abc: Optional[str] = None
    pick_count: Optional[int] = None
    velocity_percentile: Optional[float] = None
    expected_impact: Optional[str] = None


class UtilizationAnalysis(BaseResultSchema):
    """Warehouse utilization summary."""
    facility_id: Optional[uuid.UUID] = None
    total_locations: int
    average_utilization: float
    underutilized_count: int
    overutilized_count: int
    zone_utilization: Dict[str, float] = {}
    recommendations: List[OptimizationRecommendation] = []


# ==================== PREDICTION ====================

class DailyUtilization(BaseResultSchema):
    """Facility utilization for one day, averaged over that day's refreshes."""
    metric_date: date
    avg_utilization: float
    locations_optimal: float


class UtilizationPrediction(BaseResultSchema):
    """Forecast of facility utilization at a horizon."""
    id: Optional[uuid.UUID] = None
    facility_id: uuid.UUID
    prediction_date: datetime
    horizon_days: int
    predicted_avg_utilization: float
    predicted_locations_optimal: int
    confidence_level: float
    model_version: str
    trend: UtilizationTrend
    seasonality_detected: bool
    recommended_actions: List[str] = []


class PredictionAccuracy(BaseResultSchema):
    """Past predictions scored against the utilization actually observed."""
    sample_count: int = 0
    mape: float = 0.0
    rmse: float = 0.0
    accuracy: float = 0.0
