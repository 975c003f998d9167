"""
POSTUREIQ Posture Service Models

Landmark geometry, deviation analysis, longitudinal comparison, trends,
overlay alignment and report generation.
"""

from .errors import (
    PostureError,
    InvalidOrderingError,
    CrossPatientComparisonError,
    ViewMismatchError,
    PreconditionNotMetError,
    AssessmentLockedError,
    AssessmentNotFoundError,
)

from .landmark_catalog import (
    PostureView,
    LandmarkName,
    LandmarkGroup,
    BodyRegion,
    DeviationType,
    MeasurementUnit,
    DeviationDefinition,
    DEVIATION_DEFINITIONS,
    LANDMARK_DEFINITIONS,
    VIEW_ORDER,
    view_deviation_types,
    landmarks_for_view,
    get_view_types,
    get_catalog,
)

from .severity import Severity, classify_severity, deviation_amount, max_severity

from .geometry import (
    Point,
    ScaleContext,
    angle_between,
    level_difference,
    reference_scale,
)

from .entities import (
    Landmark,
    LandmarkDetection,
    PostureImage,
    Assessment,
    Deviation,
    build_deviation,
)

from .deviation_analyzer import (
    DeviationAnalyzer,
    ViewAnalysis,
    AssessmentAnalysis,
    get_deviation_analyzer,
    analyze_view,
    analyze_assessment,
    recommendations_for,
)

from .comparison_engine import (
    ComparisonEngine,
    ComparisonResult,
    ChangeStatus,
    DeviationComparison,
    ViewComparison,
    get_comparison_engine,
    compare,
)

from .trend_analyzer import (
    TrendAnalyzer,
    TrendSeries,
    TrendPoint,
    TrendDirection,
    TrendStatus,
    get_trend_analyzer,
    trend,
)

from .overlay_aligner import (
    OverlayAligner,
    OverlayAlignment,
    SimilarityTransform,
    get_overlay_aligner,
    align_overlay,
)

from .report_generator import (
    ReportIdentities,
    TreatmentGoal,
    build_report,
    build_comparison_report,
    build_assessment_report,
    render_report_html,
)

__all__ = [
    # Errors
    "PostureError",
    "InvalidOrderingError",
    "CrossPatientComparisonError",
    "ViewMismatchError",
    "PreconditionNotMetError",
    "AssessmentLockedError",
    "AssessmentNotFoundError",
    # Catalog
    "PostureView",
    "LandmarkName",
    "LandmarkGroup",
    "BodyRegion",
    "DeviationType",
    "MeasurementUnit",
    "DeviationDefinition",
    "DEVIATION_DEFINITIONS",
    "LANDMARK_DEFINITIONS",
    "VIEW_ORDER",
    "view_deviation_types",
    "landmarks_for_view",
    "get_view_types",
    "get_catalog",
    # Severity
    "Severity",
    "classify_severity",
    "deviation_amount",
    "max_severity",
    # Geometry
    "Point",
    "ScaleContext",
    "angle_between",
    "level_difference",
    "reference_scale",
    # Entities
    "Landmark",
    "LandmarkDetection",
    "PostureImage",
    "Assessment",
    "Deviation",
    "build_deviation",
    # Deviation Analyzer
    "DeviationAnalyzer",
    "ViewAnalysis",
    "AssessmentAnalysis",
    "get_deviation_analyzer",
    "analyze_view",
    "analyze_assessment",
    "recommendations_for",
    # Comparison
    "ComparisonEngine",
    "ComparisonResult",
    "ChangeStatus",
    "DeviationComparison",
    "ViewComparison",
    "get_comparison_engine",
    "compare",
    # Trends
    "TrendAnalyzer",
    "TrendSeries",
    "TrendPoint",
    "TrendDirection",
    "TrendStatus",
    "get_trend_analyzer",
    "trend",
    # Overlay
    "OverlayAligner",
    "OverlayAlignment",
    "SimilarityTransform",
    "get_overlay_aligner",
    "align_overlay",
    # Reports
    "ReportIdentities",
    "TreatmentGoal",
    "build_report",
    "build_comparison_report",
    "build_assessment_report",
    "render_report_html",
]
