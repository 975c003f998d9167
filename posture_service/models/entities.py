"""
POSTUREIQ Posture Service - Domain Entities

Landmarks, posture images, assessments and deviation measurements.
Assessments own their images; images own their landmarks. A completed
assessment refuses every mutation.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import AssessmentLockedError, PreconditionNotMetError
from .landmark_catalog import (
    DEVIATION_DEFINITIONS,
    DEVIATION_ORDER,
    VIEW_ORDER,
    DeviationDefinition,
    DeviationType,
    LandmarkName,
    MeasurementUnit,
    PostureView,
)
from .severity import Severity, classify_severity, deviation_amount

logger = logging.getLogger(__name__)


def as_utc(value) -> Optional[datetime]:
    """Coerce a date / datetime / ISO string to an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif not isinstance(value, datetime) and isinstance(value, date):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


# ═══════════════════════════════════════════════════════════════════════════════
# LANDMARKS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Landmark:
    """A single anatomical point in normalized image coordinates."""
    name: LandmarkName
    x: float
    y: float
    z: Optional[float] = None
    confidence: float = 1.0
    is_manual: bool = False
    original_x: Optional[float] = None
    original_y: Optional[float] = None

    def __post_init__(self):
        self.name = LandmarkName(self.name)
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Landmark confidence must be within [0, 1], got {self.confidence}")

    def move_to(self, x: float, y: float):
        """Manual override. The detected position is remembered on the first edit only."""
        if not self.is_manual:
            self.original_x = self.x
            self.original_y = self.y
        self.x = _clamp_unit(x)
        self.y = _clamp_unit(y)
        self.is_manual = True

    def revert(self) -> bool:
        """Restore the detected position. Returns False if there is nothing to restore."""
        if not self.is_manual or self.original_x is None or self.original_y is None:
            return False
        self.x = self.original_x
        self.y = self.original_y
        self.original_x = None
        self.original_y = None
        self.is_manual = False
        return True

    def to_dict(self) -> dict:
        return {
            "name": self.name.value,
            "x": self.x,
            "y": self.y,
            "z": self.z,
            "confidence": self.confidence,
            "is_manual": self.is_manual,
            "original_x": self.original_x,
            "original_y": self.original_y,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Landmark":
        return cls(
            name=LandmarkName(data["name"]),
            x=float(data["x"]),
            y=float(data["y"]),
            z=data.get("z"),
            confidence=float(data.get("confidence", 1.0)),
            is_manual=bool(data.get("is_manual", False)),
            original_x=data.get("original_x"),
            original_y=data.get("original_y"),
        )


@dataclass
class LandmarkDetection:
    """Output of the external landmark detector for one photo."""
    landmarks: List[Dict[str, Any]]
    method: str = "ai"
    model_version: Optional[str] = None
    processing_time_ms: Optional[float] = None
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "LandmarkDetection":
        return cls(
            landmarks=list(data.get("landmarks", [])),
            method=data.get("method", data.get("analysis_method", "ai")),
            model_version=data.get("model_version"),
            processing_time_ms=data.get("processing_time_ms"),
            warnings=list(data.get("warnings") or []),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# POSTURE IMAGES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class PostureImage:
    """One photo of the patient in a fixed view with its landmarks."""
    view: PostureView
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    landmarks: List[Landmark] = field(default_factory=list)
    image_url: Optional[str] = None
    notes: Optional[str] = None
    is_analyzed: bool = False
    analyzed_at: Optional[datetime] = None
    analysis_method: Optional[str] = None
    model_version: Optional[str] = None
    processing_time_ms: Optional[float] = None
    detector_warnings: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.view = PostureView(self.view)
        self._check_unique(self.landmarks)

    @staticmethod
    def _check_unique(landmarks: Iterable[Landmark]):
        seen = set()
        for landmark in landmarks:
            if landmark.name in seen:
                raise ValueError(f"Duplicate landmark '{landmark.name.value}' on one image")
            seen.add(landmark.name)

    def landmark(self, name) -> Optional[Landmark]:
        name = LandmarkName(name)
        for landmark in self.landmarks:
            if landmark.name == name:
                return landmark
        return None

    def set_landmarks(self, landmarks: List[Landmark]):
        self._check_unique(landmarks)
        self.landmarks = list(landmarks)

    def apply_detection(self, detection: LandmarkDetection, analyzed_at: Optional[datetime] = None) -> List[str]:
        """
        Replace landmarks with detector output.

        Unknown names are skipped, coordinates are clamped into the frame and
        a name reported twice keeps its most confident reading. Returns the
        warnings produced while ingesting.
        """
        warnings = list(detection.warnings)
        by_name: Dict[LandmarkName, Landmark] = {}

        for raw in detection.landmarks:
            raw_name = raw.get("name")
            try:
                name = LandmarkName(raw_name)
            except ValueError:
                warnings.append(f"Unknown landmark '{raw_name}' ignored")
                continue

            confidence = min(1.0, max(0.0, float(raw.get("confidence", 0.0))))
            landmark = Landmark(
                name=name,
                x=_clamp_unit(raw["x"]),
                y=_clamp_unit(raw["y"]),
                z=raw.get("z"),
                confidence=confidence,
            )
            existing = by_name.get(name)
            if existing is None or landmark.confidence > existing.confidence:
                by_name[name] = landmark

        self.landmarks = list(by_name.values())
        self.is_analyzed = True
        self.analyzed_at = as_utc(analyzed_at) or datetime.now(timezone.utc)
        self.analysis_method = detection.method
        self.model_version = detection.model_version
        self.processing_time_ms = detection.processing_time_ms
        self.detector_warnings = warnings

        if warnings:
            logger.warning(f"⚠️ {self.view.value} detection ingested with {len(warnings)} warning(s)")
        return warnings

    def move_landmark(self, name, x: float, y: float) -> Landmark:
        """Manually move a landmark, placing it if the detector missed it."""
        landmark = self.landmark(name)
        if landmark is None:
            landmark = Landmark(name=LandmarkName(name), x=_clamp_unit(x), y=_clamp_unit(y), is_manual=True)
            self.landmarks.append(landmark)
        else:
            landmark.move_to(x, y)

        if not self.is_analyzed:
            self.is_analyzed = True
            self.analysis_method = "manual"
            self.analyzed_at = datetime.now(timezone.utc)
        return landmark

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "view": self.view.value,
            "landmarks": [lm.to_dict() for lm in self.landmarks],
            "image_url": self.image_url,
            "notes": self.notes,
            "is_analyzed": self.is_analyzed,
            "analyzed_at": _iso(self.analyzed_at),
            "analysis_method": self.analysis_method,
            "model_version": self.model_version,
            "processing_time_ms": self.processing_time_ms,
            "detector_warnings": list(self.detector_warnings),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PostureImage":
        return cls(
            id=data.get("id") or uuid.uuid4().hex,
            view=PostureView(data["view"]),
            landmarks=[Landmark.from_dict(lm) for lm in data.get("landmarks", [])],
            image_url=data.get("image_url"),
            notes=data.get("notes"),
            is_analyzed=bool(data.get("is_analyzed", False)),
            analyzed_at=as_utc(data.get("analyzed_at")),
            analysis_method=data.get("analysis_method"),
            model_version=data.get("model_version"),
            processing_time_ms=data.get("processing_time_ms"),
            detector_warnings=list(data.get("detector_warnings") or []),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# DEVIATIONS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Deviation:
    """A classified postural deviation measured in one view."""
    deviation_type: DeviationType
    view: PostureView
    measurement_value: float
    measurement_unit: MeasurementUnit
    normal_range_min: float
    normal_range_max: float
    deviation_amount: float
    severity: Severity
    direction: Optional[str] = None
    landmarks: List[str] = field(default_factory=list)
    notes: Optional[str] = None

    @property
    def definition(self) -> DeviationDefinition:
        return DEVIATION_DEFINITIONS[self.deviation_type]

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def side(self) -> Optional[str]:
        """Side qualifier that takes part in matching (side-specific types only)."""
        return self.direction if self.definition.side_specific else None

    @property
    def match_key(self) -> Tuple[DeviationType, Optional[str]]:
        return (self.deviation_type, self.side)

    @property
    def sort_key(self) -> Tuple[int, int, str]:
        return (VIEW_ORDER.index(self.view), DEVIATION_ORDER[self.deviation_type], self.side or "")

    @property
    def normal_midpoint(self) -> float:
        return (self.normal_range_min + self.normal_range_max) / 2

    def to_dict(self) -> dict:
        return {
            "deviation_type": self.deviation_type.value,
            "name": self.name,
            "view": self.view.value,
            "measurement_value": self.measurement_value,
            "measurement_unit": self.measurement_unit.value,
            "normal_range_min": self.normal_range_min,
            "normal_range_max": self.normal_range_max,
            "deviation_amount": self.deviation_amount,
            "severity": self.severity.value,
            "clinical_significance": self.severity.clinical_significance,
            "direction": self.direction,
            "landmarks": list(self.landmarks),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Deviation":
        # Amount and severity are derived, so they are recomputed on load
        return build_deviation(
            DeviationType(data["deviation_type"]),
            float(data["measurement_value"]),
            PostureView(data["view"]),
            direction=data.get("direction"),
            normal_range=(float(data["normal_range_min"]), float(data["normal_range_max"])),
            landmarks=data.get("landmarks") or [],
            notes=data.get("notes"),
        )


def build_deviation(
    deviation_type: DeviationType,
    value: float,
    view: PostureView,
    direction: Optional[str] = None,
    normal_range: Optional[Tuple[float, float]] = None,
    landmarks: Iterable = (),
    notes: Optional[str] = None,
) -> Deviation:
    """Create a Deviation, deriving amount and severity from the catalog."""
    deviation_type = DeviationType(deviation_type)
    definition = DEVIATION_DEFINITIONS[deviation_type]
    normal_min, normal_max = normal_range or definition.normal_range
    if normal_min > normal_max:
        raise ValueError(f"Invalid normal range ({normal_min}, {normal_max}) for {deviation_type.value}")

    return Deviation(
        deviation_type=deviation_type,
        view=PostureView(view),
        measurement_value=float(value),
        measurement_unit=definition.unit,
        normal_range_min=normal_min,
        normal_range_max=normal_max,
        deviation_amount=deviation_amount(value, normal_min, normal_max),
        severity=classify_severity(value, normal_min, normal_max, definition.unit),
        direction=direction,
        landmarks=[getattr(lm, "value", lm) for lm in landmarks],
        notes=notes,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# ASSESSMENTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Assessment:
    """A dated posture assessment of one patient (up to one image per view)."""
    patient_id: str
    assessment_date: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    images: List[PostureImage] = field(default_factory=list)
    notes: Optional[str] = None
    patient_height_cm: Optional[float] = None
    is_complete: bool = False
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Derived by the deviation analyzer
    deviations: List[Deviation] = field(default_factory=list)
    overall_severity: Optional[Severity] = None
    summary: Optional[str] = None
    analysis_warnings: List[str] = field(default_factory=list)
    analyzed_at: Optional[datetime] = None

    def __post_init__(self):
        self.assessment_date = as_utc(self.assessment_date)
        self.completed_at = as_utc(self.completed_at)
        self.created_at = as_utc(self.created_at)
        self.analyzed_at = as_utc(self.analyzed_at)
        views = [image.view for image in self.images]
        if len(views) != len(set(views)):
            raise ValueError("An assessment holds at most one image per view")
        self.images.sort(key=lambda image: VIEW_ORDER.index(image.view))

    # ---------------------------------------------------------------- state

    def ensure_mutable(self):
        if self.is_complete:
            raise AssessmentLockedError(
                f"Assessment {self.id} is complete and can no longer be modified",
                {"assessment_id": self.id},
            )

    @property
    def has_analysis(self) -> bool:
        return self.analyzed_at is not None

    @property
    def analyzed_images(self) -> List[PostureImage]:
        return [image for image in self.images if image.is_analyzed]

    def get_image(self, view) -> Optional[PostureImage]:
        view = PostureView(view)
        for image in self.images:
            if image.view == view:
                return image
        return None

    def deviations_for_view(self, view) -> List[Deviation]:
        view = PostureView(view)
        return [d for d in self.deviations if d.view == view]

    # ------------------------------------------------------------ mutations

    def attach_image(self, image: PostureImage) -> Optional[PostureImage]:
        """Attach an image, replacing any existing image for the same view."""
        self.ensure_mutable()
        replaced = self.get_image(image.view)
        if replaced is not None:
            self.images.remove(replaced)
        self.images.append(image)
        self.images.sort(key=lambda img: VIEW_ORDER.index(img.view))
        self._invalidate_analysis()
        return replaced

    def record_detection(self, view, detection: LandmarkDetection, analyzed_at: Optional[datetime] = None) -> PostureImage:
        """Ingest detector output for a view, creating the image if it is not attached yet."""
        self.ensure_mutable()
        image = self.get_image(view)
        if image is None:
            image = PostureImage(view=PostureView(view))
            self.images.append(image)
            self.images.sort(key=lambda img: VIEW_ORDER.index(img.view))
        image.apply_detection(detection, analyzed_at)
        self._invalidate_analysis()
        return image

    def remove_image(self, view) -> PostureImage:
        self.ensure_mutable()
        image = self.get_image(view)
        if image is None:
            raise ValueError(f"No {PostureView(view).value} image on assessment {self.id}")
        self.images.remove(image)
        self._invalidate_analysis()
        return image

    def move_landmark(self, view, name, x: float, y: float) -> Landmark:
        self.ensure_mutable()
        image = self.get_image(view)
        if image is None:
            raise ValueError(f"No {PostureView(view).value} image on assessment {self.id}")
        landmark = image.move_landmark(name, x, y)
        self._invalidate_analysis()
        return landmark

    def revert_landmark(self, view, name) -> Landmark:
        self.ensure_mutable()
        image = self.get_image(view)
        landmark = image.landmark(name) if image is not None else None
        if landmark is None:
            raise ValueError(f"Landmark '{LandmarkName(name).value}' not found on {PostureView(view).value} image")
        if landmark.revert():
            self._invalidate_analysis()
        return landmark

    def apply_analysis(self, analysis, analyzed_at: Optional[datetime] = None):
        """Store the result of DeviationAnalyzer.analyze_assessment."""
        self.ensure_mutable()
        self.deviations = list(analysis.deviations)
        self.overall_severity = analysis.overall_severity
        self.summary = analysis.summary
        self.analysis_warnings = list(analysis.warnings)
        self.analyzed_at = as_utc(analyzed_at) or datetime.now(timezone.utc)

    def complete(self, completed_at: Optional[datetime] = None):
        self.ensure_mutable()
        if not self.images:
            raise PreconditionNotMetError(
                "Cannot complete assessment without any images",
                {"assessment_id": self.id},
            )
        if not self.has_analysis:
            raise PreconditionNotMetError(
                "Cannot complete assessment before it has been analyzed",
                {"assessment_id": self.id},
            )
        self.is_complete = True
        self.completed_at = as_utc(completed_at) or datetime.now(timezone.utc)

    def _invalidate_analysis(self):
        self.deviations = []
        self.overall_severity = None
        self.summary = None
        self.analysis_warnings = []
        self.analyzed_at = None

    # -------------------------------------------------------- serialization

    def summary_dict(self) -> dict:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "date": _iso(self.assessment_date),
            "overall_severity": self.overall_severity.value if self.overall_severity else None,
            "deviation_count": len(self.deviations),
            "views": [image.view.value for image in self.images],
            "is_complete": self.is_complete,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "assessment_date": _iso(self.assessment_date),
            "images": [image.to_dict() for image in self.images],
            "notes": self.notes,
            "patient_height_cm": self.patient_height_cm,
            "is_complete": self.is_complete,
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "deviations": [d.to_dict() for d in self.deviations],
            "overall_severity": self.overall_severity.value if self.overall_severity else None,
            "summary": self.summary,
            "analysis_warnings": list(self.analysis_warnings),
            "analyzed_at": _iso(self.analyzed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Assessment":
        overall = data.get("overall_severity")
        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            assessment_date=as_utc(data["assessment_date"]),
            images=[PostureImage.from_dict(img) for img in data.get("images", [])],
            notes=data.get("notes"),
            patient_height_cm=data.get("patient_height_cm"),
            is_complete=bool(data.get("is_complete", False)),
            completed_at=as_utc(data.get("completed_at")),
            created_at=as_utc(data.get("created_at")) or datetime.now(timezone.utc),
            deviations=[Deviation.from_dict(d) for d in data.get("deviations", [])],
            overall_severity=Severity(overall) if overall else None,
            summary=data.get("summary"),
            analysis_warnings=list(data.get("analysis_warnings") or []),
            analyzed_at=as_utc(data.get("analyzed_at")),
        )
