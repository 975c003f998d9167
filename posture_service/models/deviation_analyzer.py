"""
POSTUREIQ Posture Service - Deviation Analyzer

Turns landmark coordinates into classified postural deviations.

Each deviation type has one measurement method built on the geometry
primitives. A type whose landmarks are missing, below the confidence
threshold, or geometrically degenerate is skipped with a warning; the
rest of the view is still analyzed.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from core.config import settings

from .entities import Deviation, PostureImage, build_deviation
from .errors import PreconditionNotMetError
from .geometry import (
    ScaleContext,
    bend_angle,
    horizontal_offset_from_line,
    inclination_from_vertical,
    level_difference,
    tilt_from_horizontal,
)
from .landmark_catalog import (
    BODY_REGIONS,
    DEVIATION_DEFINITIONS,
    VIEW_ORDER,
    BodyRegion,
    DeviationType,
    LandmarkName,
    PostureView,
    view_deviation_types,
)
from .severity import Severity, max_severity

logger = logging.getLogger(__name__)

_EPS = 1e-9
SIDES = ("left", "right")


# ═══════════════════════════════════════════════════════════════════════════════
# RESULT TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class ViewAnalysis:
    """Deviations measured on one image plus the reasons anything was skipped."""
    view: PostureView
    deviations: List[Deviation] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    analyzed: bool = True


@dataclass
class AssessmentAnalysis:
    """Aggregated deviations for an assessment (no timestamps, so reruns compare equal)."""
    deviations: List[Deviation]
    overall_severity: Severity
    summary: str
    warnings: List[str]
    analyzed_views: List[PostureView]
    recommendations: List[str]

    def to_dict(self) -> dict:
        return {
            "deviations": [d.to_dict() for d in self.deviations],
            "overall_severity": self.overall_severity.value,
            "summary": self.summary,
            "warnings": list(self.warnings),
            "analyzed_views": [v.value for v in self.analyzed_views],
            "recommendations": list(self.recommendations),
        }


@dataclass
class _Reading:
    deviation_type: DeviationType
    value: float
    direction: Optional[str] = None
    notes: Optional[str] = None


class _LandmarkUnavailable(Exception):
    pass


class _LandmarkSet:
    """Confidence-filtered landmark lookup that records what a measurement used."""

    def __init__(self, landmarks: Iterable, min_confidence: float):
        self._by_name = {LandmarkName(lm.name): lm for lm in landmarks}
        self.min_confidence = min_confidence
        self.used: List[str] = []

    def _usable(self, name: LandmarkName):
        landmark = self._by_name.get(name)
        if landmark is None or landmark.confidence < self.min_confidence:
            return None
        return landmark

    def peek(self, *names):
        for name in names:
            landmark = self._usable(LandmarkName(name))
            if landmark is not None:
                return landmark
        return None

    def optional(self, *names):
        for name in names:
            name = LandmarkName(name)
            landmark = self._usable(name)
            if landmark is not None:
                self.used.append(name.value)
                return landmark
        return None

    def require(self, *names):
        landmark = self.optional(*names)
        if landmark is not None:
            return landmark

        reasons = []
        for name in names:
            name = LandmarkName(name)
            found = self._by_name.get(name)
            if found is None:
                reasons.append(f"{name.value} missing")
            else:
                reasons.append(f"{name.value} confidence {found.confidence:.2f} < {self.min_confidence:.2f}")
        raise _LandmarkUnavailable(", ".join(reasons))

    def require_pair(self, *pairs: Tuple[str, str]):
        """First bilateral pair whose two landmarks are both usable."""
        for left_name, right_name in pairs:
            left = self._usable(LandmarkName(left_name))
            right = self._usable(LandmarkName(right_name))
            if left is not None and right is not None:
                self.used.extend([left_name, right_name])
                return left, right
        wanted = " or ".join(f"{a}/{b}" for a, b in pairs)
        raise _LandmarkUnavailable(f"no usable pair among {wanted}")


def _sign(value: float) -> float:
    if value > _EPS:
        return 1.0
    if value < -_EPS:
        return -1.0
    return 0.0


def _other(side: str) -> str:
    return "right" if side == "left" else "left"


def _near_side(view: PostureView) -> str:
    return "left" if view == PostureView.LATERAL_LEFT else "right"


def _range_direction(deviation_type: DeviationType, value: float) -> Optional[str]:
    definition = DEVIATION_DEFINITIONS[deviation_type]
    if value > definition.normal_range_max:
        return "increased"
    if value < definition.normal_range_min:
        return "decreased"
    return None


# ═══════════════════════════════════════════════════════════════════════════════
# DEVIATION ANALYZER
# ═══════════════════════════════════════════════════════════════════════════════

class DeviationAnalyzer:
    """
    Rule-based postural deviation analysis.

    Usage:
        analyzer = get_deviation_analyzer()
        deviations = analyzer.analyze_view(landmarks, PostureView.ANTERIOR, scale)
        analysis = analyzer.analyze_assessment(images, patient_height_cm=172)
    """

    # (types produced, method name, measured once per side)
    MEASUREMENTS: Sequence[Tuple[Tuple[DeviationType, ...], str, bool]] = (
        ((DeviationType.HEAD_FORWARD,), "_measure_head_forward", False),
        ((DeviationType.HEAD_TILT,), "_measure_head_tilt", False),
        ((DeviationType.HEAD_ROTATION,), "_measure_head_rotation", False),
        ((DeviationType.SHOULDER_UNEVEN,), "_measure_shoulder_level", False),
        ((DeviationType.SHOULDER_PROTRACTED,), "_measure_shoulder_protraction", False),
        ((DeviationType.KYPHOSIS,), "_measure_kyphosis", False),
        ((DeviationType.LORDOSIS,), "_measure_lordosis", False),
        ((DeviationType.SCOLIOSIS,), "_measure_scoliosis", False),
        ((DeviationType.HIP_UNEVEN,), "_measure_hip_level", False),
        ((DeviationType.PELVIC_TILT_LATERAL,), "_measure_lateral_pelvic_tilt", False),
        ((DeviationType.PELVIC_TILT_ANTERIOR,), "_measure_anterior_pelvic_tilt", False),
        ((DeviationType.KNEE_VALGUS, DeviationType.KNEE_VARUS), "_measure_knee_frontal", True),
        ((DeviationType.KNEE_HYPEREXTENSION,), "_measure_knee_hyperextension", False),
        ((DeviationType.ANKLE_PRONATION, DeviationType.ANKLE_SUPINATION), "_measure_rearfoot", True),
        ((DeviationType.WEIGHT_SHIFT,), "_measure_weight_shift", False),
    )

    def __init__(
        self,
        min_confidence: Optional[float] = None,
        min_landmarks: Optional[int] = None,
        normal_ranges: Optional[Dict[DeviationType, Tuple[float, float]]] = None,
    ):
        self.min_confidence = settings.MIN_LANDMARK_CONFIDENCE if min_confidence is None else min_confidence
        self.min_landmarks = settings.MIN_LANDMARKS_PER_IMAGE if min_landmarks is None else min_landmarks
        self.normal_ranges = {DeviationType(k): v for k, v in (normal_ranges or {}).items()}

    # ========================================
    # Per-view analysis
    # ========================================

    def analyze_view(self, landmarks: Iterable, view: PostureView, scale_context: Optional[ScaleContext] = None) -> List[Deviation]:
        """Deviations measurable in one view, in canonical order."""
        return self.analyze_view_detailed(landmarks, view, scale_context).deviations

    def analyze_view_detailed(
        self,
        landmarks: Iterable,
        view: PostureView,
        scale_context: Optional[ScaleContext] = None,
    ) -> ViewAnalysis:
        view = PostureView(view)
        landmarks = list(landmarks)
        scale = scale_context or ScaleContext.from_landmark_extent(landmarks, min_confidence=self.min_confidence)
        applicable = set(view_deviation_types(view))
        result = ViewAnalysis(view=view)

        for types, method_name, per_side in self.MEASUREMENTS:
            if not applicable.intersection(types):
                continue
            label = "/".join(t.value for t in types)

            for side in (SIDES if per_side else (None,)):
                points = _LandmarkSet(landmarks, self.min_confidence)
                where = f"{side} side, " if side else ""
                try:
                    reading = getattr(self, method_name)(points, view, scale, side)
                except _LandmarkUnavailable as e:
                    message = f"{label} skipped ({where}{view.value}): {e}"
                    logger.debug(message)
                    result.warnings.append(message)
                    continue

                if reading is None or math.isnan(reading.value):
                    message = f"{label} skipped ({where}{view.value}): degenerate landmark geometry"
                    logger.debug(message)
                    result.warnings.append(message)
                    continue
                if reading.deviation_type not in applicable:
                    continue

                result.deviations.append(
                    build_deviation(
                        reading.deviation_type,
                        reading.value,
                        view,
                        direction=side or reading.direction,
                        normal_range=self.normal_ranges.get(reading.deviation_type),
                        landmarks=points.used,
                        notes=reading.notes,
                    )
                )

        result.deviations.sort(key=lambda d: d.sort_key)
        return result

    def analyze_image(self, image: PostureImage, patient_height_cm: Optional[float] = None) -> ViewAnalysis:
        """Analyze one attached image, skipping it if too few landmarks were placed."""
        if len(image.landmarks) < self.min_landmarks:
            message = (
                f"Insufficient landmarks detected for {image.view.value} view "
                f"({len(image.landmarks)} found, minimum {self.min_landmarks} required)"
            )
            logger.warning(f"⚠️ {message}")
            return ViewAnalysis(view=image.view, warnings=[message], analyzed=False)

        scale = ScaleContext.from_landmark_extent(image.landmarks, patient_height_cm, self.min_confidence)
        return self.analyze_view_detailed(image.landmarks, image.view, scale)

    # ========================================
    # Per-assessment analysis
    # ========================================

    def analyze_assessment(self, images: Iterable[PostureImage], patient_height_cm: Optional[float] = None) -> AssessmentAnalysis:
        """Analyze every analyzed image of an assessment and aggregate the results."""
        analyzed = self.analyzable_images(images)
        return self.aggregate([self.analyze_image(image, patient_height_cm) for image in analyzed])

    @staticmethod
    def analyzable_images(images: Iterable[PostureImage]) -> List[PostureImage]:
        analyzed = [image for image in images if image.is_analyzed]
        if not analyzed:
            raise PreconditionNotMetError("no analyzed images")
        return analyzed

    def aggregate(self, view_results: Iterable[ViewAnalysis]) -> AssessmentAnalysis:
        """Merge per-view results into one assessment-level analysis."""
        ordered = sorted(view_results, key=lambda r: VIEW_ORDER.index(r.view))

        deviations: List[Deviation] = []
        warnings: List[str] = []
        analyzed_views: List[PostureView] = []
        for view_result in ordered:
            warnings.extend(view_result.warnings)
            if view_result.analyzed:
                analyzed_views.append(view_result.view)
                deviations.extend(view_result.deviations)

        deviations.sort(key=lambda d: d.sort_key)
        overall = max_severity(d.severity for d in deviations)

        logger.info(
            f"✅ Analysis complete: {len(deviations)} deviation(s) across "
            f"{len(analyzed_views)} view(s), overall {overall.value}"
        )
        return AssessmentAnalysis(
            deviations=deviations,
            overall_severity=overall,
            summary=summarize_deviations(deviations),
            warnings=warnings,
            analyzed_views=analyzed_views,
            recommendations=recommendations_for(deviations),
        )

    # ========================================
    # Measurement methods
    # ========================================

    @staticmethod
    def _anterior_sign(points: _LandmarkSet, view: PostureView) -> float:
        """+1 when the patient faces image +x in a lateral photo."""
        side = _near_side(view)
        chin = points.peek(LandmarkName.CHIN)
        ear = points.peek(LandmarkName.EXTERNAL_AUDITORY_MEATUS, f"{side}_ear")
        if chin is not None and ear is not None and abs(chin.x - ear.x) > _EPS:
            return _sign(chin.x - ear.x)
        # Left side to the camera means the patient faces image left
        return -1.0 if view == PostureView.LATERAL_LEFT else 1.0

    def _measure_head_forward(self, points, view, scale, side):
        near = _near_side(view)
        ear = points.require(LandmarkName.EXTERNAL_AUDITORY_MEATUS, f"{near}_ear")
        shoulder = points.require(f"{near}_shoulder")
        value = inclination_from_vertical(shoulder, ear) * self._anterior_sign(points, view)
        direction = "anterior" if value > 0 else "posterior" if value < 0 else None
        notes = f"Head is {abs(value):.0f}° {direction} of the shoulder plumb line" if direction else None
        return _Reading(DeviationType.HEAD_FORWARD, value, direction, notes)

    def _measure_head_tilt(self, points, view, scale, side):
        left, right = points.require_pair(("left_ear", "right_ear"))
        value = tilt_from_horizontal(left, right)
        direction = "right" if value > 0 else "left" if value < 0 else None
        notes = f"Head tilted {abs(value):.1f}° to the {direction}" if direction else None
        return _Reading(DeviationType.HEAD_TILT, value, direction, notes)

    def _measure_head_rotation(self, points, view, scale, side):
        left, right = points.require_pair(("left_ear", "right_ear"))
        nose = points.require(LandmarkName.NOSE)
        half_width = (right.x - left.x) / 2
        if abs(half_width) < _EPS:
            return _Reading(DeviationType.HEAD_ROTATION, float("nan"))
        offset = nose.x - (left.x + right.x) / 2
        ratio = max(-1.0, min(1.0, offset / half_width))
        value = math.degrees(math.asin(ratio))
        direction = "right" if value > 0 else "left" if value < 0 else None
        notes = f"Head rotated {abs(value):.1f}° to the {direction}" if direction else None
        return _Reading(DeviationType.HEAD_ROTATION, value, direction, notes)

    def _measure_shoulder_level(self, points, view, scale, side):
        left, right = points.require_pair(("left_shoulder", "right_shoulder"))
        value = level_difference(left, right, scale.mm_per_unit)
        direction = "left" if value > 0 else "right" if value < 0 else None
        notes = f"{direction.capitalize()} shoulder is higher by {abs(value):.0f}mm" if direction else None
        return _Reading(DeviationType.SHOULDER_UNEVEN, value, direction, notes)

    def _measure_shoulder_protraction(self, points, view, scale, side):
        near = _near_side(view)
        shoulder = points.require(f"{near}_shoulder")
        trochanter = points.require(LandmarkName.GREATER_TROCHANTER, f"{near}_hip")
        value = inclination_from_vertical(trochanter, shoulder) * self._anterior_sign(points, view)
        direction = "anterior" if value > 0 else "posterior" if value < 0 else None
        return _Reading(DeviationType.SHOULDER_PROTRACTED, value, direction)

    def _spinal_curve(self, deviation_type, points, view, upper_names, apex_names, lower_names, convex_posterior):
        upper = points.require(*upper_names)
        apex = points.require(*apex_names)
        lower = points.require(*lower_names)
        bend = bend_angle(upper, apex, lower)
        offset = horizontal_offset_from_line(apex, upper, lower) * self._anterior_sign(points, view)
        if math.isnan(bend) or math.isnan(offset):
            return _Reading(deviation_type, float("nan"))
        # Chord bend at the apex is roughly half the curve's tangent change
        curve_sign = -1.0 if convex_posterior else 1.0
        value = 2.0 * bend * (1.0 if offset * curve_sign >= 0 else -1.0)
        return _Reading(deviation_type, value, _range_direction(deviation_type, value))

    def _measure_kyphosis(self, points, view, scale, side):
        reading = self._spinal_curve(
            DeviationType.KYPHOSIS, points, view,
            ("c7_spinous",), ("t8_spinous", "t4_spinous"), ("t12_spinous",),
            convex_posterior=True,
        )
        if reading.direction == "increased":
            reading.notes = f"Increased thoracic kyphosis (hyperkyphosis) of {reading.value:.0f}°"
        elif reading.direction == "decreased":
            reading.notes = f"Decreased thoracic kyphosis (flat back) of {reading.value:.0f}°"
        return reading

    def _measure_lordosis(self, points, view, scale, side):
        reading = self._spinal_curve(
            DeviationType.LORDOSIS, points, view,
            ("t12_spinous",), ("l3_spinous",), ("s2_spinous",),
            convex_posterior=False,
        )
        if reading.direction == "increased":
            reading.notes = f"Increased lumbar lordosis (hyperlordosis) of {reading.value:.0f}°"
        elif reading.direction == "decreased":
            reading.notes = f"Decreased lumbar lordosis (flat back) of {reading.value:.0f}°"
        return reading

    def _measure_scoliosis(self, points, view, scale, side):
        c7 = points.require("c7_spinous")
        apex = points.require("t8_spinous", "t4_spinous", "t12_spinous")
        l5 = points.require("l5_spinous")
        half_length = abs(l5.y - c7.y) / 2
        lateral = horizontal_offset_from_line(apex, c7, l5)
        if half_length < _EPS or math.isnan(lateral):
            return _Reading(DeviationType.SCOLIOSIS, float("nan"))
        # Posterior view: image +x is the patient's right
        value = math.degrees(math.atan2(abs(lateral), half_length)) * _sign(lateral)
        direction = "right" if value > 0 else "left" if value < 0 else None
        notes = f"Lateral curve of approximately {abs(value):.0f}° to the {direction}" if direction else None
        return _Reading(DeviationType.SCOLIOSIS, value, direction, notes)

    def _measure_hip_level(self, points, view, scale, side):
        pairs = [("left_hip", "right_hip"), ("left_iliac_crest", "right_iliac_crest"), ("left_psis", "right_psis")]
        if view == PostureView.POSTERIOR:
            pairs = pairs[1:] + pairs[:1]
        left, right = points.require_pair(*pairs)
        value = level_difference(left, right, scale.mm_per_unit)
        direction = "left" if value > 0 else "right" if value < 0 else None
        notes = f"{direction.capitalize()} hip is higher by {abs(value):.0f}mm" if direction else None
        return _Reading(DeviationType.HIP_UNEVEN, value, direction, notes)

    def _measure_lateral_pelvic_tilt(self, points, view, scale, side):
        left, right = points.require_pair(("left_psis", "right_psis"), ("left_iliac_crest", "right_iliac_crest"))
        value = tilt_from_horizontal(left, right)
        direction = "left" if value > 0 else "right" if value < 0 else None
        notes = f"Pelvis high on the {direction} by {abs(value):.1f}°" if direction else None
        return _Reading(DeviationType.PELVIC_TILT_LATERAL, value, direction, notes)

    def _measure_anterior_pelvic_tilt(self, points, view, scale, side):
        near = _near_side(view)
        asis = points.require(f"{near}_hip")
        psis = points.require(f"{near}_psis")
        value = tilt_from_horizontal(psis, asis)
        return _Reading(DeviationType.PELVIC_TILT_ANTERIOR, value, _range_direction(DeviationType.PELVIC_TILT_ANTERIOR, value))

    def _measure_knee_frontal(self, points, view, scale, side):
        other = _other(side)
        hip = points.require(f"{side}_hip")
        other_hip = points.require(f"{other}_hip")
        knee = points.require(f"{side}_knee", f"{side}_patella")
        ankle = points.require(f"{side}_ankle", f"{side}_medial_malleolus")

        bend = bend_angle(hip, knee, ankle)
        offset = horizontal_offset_from_line(knee, hip, ankle)
        medial = _sign((hip.x + other_hip.x) / 2 - hip.x)
        if math.isnan(bend) or math.isnan(offset) or medial == 0:
            return _Reading(DeviationType.KNEE_VALGUS, float("nan"))

        # Knee drifting towards the midline is valgus (positive)
        value = bend if offset * medial >= 0 else -bend
        deviation_type = DeviationType.KNEE_VALGUS if value >= 0 else DeviationType.KNEE_VARUS
        notes = f"{side.capitalize()} knee angled {abs(value):.1f}° {'inward' if value >= 0 else 'outward'}"
        return _Reading(deviation_type, value, side, notes)

    def _measure_knee_hyperextension(self, points, view, scale, side):
        near = _near_side(view)
        hip = points.require(LandmarkName.GREATER_TROCHANTER, f"{near}_hip")
        knee = points.require(f"{near}_knee")
        ankle = points.require(f"{near}_ankle")

        bend = bend_angle(hip, knee, ankle)
        offset = horizontal_offset_from_line(knee, hip, ankle) * self._anterior_sign(points, view)
        if math.isnan(bend) or math.isnan(offset):
            return _Reading(DeviationType.KNEE_HYPEREXTENSION, float("nan"))

        # Knee behind the hip-ankle line is hyperextension (positive)
        value = bend if offset < 0 else -bend
        direction = "hyperextended" if value > 0 else "flexed" if value < 0 else None
        return _Reading(DeviationType.KNEE_HYPEREXTENSION, value, direction)

    def _measure_rearfoot(self, points, view, scale, side):
        other = _other(side)
        knee = points.require(f"{side}_knee")
        malleolus = points.require(f"{side}_medial_malleolus", f"{side}_ankle")
        heel = points.require(f"{side}_heel")
        other_heel = points.require(f"{other}_heel")

        bend = bend_angle(knee, malleolus, heel)
        offset = horizontal_offset_from_line(heel, knee, malleolus)
        lateral = _sign(heel.x - other_heel.x)
        if math.isnan(bend) or math.isnan(offset) or lateral == 0:
            return _Reading(DeviationType.ANKLE_PRONATION, float("nan"))

        # Heel everted away from the midline reads as pronation (positive)
        value = bend if offset * lateral >= 0 else -bend
        deviation_type = DeviationType.ANKLE_PRONATION if value >= 0 else DeviationType.ANKLE_SUPINATION
        notes = f"{side.capitalize()} foot rolling {'inward' if value >= 0 else 'outward'} ({abs(value):.1f}°)"
        return _Reading(deviation_type, value, side, notes)

    def _measure_weight_shift(self, points, view, scale, side):
        left_shoulder, right_shoulder = points.require_pair(("left_shoulder", "right_shoulder"))
        left_hip, right_hip = points.require_pair(("left_hip", "right_hip"), ("left_iliac_crest", "right_iliac_crest"))
        left_ankle = points.optional("left_ankle", "left_medial_malleolus", "left_heel") or left_hip
        right_ankle = points.optional("right_ankle", "right_medial_malleolus", "right_heel") or right_hip

        center_x = (
            left_shoulder.x + right_shoulder.x + left_hip.x + right_hip.x + left_ankle.x + right_ankle.x
        ) / 6
        base_width = right_ankle.x - left_ankle.x
        if abs(base_width) < _EPS:
            return _Reading(DeviationType.WEIGHT_SHIFT, float("nan"))

        # 0% over the left base point, 100% over the right one
        value = (center_x - left_ankle.x) / base_width * 100
        definition = DEVIATION_DEFINITIONS[DeviationType.WEIGHT_SHIFT]
        direction = "left" if value < definition.normal_range_min else "right" if value > definition.normal_range_max else None
        notes = f"Weight shifted {abs(value - 50):.0f}% to the {direction}" if direction else None
        return _Reading(DeviationType.WEIGHT_SHIFT, value, direction, notes)


# ═══════════════════════════════════════════════════════════════════════════════
# SUMMARY & RECOMMENDATIONS
# ═══════════════════════════════════════════════════════════════════════════════

def _describe(deviation: Deviation) -> str:
    return deviation.notes or deviation.definition.description


def summarize_deviations(deviations: List[Deviation]) -> str:
    """Human-readable summary of the significant findings, grouped by body region."""
    significant = [d for d in deviations if d.severity != Severity.MINIMAL]
    if not significant:
        return "Posture analysis shows no significant deviations from normal alignment."

    by_region: Dict[BodyRegion, List[Deviation]] = {}
    for deviation in significant:
        by_region.setdefault(deviation.definition.region, []).append(deviation)

    notes = []
    for region in BODY_REGIONS:
        group = by_region.get(region)
        if not group:
            continue
        worst = max(group, key=lambda d: (d.severity.rank, d.deviation_amount))

        if region == BodyRegion.HEAD_NECK:
            severe = [d.name for d in group if d.severity >= Severity.SEVERE]
            if severe:
                notes.append(f"Significant head/neck findings: {', '.join(dict.fromkeys(severe))}")
        elif region == BodyRegion.SHOULDERS:
            notes.append(f"Shoulder asymmetry noted: {_describe(worst)}")
        elif region == BodyRegion.SPINE:
            for deviation in group:
                notes.append(f"Spinal finding: {_describe(deviation)}")
        elif region == BodyRegion.PELVIS:
            notes.append(f"Pelvic asymmetry: {_describe(worst)}")
        elif region in (BodyRegion.KNEES, BodyRegion.ANKLES):
            notes.append(f"Lower limb alignment: {_describe(worst)}")
        else:
            notes.append(f"Overall alignment: {_describe(worst)}")

    if not notes:
        return f"Mild postural deviations noted. {len(significant)} findings within acceptable ranges."
    return "\n".join(notes)


_TREATMENT_RECOMMENDATIONS: Dict[DeviationType, Tuple[str, ...]] = {
    DeviationType.HEAD_FORWARD: (
        "Cervical strengthening exercises (chin tucks, neck retractions)",
        "Ergonomic workstation assessment recommended",
    ),
    DeviationType.KYPHOSIS: ("Thoracic extension exercises", "Postural awareness training"),
    DeviationType.SHOULDER_UNEVEN: ("Shoulder leveling exercises", "Assessment for leg length discrepancy"),
    DeviationType.HIP_UNEVEN: ("Pelvic balancing exercises", "Consider heel lift assessment"),
    DeviationType.SCOLIOSIS: ("Scoliosis-specific exercises (Schroth method may be appropriate)",),
    DeviationType.LORDOSIS: ("Core strengthening exercises", "Hip flexor stretching"),
    DeviationType.KNEE_VALGUS: ("Hip abductor and gluteal strengthening",),
    DeviationType.KNEE_VARUS: ("Hip adductor strengthening and gait assessment",),
    DeviationType.ANKLE_PRONATION: ("Foot intrinsic strengthening; consider orthotic assessment",),
    DeviationType.ANKLE_SUPINATION: ("Peroneal strengthening and footwear review",),
}


def recommendations_for(deviations: List[Deviation]) -> List[str]:
    """Treatment recommendations for a single assessment's findings."""
    recommendations: List[str] = []
    significant = [d for d in deviations if d.severity != Severity.MINIMAL]

    for deviation_type, items in _TREATMENT_RECOMMENDATIONS.items():
        matches = [d for d in significant if d.deviation_type == deviation_type]
        if not matches:
            continue
        recommendations.extend(items)
        if deviation_type == DeviationType.SCOLIOSIS and any(d.severity >= Severity.SEVERE for d in matches):
            recommendations.append("Referral for radiographic evaluation recommended")

    if significant:
        recommendations.append("Follow-up posture assessment in 4-6 weeks to track progress")

    if not recommendations:
        return ["Continue current activities with attention to posture"]
    return list(dict.fromkeys(recommendations))


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_analyzer_instance: Optional[DeviationAnalyzer] = None


def get_deviation_analyzer() -> DeviationAnalyzer:
    """Get or create the shared DeviationAnalyzer instance."""
    global _analyzer_instance
    if _analyzer_instance is None:
        _analyzer_instance = DeviationAnalyzer()
    return _analyzer_instance


def analyze_view(landmarks: Iterable, view: PostureView, scale_context: Optional[ScaleContext] = None) -> List[Deviation]:
    return get_deviation_analyzer().analyze_view(landmarks, view, scale_context)


def analyze_assessment(images: Iterable[PostureImage], patient_height_cm: Optional[float] = None) -> AssessmentAnalysis:
    return get_deviation_analyzer().analyze_assessment(images, patient_height_cm)
