"""
Deviation analyzer tests.

Landmark layouts are hand-built so every expected angle / offset can be
worked out on paper.
"""

import math

import pytest

from posture_service.models import (
    DeviationAnalyzer,
    DeviationType,
    PostureImage,
    PostureView,
    PreconditionNotMetError,
    ScaleContext,
    Severity,
    recommendations_for,
)
from posture_service.models.entities import build_deviation

from conftest import NEUTRAL_ANTERIOR, make_landmarks


@pytest.fixture
def analyzer():
    return DeviationAnalyzer()


def mirror(points):
    """Reflect a layout about the vertical midline, swapping left and right landmarks."""
    swapped = {}
    for name, (x, y) in points.items():
        if name.startswith("left_"):
            name = "right_" + name[len("left_"):]
        elif name.startswith("right_"):
            name = "left_" + name[len("right_"):]
        swapped[name] = (1 - x, y)
    return swapped


def degrees_atan(ratio):
    return math.degrees(math.atan(ratio))


# Right side to the camera, patient facing image +x
LATERAL_RIGHT_POINTS = {
    "right_ear": (0.52, 0.10),
    "chin": (0.56, 0.14),
    "right_shoulder": (0.50, 0.25),
    "c7_spinous": (0.45, 0.22),
    "t8_spinous": (0.43, 0.32),
    "t12_spinous": (0.45, 0.42),
    "l3_spinous": (0.47, 0.50),
    "s2_spinous": (0.45, 0.58),
    "right_psis": (0.42, 0.50),
    "right_hip": (0.52, 0.54),
    "greater_trochanter": (0.40, 0.52),
    "right_knee": (0.38, 0.72),
    "right_ankle": (0.40, 0.92),
}

# Patient's back to the camera, their left on image left
POSTERIOR_POINTS = {
    "c7_spinous": (0.50, 0.22),
    "t8_spinous": (0.53, 0.36),
    "l5_spinous": (0.50, 0.50),
    "left_psis": (0.46, 0.52),
    "right_psis": (0.54, 0.53),
    "left_knee": (0.44, 0.72),
    "left_ankle": (0.44, 0.90),
    "left_heel": (0.43, 0.96),
    "right_knee": (0.56, 0.72),
    "right_ankle": (0.56, 0.90),
    "right_heel": (0.55, 0.96),
}


def _by_type(deviations, deviation_type, side=None):
    matches = [d for d in deviations if d.deviation_type == deviation_type and (side is None or d.direction == side)]
    assert len(matches) == 1, f"expected one {deviation_type.value}, got {matches}"
    return matches[0]


class TestAnteriorView:
    """Front-view measurements."""

    def test_uneven_shoulders(self):
        analyzer = DeviationAnalyzer(normal_ranges={DeviationType.SHOULDER_UNEVEN: (0.0, 0.02)})
        landmarks = make_landmarks({
            "left_shoulder": (0.62, 0.40),
            "right_shoulder": (0.38, 0.45),
        })
        scale = ScaleContext(mm_per_unit=0.45, patient_height_cm=170)

        deviations = analyzer.analyze_view(landmarks, PostureView.ANTERIOR, scale)
        shoulder = _by_type(deviations, DeviationType.SHOULDER_UNEVEN)

        assert shoulder.measurement_value == pytest.approx(0.0225)
        assert shoulder.severity == Severity.MILD
        assert shoulder.direction == "left"
        assert shoulder.landmarks == ["left_shoulder", "right_shoulder"]

    def test_neutral_stance_is_within_normal_limits(self, analyzer, neutral_landmarks):
        deviations = analyzer.analyze_view(neutral_landmarks, PostureView.ANTERIOR)

        assert {d.deviation_type for d in deviations} == {
            DeviationType.HEAD_TILT,
            DeviationType.HEAD_ROTATION,
            DeviationType.SHOULDER_UNEVEN,
            DeviationType.HIP_UNEVEN,
            DeviationType.KNEE_VALGUS,
            DeviationType.WEIGHT_SHIFT,
        }
        assert all(d.severity == Severity.MINIMAL for d in deviations)
        assert _by_type(deviations, DeviationType.WEIGHT_SHIFT).measurement_value == pytest.approx(50.0)

    def test_knee_valgus_and_varus_by_sign(self, analyzer):
        points = dict(NEUTRAL_ANTERIOR, left_knee=(0.53, 0.72), right_knee=(0.38, 0.72))
        deviations = analyzer.analyze_view(make_landmarks(points), PostureView.ANTERIOR)

        left = _by_type(deviations, DeviationType.KNEE_VALGUS, side="left")
        right = _by_type(deviations, DeviationType.KNEE_VARUS, side="right")
        assert left.measurement_value > 0
        assert left.severity >= Severity.SEVERE
        assert right.measurement_value < 0

    def test_low_confidence_landmarks_are_skipped_with_warning(self, analyzer):
        landmarks = make_landmarks(NEUTRAL_ANTERIOR)
        for landmark in landmarks:
            if landmark.name.value.endswith("_shoulder"):
                landmark.confidence = 0.3

        result = analyzer.analyze_view_detailed(landmarks, PostureView.ANTERIOR)

        types = {d.deviation_type for d in result.deviations}
        assert DeviationType.SHOULDER_UNEVEN not in types
        assert DeviationType.HEAD_TILT in types
        assert (
            "shoulder_uneven skipped (ANTERIOR): no usable pair among left_shoulder/right_shoulder"
            in result.warnings
        )

    def test_deviations_in_canonical_order(self, analyzer, neutral_landmarks):
        deviations = analyzer.analyze_view(neutral_landmarks, PostureView.ANTERIOR)
        assert deviations == sorted(deviations, key=lambda d: d.sort_key)


class TestLateralView:
    """Side-view measurements, mirrored between left and right."""

    def test_forward_head_from_right_side(self, analyzer):
        landmarks = make_landmarks({
            "right_ear": (0.55, 0.10),
            "right_shoulder": (0.50, 0.25),
            "chin": (0.60, 0.15),
        })
        deviations = analyzer.analyze_view(landmarks, PostureView.LATERAL_RIGHT)
        head = _by_type(deviations, DeviationType.HEAD_FORWARD)

        assert head.measurement_value == pytest.approx(18.43, abs=0.01)
        assert head.direction == "anterior"
        assert head.severity == Severity.EXTREME

    def test_forward_head_mirrored_on_left_side(self, analyzer):
        landmarks = make_landmarks({
            "left_ear": (0.45, 0.10),
            "left_shoulder": (0.50, 0.25),
            "chin": (0.40, 0.15),
        })
        deviations = analyzer.analyze_view(landmarks, PostureView.LATERAL_LEFT)
        head = _by_type(deviations, DeviationType.HEAD_FORWARD)

        assert head.measurement_value == pytest.approx(18.43, abs=0.01)
        assert head.direction == "anterior"

    def test_frontal_types_not_measured_laterally(self, analyzer, neutral_landmarks):
        deviations = analyzer.analyze_view(neutral_landmarks, PostureView.LATERAL_LEFT)
        assert all(PostureView.LATERAL_LEFT in d.definition.views for d in deviations)


class TestLateralMeasurements:
    """Spine, pelvis and knee readings on a side view, identical from either side."""

    @pytest.fixture(params=["right", "left", "left_without_chin"])
    def lateral(self, request, analyzer):
        if request.param == "right":
            points, view = LATERAL_RIGHT_POINTS, PostureView.LATERAL_RIGHT
        else:
            points, view = mirror(LATERAL_RIGHT_POINTS), PostureView.LATERAL_LEFT
            if request.param == "left_without_chin":
                # Left side to the camera means facing image left
                points = {k: v for k, v in points.items() if k != "chin"}
        return analyzer.analyze_view_detailed(make_landmarks(points), view)

    def test_every_lateral_type_measured(self, lateral):
        assert lateral.warnings == []
        assert len(lateral.deviations) == 6

    def test_shoulder_protraction(self, lateral):
        shoulder = _by_type(lateral.deviations, DeviationType.SHOULDER_PROTRACTED)

        assert shoulder.measurement_value == pytest.approx(degrees_atan(0.10 / 0.27))
        assert shoulder.direction == "anterior"
        assert shoulder.severity == Severity.MODERATE

    def test_kyphosis(self, lateral):
        kyphosis = _by_type(lateral.deviations, DeviationType.KYPHOSIS)

        # Apex 0.02 behind a 0.20 chord: bend 2*atan(0.2), curve twice that
        assert kyphosis.measurement_value == pytest.approx(4 * degrees_atan(0.2))
        assert kyphosis.direction == "increased"
        assert kyphosis.severity == Severity.MODERATE
        assert kyphosis.notes == "Increased thoracic kyphosis (hyperkyphosis) of 45°"

    def test_lordosis(self, lateral):
        lordosis = _by_type(lateral.deviations, DeviationType.LORDOSIS)

        assert lordosis.measurement_value == pytest.approx(4 * degrees_atan(0.25))
        assert lordosis.direction == "increased"
        assert lordosis.severity == Severity.MODERATE

    def test_anterior_pelvic_tilt(self, lateral):
        pelvis = _by_type(lateral.deviations, DeviationType.PELVIC_TILT_ANTERIOR)

        assert pelvis.measurement_value == pytest.approx(degrees_atan(0.04 / 0.10))
        assert pelvis.direction == "increased"
        assert pelvis.severity == Severity.SEVERE

    def test_knee_hyperextension(self, lateral):
        knee = _by_type(lateral.deviations, DeviationType.KNEE_HYPEREXTENSION)

        assert knee.measurement_value == pytest.approx(2 * degrees_atan(0.1))
        assert knee.direction == "hyperextended"
        assert knee.severity == Severity.EXTREME

    def test_flat_lumbar_curve_reads_negative(self, analyzer):
        points = dict(LATERAL_RIGHT_POINTS, l3_spinous=(0.43, 0.50))

        deviations = analyzer.analyze_view(make_landmarks(points), PostureView.LATERAL_RIGHT)
        lordosis = _by_type(deviations, DeviationType.LORDOSIS)

        assert lordosis.measurement_value == pytest.approx(-4 * degrees_atan(0.25))
        assert lordosis.direction == "decreased"

    def test_knee_in_front_of_line_reads_flexed(self, analyzer):
        points = dict(LATERAL_RIGHT_POINTS, right_knee=(0.42, 0.72))

        deviations = analyzer.analyze_view(make_landmarks(points), PostureView.LATERAL_RIGHT)
        knee = _by_type(deviations, DeviationType.KNEE_HYPEREXTENSION)

        assert knee.measurement_value == pytest.approx(-2 * degrees_atan(0.1))
        assert knee.direction == "flexed"


class TestPosteriorView:
    """Back-view measurements and their left/right mirror."""

    def test_scoliosis(self, analyzer):
        deviations = analyzer.analyze_view(make_landmarks(POSTERIOR_POINTS), PostureView.POSTERIOR)
        curve = _by_type(deviations, DeviationType.SCOLIOSIS)

        assert curve.measurement_value == pytest.approx(degrees_atan(0.03 / 0.14))
        assert curve.direction == "right"
        assert curve.severity == Severity.SEVERE

    def test_lateral_pelvic_tilt(self, analyzer):
        deviations = analyzer.analyze_view(make_landmarks(POSTERIOR_POINTS), PostureView.POSTERIOR)
        pelvis = _by_type(deviations, DeviationType.PELVIC_TILT_LATERAL)

        assert pelvis.measurement_value == pytest.approx(degrees_atan(0.01 / 0.08))
        assert pelvis.direction == "left"
        assert pelvis.landmarks == ["left_psis", "right_psis"]

    def test_rearfoot_pronation_and_supination(self, analyzer):
        deviations = analyzer.analyze_view(make_landmarks(POSTERIOR_POINTS), PostureView.POSTERIOR)

        # Left heel drifts away from the midline, right heel towards it
        pronated = _by_type(deviations, DeviationType.ANKLE_PRONATION, side="left")
        supinated = _by_type(deviations, DeviationType.ANKLE_SUPINATION, side="right")
        assert pronated.measurement_value == pytest.approx(degrees_atan(0.01 / 0.06))
        assert supinated.measurement_value == pytest.approx(-degrees_atan(0.01 / 0.06))
        assert pronated.severity == Severity.SEVERE
        assert supinated.severity == Severity.SEVERE

    def test_mirrored_layout_swaps_sides(self, analyzer):
        deviations = analyzer.analyze_view(make_landmarks(mirror(POSTERIOR_POINTS)), PostureView.POSTERIOR)

        curve = _by_type(deviations, DeviationType.SCOLIOSIS)
        pelvis = _by_type(deviations, DeviationType.PELVIC_TILT_LATERAL)
        assert curve.measurement_value == pytest.approx(-degrees_atan(0.03 / 0.14))
        assert curve.direction == "left"
        assert pelvis.direction == "right"
        assert _by_type(deviations, DeviationType.ANKLE_PRONATION, side="right").measurement_value > 0
        assert _by_type(deviations, DeviationType.ANKLE_SUPINATION, side="left").measurement_value < 0

    def test_lateral_only_types_not_measured(self, analyzer):
        deviations = analyzer.analyze_view(make_landmarks(POSTERIOR_POINTS), PostureView.POSTERIOR)
        types = {d.deviation_type for d in deviations}
        assert DeviationType.KYPHOSIS not in types
        assert DeviationType.KNEE_VALGUS not in types


class TestAssessmentAnalysis:
    """Aggregation across the images of one assessment."""

    def test_too_few_landmarks_skips_the_image(self, analyzer):
        image = PostureImage(
            view=PostureView.ANTERIOR,
            landmarks=make_landmarks({"nose": (0.5, 0.1), "left_ear": (0.55, 0.1)}),
            is_analyzed=True,
        )

        analysis = analyzer.analyze_assessment([image])

        assert analysis.deviations == []
        assert analysis.analyzed_views == []
        assert analysis.overall_severity == Severity.MINIMAL
        assert analysis.warnings == [
            "Insufficient landmarks detected for ANTERIOR view (2 found, minimum 3 required)"
        ]

    def test_no_analyzed_images_is_rejected(self, analyzer):
        with pytest.raises(PreconditionNotMetError):
            analyzer.analyze_assessment([PostureImage(view=PostureView.ANTERIOR)])

    def test_neutral_summary(self, analyzer, neutral_landmarks):
        image = PostureImage(view=PostureView.ANTERIOR, landmarks=neutral_landmarks, is_analyzed=True)
        analysis = analyzer.analyze_assessment([image], patient_height_cm=172)

        assert analysis.analyzed_views == [PostureView.ANTERIOR]
        assert analysis.summary == "Posture analysis shows no significant deviations from normal alignment."
        assert analysis.recommendations == ["Continue current activities with attention to posture"]

    def test_rerun_is_identical(self, analyzer, neutral_landmarks):
        image = PostureImage(view=PostureView.ANTERIOR, landmarks=neutral_landmarks, is_analyzed=True)
        assert analyzer.analyze_assessment([image]) == analyzer.analyze_assessment([image])


class TestRecommendations:

    def test_significant_finding_gets_follow_up(self):
        deviation = build_deviation(DeviationType.KNEE_VALGUS, 16, PostureView.ANTERIOR, direction="left")
        assert recommendations_for([deviation]) == [
            "Hip abductor and gluteal strengthening",
            "Follow-up posture assessment in 4-6 weeks to track progress",
        ]

    def test_minimal_findings_only(self):
        deviation = build_deviation(DeviationType.HEAD_TILT, 1, PostureView.ANTERIOR)
        assert recommendations_for([deviation]) == ["Continue current activities with attention to posture"]
