"""
Domain entity tests: manual overrides, detector ingestion and the
assessment lifecycle.
"""

import pytest

from posture_service.models import (
    AssessmentLockedError,
    DeviationType,
    Landmark,
    LandmarkDetection,
    PostureImage,
    PostureView,
    PreconditionNotMetError,
    Severity,
    build_deviation,
)

from conftest import make_assessment, utc


class TestLandmarkOverride:
    """Manual landmark moves keep the detected position for revert."""

    def test_original_recorded_on_first_edit_only(self):
        landmark = Landmark(name="left_shoulder", x=0.5, y=0.5, confidence=0.8)
        landmark.move_to(0.6, 0.55)
        landmark.move_to(0.7, 0.60)

        assert landmark.is_manual is True
        assert (landmark.x, landmark.y) == (0.7, 0.6)
        assert (landmark.original_x, landmark.original_y) == (0.5, 0.5)

    def test_revert_restores_detected_position(self):
        landmark = Landmark(name="left_shoulder", x=0.5, y=0.5)
        landmark.move_to(0.6, 0.6)

        assert landmark.revert() is True
        assert (landmark.x, landmark.y) == (0.5, 0.5)
        assert landmark.is_manual is False
        assert landmark.revert() is False

    def test_move_clamps_into_frame(self):
        landmark = Landmark(name="nose", x=0.5, y=0.5)
        landmark.move_to(1.4, -0.2)
        assert (landmark.x, landmark.y) == (1.0, 0.0)

    def test_confidence_out_of_range(self):
        with pytest.raises(ValueError):
            Landmark(name="nose", x=0.5, y=0.5, confidence=1.5)

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            Landmark(name="left_elbow", x=0.5, y=0.5)


class TestPostureImage:
    """Landmark collections and detector output."""

    def test_duplicate_landmark_names_rejected(self):
        with pytest.raises(ValueError):
            PostureImage(
                view=PostureView.ANTERIOR,
                landmarks=[Landmark(name="nose", x=0.5, y=0.1), Landmark(name="nose", x=0.5, y=0.2)],
            )

    def test_apply_detection(self):
        image = PostureImage(view=PostureView.ANTERIOR)
        detection = LandmarkDetection(
            landmarks=[
                {"name": "nose", "x": 0.50, "y": 0.10, "confidence": 0.6},
                {"name": "nose", "x": 0.52, "y": 0.11, "confidence": 0.9},
                {"name": "left_shoulder", "x": 1.2, "y": 0.25, "confidence": 0.8},
                {"name": "left_elbow", "x": 0.7, "y": 0.4, "confidence": 0.9},
            ],
            model_version="pose-v2",
        )

        warnings = image.apply_detection(detection)

        assert image.is_analyzed is True
        assert image.model_version == "pose-v2"
        assert image.landmark("nose").x == 0.52
        assert image.landmark("left_shoulder").x == 1.0
        assert sorted(lm.name.value for lm in image.landmarks) == ["left_shoulder", "nose"]
        assert warnings == ["Unknown landmark 'left_elbow' ignored"]

    def test_manual_move_places_missing_landmark(self):
        image = PostureImage(view=PostureView.POSTERIOR)
        landmark = image.move_landmark("c7_spinous", 0.5, 0.2)

        assert landmark.is_manual is True
        assert landmark.original_x is None
        assert image.is_analyzed is True
        assert image.analysis_method == "manual"


class TestDeviation:

    def test_build_derives_amount_and_severity(self):
        deviation = build_deviation(DeviationType.KNEE_VALGUS, 16, PostureView.ANTERIOR, direction="left")
        assert deviation.deviation_amount == 8
        assert deviation.severity == Severity.SEVERE
        assert deviation.match_key == (DeviationType.KNEE_VALGUS, "left")

    def test_side_only_for_side_specific_types(self):
        deviation = build_deviation(DeviationType.HEAD_FORWARD, 12, PostureView.LATERAL_LEFT, direction="anterior")
        assert deviation.side is None
        assert deviation.match_key == (DeviationType.HEAD_FORWARD, None)

    def test_rejects_inverted_normal_range(self):
        with pytest.raises(ValueError):
            build_deviation(DeviationType.LORDOSIS, 30, PostureView.LATERAL_LEFT, normal_range=(50, 30))


class TestAssessmentLifecycle:
    """Completed assessments refuse every mutation."""

    def test_complete_requires_an_image(self):
        assessment = make_assessment("p1", utc(2024, 1, 1), views=(), complete=False)
        with pytest.raises(PreconditionNotMetError):
            assessment.complete()

    def test_complete_requires_analysis(self):
        assessment = make_assessment("p1", utc(2024, 1, 1), complete=False)
        assessment.move_landmark(PostureView.ANTERIOR, "nose", 0.5, 0.1)

        with pytest.raises(PreconditionNotMetError, match="analyzed"):
            assessment.complete()
        assert assessment.is_complete is False

    def test_completed_assessment_is_locked(self):
        assessment = make_assessment("p1", utc(2024, 1, 1), complete=False)
        assessment.move_landmark(PostureView.ANTERIOR, "nose", 0.5, 0.1)
        assessment.analyzed_at = utc(2024, 1, 1)
        assessment.complete()

        assert assessment.is_complete is True
        assert assessment.completed_at is not None
        with pytest.raises(AssessmentLockedError):
            assessment.move_landmark(PostureView.ANTERIOR, "nose", 0.6, 0.1)
        with pytest.raises(AssessmentLockedError):
            assessment.attach_image(PostureImage(view=PostureView.POSTERIOR))
        with pytest.raises(AssessmentLockedError):
            assessment.complete()

    def test_attaching_same_view_replaces_image(self):
        assessment = make_assessment("p1", utc(2024, 1, 1), complete=False)
        first = assessment.get_image(PostureView.ANTERIOR)
        replacement = PostureImage(view=PostureView.ANTERIOR, image_url="https://cdn.example.com/a2.jpg")

        replaced = assessment.attach_image(replacement)

        assert replaced is first
        assert len(assessment.images) == 1
        assert assessment.get_image(PostureView.ANTERIOR) is replacement

    def test_editing_landmarks_invalidates_analysis(self):
        deviation = build_deviation(DeviationType.HEAD_TILT, 4, PostureView.ANTERIOR)
        assessment = make_assessment("p1", utc(2024, 1, 1), deviations=[deviation], complete=False)
        assessment.analyzed_at = utc(2024, 1, 1)

        assessment.move_landmark(PostureView.ANTERIOR, "left_ear", 0.55, 0.1)

        assert assessment.has_analysis is False
        assert assessment.deviations == []

    def test_images_kept_in_view_order(self):
        assessment = make_assessment(
            "p1", utc(2024, 1, 1),
            views=(PostureView.LATERAL_RIGHT, PostureView.ANTERIOR, PostureView.POSTERIOR),
        )
        assert [img.view for img in assessment.images] == [
            PostureView.ANTERIOR, PostureView.POSTERIOR, PostureView.LATERAL_RIGHT,
        ]
