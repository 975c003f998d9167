"""
Assessment service tests: the full capture -> analyze -> complete ->
compare flow over the in-memory repository.
"""

import pytest

from posture_service.models import (
    AssessmentLockedError,
    AssessmentNotFoundError,
    ChangeStatus,
    CrossPatientComparisonError,
    DeviationType,
    LandmarkDetection,
    PostureView,
    PreconditionNotMetError,
    Severity,
    TrendDirection,
)

from conftest import NEUTRAL_ANTERIOR, detection_payload, utc

# Left knee pulled towards the midline
VALGUS_ANTERIOR = dict(NEUTRAL_ANTERIOR, left_knee=(0.53, 0.72))

IDENTITIES = {
    "patient_name": "Jane Doe",
    "practitioner_name": "Dr. Alex Kim",
    "organization_name": "Spine & Motion Clinic",
}


def capture(service, patient_id, when, points, complete=True):
    assessment = service.create_assessment(patient_id, when, patient_height_cm=168)
    detection = LandmarkDetection.from_dict(detection_payload(points))
    service.attach_detection(assessment.id, PostureView.ANTERIOR, detection)
    service.analyze(assessment.id)
    if complete:
        return service.complete(assessment.id)
    return service.get_assessment(assessment.id)


def left_knee(deviations):
    return next(d for d in deviations if d.deviation_type == DeviationType.KNEE_VALGUS and d.direction == "left")


class TestAssessmentLifecycle:
    """Create, capture, correct and lock."""

    def test_create_rejects_bad_input(self, service):
        with pytest.raises(ValueError):
            service.create_assessment("", utc(2024, 1, 1))
        with pytest.raises(ValueError):
            service.create_assessment("patient-1", utc(2024, 1, 1), patient_height_cm=0)

    def test_unknown_assessment(self, service):
        with pytest.raises(AssessmentNotFoundError):
            service.get_assessment("missing")

    def test_detection_then_analysis(self, service):
        assessment = capture(service, "patient-1", utc(2024, 1, 1), VALGUS_ANTERIOR, complete=False)

        assert assessment.has_analysis is True
        assert assessment.get_image(PostureView.ANTERIOR).model_version == "pose-v2"
        assert left_knee(assessment.deviations).severity >= Severity.SEVERE
        assert assessment.overall_severity == left_knee(assessment.deviations).severity

    def test_analysis_is_reused_until_landmarks_change(self, service):
        assessment = capture(service, "patient-1", utc(2024, 1, 1), VALGUS_ANTERIOR, complete=False)
        stored = service.analyze(assessment.id)
        assert stored.deviations == service.get_assessment(assessment.id).deviations

        service.move_landmark(assessment.id, PostureView.ANTERIOR, "left_knee", 0.57, 0.72)
        assert service.get_assessment(assessment.id).has_analysis is False

        recomputed = service.analyze(assessment.id)
        assert left_knee(recomputed.deviations).severity == Severity.MINIMAL

        service.revert_landmark(assessment.id, PostureView.ANTERIOR, "left_knee")
        reverted = service.analyze(assessment.id)
        assert left_knee(reverted.deviations).severity >= Severity.SEVERE

    def test_force_recompute_gives_same_deviations(self, service):
        assessment = capture(service, "patient-1", utc(2024, 1, 1), VALGUS_ANTERIOR, complete=False)
        first = service.get_assessment(assessment.id).deviations

        forced = service.analyze(assessment.id, force=True)

        assert forced.deviations == first

    def test_completed_assessment_is_locked(self, service):
        assessment = capture(service, "patient-1", utc(2024, 1, 1), VALGUS_ANTERIOR)

        with pytest.raises(AssessmentLockedError):
            service.move_landmark(assessment.id, PostureView.ANTERIOR, "nose", 0.5, 0.1)
        with pytest.raises(AssessmentLockedError):
            service.analyze(assessment.id, force=True)
        with pytest.raises(AssessmentLockedError):
            service.delete_assessment(assessment.id)

        # Reading the stored analysis is still allowed
        assert service.analyze(assessment.id).deviations == assessment.deviations

    def test_complete_requires_analysis(self, service):
        assessment = service.create_assessment("patient-1", utc(2024, 1, 1))
        detection = LandmarkDetection.from_dict(detection_payload(VALGUS_ANTERIOR))
        service.attach_detection(assessment.id, PostureView.ANTERIOR, detection)

        with pytest.raises(PreconditionNotMetError):
            service.complete(assessment.id)
        assert service.get_assessment(assessment.id).is_complete is False

        service.analyze(assessment.id)
        completed = service.complete(assessment.id)
        assert completed.is_complete is True
        assert left_knee(completed.deviations).severity >= Severity.SEVERE

    def test_attach_image_with_manual_landmarks(self, service, neutral_landmarks):
        assessment = service.create_assessment("patient-1", utc(2024, 1, 1))

        image = service.attach_image(
            assessment.id, PostureView.ANTERIOR, image_url="https://cdn.example.com/a.jpg", landmarks=neutral_landmarks,
        )

        assert image.is_analyzed is True
        assert image.analysis_method == "manual"
        assert service.analyze(assessment.id).analyzed_views == [PostureView.ANTERIOR]

    def test_remove_image(self, service):
        assessment = capture(service, "patient-1", utc(2024, 1, 1), NEUTRAL_ANTERIOR, complete=False)

        service.remove_image(assessment.id, PostureView.ANTERIOR)

        with pytest.raises(PreconditionNotMetError):
            service.analyze(assessment.id)


class TestLongitudinal:
    """Comparison, trends, overlay and reports by assessment id."""

    @pytest.fixture
    def history(self, service):
        first = capture(service, "patient-1", utc(2024, 1, 1), VALGUS_ANTERIOR)
        second = capture(service, "patient-1", utc(2024, 2, 15), NEUTRAL_ANTERIOR)
        return first, second

    def test_compare(self, service, history):
        first, second = history

        result = service.compare(first.id, second.id)

        knee = next(c for c in result.comparisons if c.deviation_type == DeviationType.KNEE_VALGUS and c.side == "left")
        assert knee.status == ChangeStatus.IMPROVED
        assert result.overall_progress.improvement_score == 100.0
        assert result.days_between == 45

    def test_trends(self, service, history):
        series = service.trends("patient-1", DeviationType.KNEE_VALGUS)

        by_side = {s.side: s for s in series}
        assert by_side["left"].direction == TrendDirection.IMPROVING
        assert by_side["right"].direction == TrendDirection.STABLE

    def test_trends_ignore_incomplete_assessments(self, service, history):
        capture(service, "patient-1", utc(2024, 3, 1), VALGUS_ANTERIOR, complete=False)

        series = service.trends("patient-1", DeviationType.KNEE_VALGUS)

        assert all(len(s.points) == 2 for s in series)

    def test_trends_need_two_completed(self, service):
        capture(service, "patient-1", utc(2024, 1, 1), NEUTRAL_ANTERIOR)
        with pytest.raises(PreconditionNotMetError):
            service.trends("patient-1")

    def test_overlay(self, service, history):
        first, second = history

        alignment = service.overlay(first.id, second.id, PostureView.ANTERIOR)

        assert alignment.common_landmark_count == len(NEUTRAL_ANTERIOR)
        assert alignment.low_confidence is False

    def test_overlay_needs_images_in_both(self, service, history):
        first, second = history
        with pytest.raises(PreconditionNotMetError):
            service.overlay(first.id, second.id, PostureView.POSTERIOR)

    def test_overlay_rejects_other_patient(self, service, history):
        first, _ = history
        stranger = capture(service, "patient-2", utc(2024, 2, 1), NEUTRAL_ANTERIOR)
        with pytest.raises(CrossPatientComparisonError):
            service.overlay(first.id, stranger.id, PostureView.ANTERIOR)

    def test_report(self, service, history):
        first, second = history

        result = service.report(first.id, second.id, IDENTITIES)

        assert result["report"]["title"] == "Posture Comparison Report - Jane Doe"
        assert result["report"]["improvement_score"] == 100.0
        assert "Posture Comparison Report - Jane Doe" in result["html"]

    def test_assessment_report_requires_analysis(self, service):
        assessment = service.create_assessment("patient-1", utc(2024, 1, 1))
        with pytest.raises(PreconditionNotMetError):
            service.assessment_report(assessment.id, "Jane Doe", "Dr. Alex Kim")

    def test_patient_summary(self, service, history):
        first, second = history
        service.create_assessment("patient-1", utc(2024, 4, 1))

        summary = service.patient_summary("patient-1")

        assert summary["assessment_count"] == 3
        assert summary["completed_count"] == 2
        assert summary["latest_assessment"]["id"] == second.id
        assert summary["first_assessment_date"] == first.assessment_date.isoformat()
        assert summary["trends"]

    def test_same_day_assessments_collapse_in_trends(self, service, history):
        capture(service, "patient-1", utc(2024, 2, 15), NEUTRAL_ANTERIOR)

        summary = service.patient_summary("patient-1")
        series = service.trends("patient-1", DeviationType.KNEE_VALGUS)

        assert summary["completed_count"] == 3
        assert [a.assessment_date for a in service.trend_history("patient-1")] == [utc(2024, 1, 1), utc(2024, 2, 15)]
        assert all(len(s.points) == 2 for s in series)

    def test_single_day_history_has_no_trends(self, service):
        capture(service, "patient-2", utc(2024, 1, 1), VALGUS_ANTERIOR)
        capture(service, "patient-2", utc(2024, 1, 1), NEUTRAL_ANTERIOR)

        summary = service.patient_summary("patient-2")

        assert summary["completed_count"] == 2
        assert summary["trends"] == []
