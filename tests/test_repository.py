"""
Assessment repository tests against the in-memory Firestore client.
"""

import pytest

from posture_service.models import (
    AssessmentNotFoundError,
    DeviationType,
    PostureView,
    Severity,
    build_deviation,
)

from conftest import make_assessment, make_landmarks, utc


class TestFirestoreAssessmentRepository:
    """Round trips through MockFirestoreClient documents."""

    def test_save_and_get(self, repository, neutral_landmarks):
        assessment = make_assessment("patient-1", utc(2024, 1, 1), complete=False)
        assessment.get_image(PostureView.ANTERIOR).set_landmarks(neutral_landmarks)
        assessment.move_landmark(PostureView.ANTERIOR, "nose", 0.52, 0.11)
        repository.save(assessment)

        loaded = repository.get(assessment.id)

        assert loaded.id == assessment.id
        assert loaded.assessment_date == utc(2024, 1, 1)
        nose = loaded.get_image(PostureView.ANTERIOR).landmark("nose")
        assert nose.is_manual is True
        assert (nose.original_x, nose.original_y) == (0.5, 0.11)

    def test_missing_assessment(self, repository):
        with pytest.raises(AssessmentNotFoundError) as exc_info:
            repository.get("does-not-exist")
        assert exc_info.value.code == "not_found"

    def test_list_for_patient_sorted_by_date(self, repository):
        later = make_assessment("patient-1", utc(2024, 3, 1))
        earlier = make_assessment("patient-1", utc(2024, 1, 1))
        other = make_assessment("patient-2", utc(2024, 2, 1))
        for assessment in (later, earlier, other):
            repository.save(assessment)

        listed = repository.list_for_patient("patient-1")

        assert [a.id for a in listed] == [earlier.id, later.id]

    def test_replace_deviations(self, repository):
        assessment = make_assessment("patient-1", utc(2024, 1, 1), complete=False)
        repository.save(assessment)
        deviation = build_deviation(DeviationType.KNEE_VALGUS, 16, PostureView.ANTERIOR, direction="left")
        assessment.overall_severity = Severity.SEVERE
        assessment.analyzed_at = utc(2024, 1, 2)

        repository.replace_deviations(assessment, [deviation])
        loaded = repository.get(assessment.id)

        assert loaded.deviations == [deviation]
        assert loaded.overall_severity == Severity.SEVERE
        assert loaded.has_analysis is True

    def test_delete(self, repository):
        assessment = make_assessment("patient-1", utc(2024, 1, 1))
        repository.save(assessment)

        repository.delete(assessment.id)

        with pytest.raises(AssessmentNotFoundError):
            repository.get(assessment.id)
        with pytest.raises(AssessmentNotFoundError):
            repository.delete(assessment.id)

    def test_stored_landmarks_keep_confidence(self, repository):
        assessment = make_assessment("patient-1", utc(2024, 1, 1), complete=False)
        assessment.get_image(PostureView.ANTERIOR).set_landmarks(make_landmarks({"chin": (0.5, 0.15)}, confidence=0.42))
        repository.save(assessment)

        loaded = repository.get(assessment.id)

        assert loaded.get_image(PostureView.ANTERIOR).landmark("chin").confidence == 0.42
