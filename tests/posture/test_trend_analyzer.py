"""
Trend analyzer tests.
"""

import pytest

from posture_service.models import (
    CrossPatientComparisonError,
    DeviationType,
    InvalidOrderingError,
    PostureView,
    PreconditionNotMetError,
    TrendAnalyzer,
    TrendDirection,
    TrendStatus,
    build_deviation,
)

from conftest import make_assessment, utc


@pytest.fixture
def analyzer():
    return TrendAnalyzer()


def lordosis(value):
    return build_deviation(DeviationType.LORDOSIS, value, PostureView.LATERAL_LEFT, normal_range=(20, 25))


def knee(value, side="left"):
    return build_deviation(DeviationType.KNEE_VALGUS, value, PostureView.ANTERIOR, direction=side)


def series_of(deviation_lists, patient_id="patient-1"):
    dates = [utc(2024, 1, 1), utc(2024, 2, 1), utc(2024, 3, 1), utc(2024, 4, 1)]
    return [
        make_assessment(patient_id, when, deviations, views=(PostureView.ANTERIOR, PostureView.LATERAL_LEFT))
        for when, deviations in zip(dates, deviation_lists)
    ]


class TestTrendSeries:
    """Per-deviation series across assessments."""

    def test_lordosis_worsening(self, analyzer):
        assessments = series_of([[lordosis(25)], [lordosis(28)], [lordosis(30)]])

        [series] = analyzer.trend(assessments)

        assert series.deviation_type == DeviationType.LORDOSIS
        assert series.status == TrendStatus.OK
        assert [p.value for p in series.points] == [25, 28, 30]
        assert series.change_from_first == 5.0
        assert series.change_from_previous == 2.0
        assert series.direction == TrendDirection.WORSENING
        assert series.slope_per_day > 0

    def test_improving(self, analyzer):
        [series] = analyzer.trend(series_of([[knee(16)], [knee(12)], [knee(9)]]))
        assert series.direction == TrendDirection.IMPROVING
        assert series.change_from_first == -7.0

    def test_stable_below_threshold(self, analyzer):
        [series] = analyzer.trend(series_of([[knee(12)], [knee(12.2)]]))
        assert series.direction == TrendDirection.STABLE

    def test_symmetric_crossing_is_stable(self, analyzer):
        crossing = [
            [build_deviation(DeviationType.LORDOSIS, value, PostureView.LATERAL_LEFT, normal_range=(25, 35))]
            for value in (20, 40)
        ]

        [series] = analyzer.trend(series_of(crossing))

        assert series.change_from_first == 20.0
        assert series.direction == TrendDirection.STABLE

    def test_drift_inside_normal_range(self, analyzer):
        [series] = analyzer.trend(series_of([[lordosis(22.5)], [lordosis(24.5)]]))
        assert series.direction == TrendDirection.WORSENING

    def test_series_seen_once_has_insufficient_data(self, analyzer):
        assessments = series_of([[knee(12), lordosis(28)], [knee(10)]])

        results = {s.deviation_type: s for s in analyzer.trend(assessments)}

        assert results[DeviationType.LORDOSIS].status == TrendStatus.INSUFFICIENT_DATA
        assert results[DeviationType.LORDOSIS].direction is None
        assert results[DeviationType.KNEE_VALGUS].status == TrendStatus.OK

    def test_sides_tracked_separately(self, analyzer):
        assessments = series_of([[knee(12, "left"), knee(9, "right")], [knee(10, "left"), knee(14, "right")]])

        results = {s.side: s for s in analyzer.trend(assessments)}

        assert results["left"].direction == TrendDirection.IMPROVING
        assert results["right"].direction == TrendDirection.WORSENING

    def test_filter_by_type(self, analyzer):
        assessments = series_of([[knee(12), lordosis(26)], [knee(10), lordosis(27)]])

        results = analyzer.trend(assessments, DeviationType.LORDOSIS)

        assert [s.deviation_type for s in results] == [DeviationType.LORDOSIS]

    def test_serializes(self, analyzer):
        [series] = analyzer.trend(series_of([[lordosis(25)], [lordosis(28)]]))
        data = series.to_dict()
        assert data["direction"] == "worsening"
        assert data["unit"] == "degrees"
        assert len(data["points"]) == 2


class TestTrendValidation:

    def test_single_assessment(self, analyzer):
        with pytest.raises(PreconditionNotMetError):
            analyzer.trend(series_of([[knee(12)]]))

    def test_unordered(self, analyzer):
        first, second = series_of([[knee(12)], [knee(10)]])
        with pytest.raises(InvalidOrderingError):
            analyzer.trend([second, first])

    def test_mixed_patients(self, analyzer):
        first = series_of([[knee(12)]], patient_id="patient-1")[0]
        second = make_assessment("patient-2", utc(2024, 2, 1), [knee(10)])
        with pytest.raises(CrossPatientComparisonError):
            analyzer.trend([first, second])

    def test_incomplete(self, analyzer):
        first = make_assessment("patient-1", utc(2024, 1, 1), [knee(12)])
        second = make_assessment("patient-1", utc(2024, 2, 1), [knee(10)], complete=False)
        with pytest.raises(PreconditionNotMetError):
            analyzer.trend([first, second])

    def test_unanalyzed(self, analyzer):
        first, second = series_of([[knee(12)], [knee(10)]])
        second.analyzed_at = None
        with pytest.raises(PreconditionNotMetError, match="analyzed"):
            analyzer.trend([first, second])
